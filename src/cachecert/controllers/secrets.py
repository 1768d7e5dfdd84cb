# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/controllers/secrets.py

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from cachecert.api.constants import (
    CACHED_CERTIFICATES,
    SECRETS,
    SOURCE_ANNOTATION_KEY,
    SYNCED_LABEL_KEY,
    TLS_CERT_KEY,
    TLS_PRIVATE_KEY_KEY,
)
from cachecert.api.models import CachedCertificate
from cachecert.api.upstream import UpstreamCertificate
from cachecert.k8s.store import Store

from .errors import InvalidSecretError, MissingInputError, NotFoundError, OwnershipConflictError

log = logging.getLogger("cachecert")


def owner_reference(cert: CachedCertificate) -> Dict[str, Any]:
    return {
        "apiVersion": CACHED_CERTIFICATES.api_version,
        "kind": CACHED_CERTIFICATES.kind,
        "name": cert.name,
        "uid": cert.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def gen_secret_for_sync(
    cert: Optional[CachedCertificate],
    upstream_cert: Optional[UpstreamCertificate],
    upstream_secret: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Build the target secret for a CachedCertificate from its upstream secret.

    Type and data are copied as-is. Labels and annotations are copied and then
    marked with the synced label and the source annotation. Unlike the upstream
    Certificate, the target secret is owned by the CachedCertificate so it is
    garbage collected with it.
    """
    if cert is None:
        raise MissingInputError("a CachedCertificate is required for secret generation")
    if upstream_cert is None:
        raise MissingInputError("an upstream Certificate is required for secret generation")
    if upstream_secret is None:
        raise MissingInputError("an upstream Secret is required for secret generation")

    upstream_meta = upstream_secret.get("metadata") or {}

    labels = dict(upstream_meta.get("labels") or {})
    labels[SYNCED_LABEL_KEY] = "true"

    annotations = dict(upstream_meta.get("annotations") or {})
    annotations[SOURCE_ANNOTATION_KEY] = f"{cert.namespace}/{cert.name}"

    secret: Dict[str, Any] = {
        "apiVersion": SECRETS.api_version,
        "kind": SECRETS.kind,
        "metadata": {
            "name": cert.spec.secret_name,
            "namespace": cert.namespace,
            "labels": labels,
            "annotations": annotations,
            "ownerReferences": [owner_reference(cert)],
        },
        "data": dict(upstream_secret.get("data") or {}),
    }
    if upstream_secret.get("type"):
        secret["type"] = upstream_secret["type"]

    return secret


def validate_secret(secret: Optional[Dict[str, Any]]) -> None:
    if secret is None:
        raise InvalidSecretError("secret cannot be None")

    data = secret.get("data") or {}
    if TLS_CERT_KEY not in data:
        raise InvalidSecretError(f"{TLS_CERT_KEY} not found")
    if TLS_PRIVATE_KEY_KEY not in data:
        raise InvalidSecretError(f"{TLS_PRIVATE_KEY_KEY} not found")

    # ca.crt is not issued by every issuer so it is not checked


def upsert_target_secret(store: Store, secret: Dict[str, Any]) -> Dict[str, Any]:
    meta = secret["metadata"]
    try:
        existing = store.get(SECRETS, meta["namespace"], meta["name"])
    except NotFoundError:
        log.info("creating target secret %s/%s", meta["namespace"], meta["name"])
        return store.create(SECRETS, secret)

    # refuse to update a secret we didn't make
    existing_labels = (existing.get("metadata") or {}).get("labels") or {}
    if SYNCED_LABEL_KEY not in existing_labels:
        raise OwnershipConflictError(
            f"refusing to update secret {meta['namespace']}/{meta['name']} not created by the operator"
        )

    replacement = dict(secret)
    replacement["metadata"] = dict(meta)
    replacement["metadata"]["resourceVersion"] = existing["metadata"].get("resourceVersion")
    return store.replace(SECRETS, replacement)
