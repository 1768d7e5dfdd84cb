# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/api/upstream.py

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from cachecert.controllers.errors import FieldNotFoundError, FieldTypeError, SchemaError

from .constants import CERTIFICATES
from .models import IssuerRef


def _nested(obj: Dict[str, Any], *path: str) -> Any:
    cur: Any = obj
    for i, field in enumerate(path):
        if not isinstance(cur, dict):
            raise FieldTypeError(f"{'.'.join(path[:i])} is {type(cur).__name__}, expected a map")
        if field not in cur:
            raise FieldNotFoundError(f"{'.'.join(path)} not found in upstream Certificate")
        cur = cur[field]
    return cur


class UpstreamCertificate:
    """
    Read-only view of the cert-manager Certificate fields the operator consumes.

    The document itself belongs to cert-manager, so nothing beyond
    dnsNames and secretName is interpreted.
    """

    def __init__(self, obj: Dict[str, Any]):
        self.obj = obj

    @property
    def name(self) -> str:
        return (self.obj.get("metadata") or {}).get("name", "")

    @property
    def namespace(self) -> str:
        return (self.obj.get("metadata") or {}).get("namespace", "")

    @property
    def dns_names(self) -> List[str]:
        value = _nested(self.obj, "spec", "dnsNames")
        if not isinstance(value, list) or not all(isinstance(n, str) for n in value):
            raise FieldTypeError(f"spec.dnsNames is {value!r}, expected a list of strings")
        return list(value)

    @property
    def secret_name(self) -> str:
        value = _nested(self.obj, "spec", "secretName")
        if not isinstance(value, str):
            raise FieldTypeError(f"spec.secretName is {value!r}, expected a string")
        if not value:
            raise SchemaError("secretName not set in upstream Certificate")
        return value


def build_upstream_certificate(
    *,
    name: str,
    namespace: str,
    dns_names: Sequence[str],
    issuer_ref: IssuerRef,
) -> Dict[str, Any]:
    return {
        "apiVersion": CERTIFICATES.api_version,
        "kind": CERTIFICATES.kind,
        # No ownerReferences: upstream Certificates are shared between
        # CachedCertificates and are never removed by the operator.
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "dnsNames": list(dns_names),
            "issuerRef": issuer_ref.to_k8s(),
            # The CachedCertificate secretName names the *target* secret.
            # Upstreams use their own name so secrets stay unique in the cache namespace.
            "secretName": name,
        },
    }
