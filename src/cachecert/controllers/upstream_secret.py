# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/controllers/upstream_secret.py

from __future__ import annotations

import logging
from typing import List, Optional

from cachecert.api.constants import (
    CACHED_CERTIFICATES,
    CERTIFICATE_NAME_ANNOTATION_KEY,
    SECRETS,
    SYNCED_LABEL_KEY,
)
from cachecert.api.models import CachedCertificateState
from cachecert.k8s.store import BoundedStore, Store
from cachecert.runtime.controller import Result
from cachecert.runtime.deadline import Deadline
from cachecert.runtime.events import ChangeEvent, Key, Predicate, all_of, resource_version_changes_only

from .errors import NotFoundError, StoreError
from .index import DependencyIndex

log = logging.getLogger("cachecert")


def upstream_secret_predicate(cache_namespace: str) -> Predicate:
    """Secrets in the cache namespace, issued by cert-manager, and not written by us."""

    def _matches(event: ChangeEvent) -> bool:
        meta = event.metadata
        return (
            meta.get("namespace") == cache_namespace
            and bool((meta.get("annotations") or {}).get(CERTIFICATE_NAME_ANNOTATION_KEY))
            # only happens when the cache namespace is also a target namespace
            and (meta.get("labels") or {}).get(SYNCED_LABEL_KEY) != "true"
        )

    return _matches


def fanout_predicate(cache_namespace: str) -> Predicate:
    return all_of(resource_version_changes_only, upstream_secret_predicate(cache_namespace))


class UpstreamSecretReconciler:
    """
    Pushes upstream secret changes out to every CachedCertificate using them.

    Dependents are only flipped back to Pending; their own reconcile picks up
    the new key material.
    """

    def __init__(
        self,
        store: Store,
        index: DependencyIndex,
        *,
        cache_namespace: str,
        request_timeout: Optional[float] = None,
    ):
        self.store = store
        self.index = index
        self.cache_namespace = cache_namespace
        self.request_timeout = request_timeout

    def reconcile(self, key: Key, deadline: Deadline) -> Result:
        namespace, name = key
        store = BoundedStore(self.store, deadline, request_timeout=self.request_timeout)

        try:
            secret = store.get(SECRETS, namespace, name)
        except NotFoundError:
            return Result()

        cert_name = ((secret.get("metadata") or {}).get("annotations") or {}).get(CERTIFICATE_NAME_ANNOTATION_KEY)
        if not cert_name:
            return Result()

        failures: List[str] = []
        for dep_namespace, dep_name in sorted(self.index.dependents(cert_name)):
            try:
                self._mark_pending(store, dep_namespace, dep_name)
            except NotFoundError:
                continue
            except StoreError as exc:
                log.warning("unable to mark %s/%s pending: %s", dep_namespace, dep_name, exc)
                failures.append(f"{dep_namespace}/{dep_name}")

        if failures:
            raise StoreError(
                f"upstream secret {namespace}/{name} changed but {len(failures)} dependents "
                f"could not be marked pending: {', '.join(failures)}"
            )
        return Result()

    def _mark_pending(self, store: BoundedStore, namespace: str, name: str) -> None:
        obj = store.get(CACHED_CERTIFICATES, namespace, name)
        state = (obj.get("status") or {}).get("state")
        if state == CachedCertificateState.PENDING.value:
            return

        log.info(
            "updating cached certificate to pending to trigger reconcile cert_name=%s cert_namespace=%s",
            name, namespace,
        )
        store.patch_status(CACHED_CERTIFICATES, namespace, name, {"state": CachedCertificateState.PENDING.value})
