# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/controllers/cached_certificate.py

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from cachecert.api.constants import CACHED_CERTIFICATES, CERTIFICATES, SECRETS
from cachecert.api.models import CachedCertificate, CachedCertificateState, ObjectReference
from cachecert.api.upstream import UpstreamCertificate, build_upstream_certificate
from cachecert.k8s.store import BoundedStore, Store
from cachecert.runtime.controller import Result
from cachecert.runtime.deadline import Deadline
from cachecert.runtime.events import Key

from .errors import (
    AlreadyExistsError,
    CacheCertError,
    InvalidSecretError,
    NotFoundError,
    OwnershipConflictError,
    SchemaError,
    StoreError,
    UpstreamSecretPendingError,
)
from .naming import dns_names_equal, upstream_certificate_name
from .secrets import gen_secret_for_sync, upsert_target_secret, validate_secret

log = logging.getLogger("cachecert")

# fixed delays, no exponential backoff for these waits
PENDING_RETRY_SECONDS = 2.0
INVALID_SECRET_RETRY_SECONDS = 3.0


class CachedCertificateReconciler:
    """
    Drives one CachedCertificate towards Synced.

    One pass, in order:
      1. default spec.secretName to the CachedCertificate name
      2. derive status.upstreamRef from the DNS names if it is not set yet
      3. fetch the upstream Certificate, creating it when missing
      4. drop the upstreamRef when the upstream DNS names no longer match
      5. wait for cert-manager to produce the upstream secret
      6. build and validate the target secret
      7. create or replace the target secret
      8. mark Synced
    """

    def __init__(
        self,
        store: Store,
        *,
        cache_namespace: str,
        request_timeout: Optional[float] = None,
        pending_retry_seconds: float = PENDING_RETRY_SECONDS,
        invalid_secret_retry_seconds: float = INVALID_SECRET_RETRY_SECONDS,
    ):
        self.store = store
        self.cache_namespace = cache_namespace
        self.request_timeout = request_timeout
        self.pending_retry_seconds = pending_retry_seconds
        self.invalid_secret_retry_seconds = invalid_secret_retry_seconds

    def reconcile(self, key: Key, deadline: Deadline) -> Result:
        namespace, name = key
        store = BoundedStore(self.store, deadline, request_timeout=self.request_timeout)

        try:
            obj = store.get(CACHED_CERTIFICATES, namespace, name)
        except NotFoundError:
            # deleted; the target secret goes with it through its owner reference
            return Result()

        try:
            cert = CachedCertificate.from_k8s_object(obj)
        except ValidationError as exc:
            log.error("cached certificate %s/%s is invalid: %s", namespace, name, exc)
            self._mark_invalid(store, obj)
            return Result()

        return _SyncPass(self, store, cert).run()

    def _mark_invalid(self, store: BoundedStore, obj: Dict[str, Any]) -> None:
        status = obj.get("status") or {}
        if status.get("state") == CachedCertificateState.ERROR.value and not status.get("upstreamReady"):
            return
        meta = obj.get("metadata") or {}
        store.patch_status(
            CACHED_CERTIFICATES,
            meta.get("namespace", ""),
            meta.get("name", ""),
            {"state": CachedCertificateState.ERROR.value, "upstreamReady": False},
        )


class _SyncPass:
    def __init__(self, reconciler: CachedCertificateReconciler, store: BoundedStore, cert: CachedCertificate):
        self.reconciler = reconciler
        self.store = store
        self.cert = cert
        self._persisted = cert.status.model_copy(deep=True)

    @property
    def _ident(self) -> str:
        return "/".join(self.cert.key)

    # ------------------------
    # status
    # ------------------------

    def _update_status(self) -> None:
        if self.cert.status == self._persisted:
            return
        updated = self.store.replace_status(CACHED_CERTIFICATES, self.cert.to_k8s_object())
        self.cert.metadata["resourceVersion"] = (updated.get("metadata") or {}).get(
            "resourceVersion", self.cert.metadata.get("resourceVersion")
        )
        self._persisted = self.cert.status.model_copy(deep=True)
        log.debug(
            "status of %s: state=%s upstreamReady=%s",
            self._ident, self.cert.status.state.value, self.cert.status.upstream_ready,
        )

    def _record_error(self, *, upstream_ready: Optional[bool] = None) -> None:
        """Best-effort Error status; the caller re-raises the original failure."""
        self.cert.status.state = CachedCertificateState.ERROR
        if upstream_ready is not None:
            self.cert.status.upstream_ready = upstream_ready
        try:
            self._update_status()
        except CacheCertError as status_exc:
            log.error("unable to update status on cached certificate %s: %s", self._ident, status_exc)

    # ------------------------
    # upstream
    # ------------------------

    def _create_upstream(self, ref: ObjectReference) -> None:
        doc = build_upstream_certificate(
            name=ref.name,
            namespace=ref.namespace,
            dns_names=self.cert.spec.dns_names,
            issuer_ref=self.cert.spec.issuer_ref,
        )
        try:
            self.store.create(CERTIFICATES, doc)
            log.info("created upstream certificate %s/%s for %s", ref.namespace, ref.name, self._ident)
        except AlreadyExistsError:
            # another CachedCertificate with the same DNS names won the race
            log.debug("upstream certificate %s/%s already exists", ref.namespace, ref.name)

    def _get_upstream_secret(self, upstream: UpstreamCertificate) -> Dict[str, Any]:
        secret_name = upstream.secret_name
        log.info("checking for secret %s referenced by upstream certificate", secret_name)
        try:
            return self.store.get(SECRETS, upstream.namespace, secret_name)
        except NotFoundError as exc:
            raise UpstreamSecretPendingError(
                f"secret {upstream.namespace}/{secret_name} not issued yet"
            ) from exc

    # ------------------------
    # the pass
    # ------------------------

    def run(self) -> Result:
        cert = self.cert
        status = cert.status

        if not cert.spec.secret_name:
            cert.spec.secret_name = cert.name

        if status.upstream_ref is None:
            # speculative: the upstream may not exist yet
            status.upstream_ref = ObjectReference(
                name=upstream_certificate_name(*cert.spec.dns_names),
                namespace=self.reconciler.cache_namespace,
            )

        ref = status.upstream_ref
        try:
            upstream_obj = self.store.get(CERTIFICATES, ref.namespace, ref.name)
        except NotFoundError:
            try:
                self._create_upstream(ref)
            except StoreError as exc:
                log.error("unable to create upstream certificate %s/%s: %s", ref.namespace, ref.name, exc)
                self._record_error()
                raise
            self._update_status()
            return Result(requeue=True)
        except StoreError as exc:
            log.error("unexpected error getting upstream certificate %s/%s: %s", ref.namespace, ref.name, exc)
            self._record_error()
            raise

        upstream = UpstreamCertificate(upstream_obj)
        try:
            upstream_dns_names = upstream.dns_names
        except SchemaError as exc:
            log.error("upstream certificate %s/%s has bad dnsNames: %s", ref.namespace, ref.name, exc)
            self._record_error()
            raise

        if not dns_names_equal(upstream_dns_names, cert.spec.dns_names):
            # stale binding: start over and re-derive (or re-use) an upstream
            log.info("dnsNames of %s changed, releasing upstream %s", self._ident, ref.name)
            status.state = CachedCertificateState.PENDING
            status.upstream_ready = False
            status.upstream_ref = None
            self._update_status()
            return Result()

        try:
            upstream_secret = self._get_upstream_secret(upstream)
        except UpstreamSecretPendingError as exc:
            log.info("waiting on upstream for %s: %s", self._ident, exc)
            status.state = CachedCertificateState.PENDING
            status.upstream_ready = False
            self._update_status()
            return Result(requeue_after=self.reconciler.pending_retry_seconds)
        except (SchemaError, StoreError) as exc:
            log.error("unable to get upstream secret for %s: %s", self._ident, exc)
            self._record_error(upstream_ready=False)
            raise

        status.upstream_ready = True
        self._update_status()

        try:
            secret = gen_secret_for_sync(cert, upstream, upstream_secret)
            validate_secret(secret)
        except InvalidSecretError as exc:
            log.warning("upstream secret for %s is not usable yet: %s", self._ident, exc)
            return Result(requeue_after=self.reconciler.invalid_secret_retry_seconds)

        try:
            upsert_target_secret(self.store, secret)
        except (OwnershipConflictError, StoreError) as exc:
            log.error("unable to sync target secret for %s: %s", self._ident, exc)
            self._record_error()
            raise

        status.state = CachedCertificateState.SYNCED
        self._update_status()
        return Result()
