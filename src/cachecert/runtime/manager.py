# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/runtime/manager.py

from __future__ import annotations

import logging
import signal
import threading
from typing import List, Optional

from cachecert.api.constants import CACHED_CERTIFICATES, SECRETS
from cachecert.config.models import OperatorSettings
from cachecert.controllers.cached_certificate import CachedCertificateReconciler
from cachecert.controllers.index import DependencyIndex
from cachecert.controllers.upstream_secret import UpstreamSecretReconciler, fanout_predicate
from cachecert.k8s.store import Store

from .controller import Controller
from .events import ChangeEvent, Key
from .informer import Informer
from .queue import WorkQueue

log = logging.getLogger("cachecert")


def controller_owner_keys(event: ChangeEvent) -> List[Key]:
    """Map an owned secret to the CachedCertificate that controls it."""
    namespace = event.metadata.get("namespace", "")
    keys = []
    for ref in event.metadata.get("ownerReferences") or []:
        if (
            ref.get("controller")
            and ref.get("kind") == CACHED_CERTIFICATES.kind
            and ref.get("apiVersion", "").split("/")[0] == CACHED_CERTIFICATES.group
        ):
            keys.append((namespace, ref.get("name", "")))
    return keys


class Manager:
    """
    Wires the operator together:

      - one informer for CachedCertificates, one for Secrets (all namespaces)
      - the CachedCertificate controller, fed by CachedCertificate events and
        by events on the secrets those CachedCertificates own
      - the dependency index, fed by CachedCertificate events
      - the upstream secret controller, fed by filtered cache namespace secret events
    """

    # informer threads blocked on a quiet watch are daemons; do not wait long for them
    INFORMER_STOP_TIMEOUT = 1.0

    def __init__(self, store: Store, settings: OperatorSettings):
        self.store = store
        self.settings = settings
        self.index = DependencyIndex()

        self.certificates = Informer(
            store, CACHED_CERTIFICATES, watch_timeout_seconds=settings.watch_timeout_seconds,
        )
        self.secrets = Informer(
            store, SECRETS, watch_timeout_seconds=settings.watch_timeout_seconds,
        )

        # keep the index ahead of the controllers: it is registered first
        self.certificates.add_handler(self.index.observe)

        self.cert_controller = Controller(
            "cachedcertificate",
            CachedCertificateReconciler(
                store,
                cache_namespace=settings.cache_namespace,
                request_timeout=settings.request_timeout_seconds,
                pending_retry_seconds=settings.pending_retry_seconds,
                invalid_secret_retry_seconds=settings.invalid_secret_retry_seconds,
            ),
            workers=settings.workers,
            reconcile_timeout=settings.reconcile_timeout_seconds,
            queue=self._queue(),
        )
        self.cert_controller.watch(self.certificates)
        self.cert_controller.watch(self.secrets, mapper=controller_owner_keys)

        self.secret_controller = Controller(
            "upstreamsecret",
            UpstreamSecretReconciler(
                store,
                self.index,
                cache_namespace=settings.cache_namespace,
                request_timeout=settings.request_timeout_seconds,
            ),
            workers=1,
            reconcile_timeout=settings.reconcile_timeout_seconds,
            queue=self._queue(),
        )
        self.secret_controller.watch(self.secrets, predicates=[fanout_predicate(settings.cache_namespace)])

        self._stopped = threading.Event()

    def _queue(self) -> WorkQueue:
        return WorkQueue(
            base_delay=self.settings.failure_backoff_base_seconds,
            max_delay=self.settings.failure_backoff_max_seconds,
        )

    def start(self, *, sync_timeout: Optional[float] = 60.0) -> None:
        log.info("starting manager (cache namespace: %s)", self.settings.cache_namespace)
        self.certificates.start()
        self.secrets.start()

        for informer in (self.certificates, self.secrets):
            if not informer.wait_for_sync(sync_timeout):
                raise TimeoutError(f"Timeout waiting for {informer.kind.plural} to sync")

        self.cert_controller.start()
        self.secret_controller.start()

    def stop(self) -> None:
        if self._stopped.is_set():
            return
        log.info("stopping manager")
        self.cert_controller.stop()
        self.secret_controller.stop()
        self.certificates.stop(timeout=self.INFORMER_STOP_TIMEOUT)
        self.secrets.stop(timeout=self.INFORMER_STOP_TIMEOUT)
        self._stopped.set()

    def run(self) -> None:
        """Start and block until SIGINT/SIGTERM."""

        def _signal(signum, _frame):
            log.info("received signal %s", signal.Signals(signum).name)
            self.stop()

        signal.signal(signal.SIGINT, _signal)
        signal.signal(signal.SIGTERM, _signal)

        self.start()
        while not self._stopped.wait(1.0):
            pass
