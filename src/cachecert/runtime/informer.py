# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/runtime/informer.py

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from cachecert.api.constants import ResourceKind
from cachecert.controllers.errors import CacheCertError, WatchExpiredError
from cachecert.k8s.store import Store

from .events import ChangeEvent, ChangeKind, Key, object_key

log = logging.getLogger("cachecert")

Handler = Callable[[ChangeEvent], None]

_WATCH_TYPES = {
    "ADDED": ChangeKind.CREATE,
    "MODIFIED": ChangeKind.UPDATE,
    "DELETED": ChangeKind.DELETE,
}


class Informer:
    """
    List+watch loop for one resource kind.

    Keeps the last seen version of every object so MODIFIED events can be
    delivered with their previous version. A relist (startup or an expired
    watch) is diffed against that cache: known objects come out as updates,
    which lets resourceVersion predicates drop the ones that did not move.
    """

    def __init__(
        self,
        store: Store,
        kind: ResourceKind,
        *,
        namespace: Optional[str] = None,
        watch_timeout_seconds: int = 300,
        error_delay: float = 2.0,
    ):
        self.store = store
        self.kind = kind
        self.namespace = namespace
        self.watch_timeout_seconds = watch_timeout_seconds
        self.error_delay = error_delay

        self._handlers: List[Handler] = []
        self._cache: Dict[Key, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._synced = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._resource_version: Optional[str] = None

    def add_handler(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def wait_for_sync(self, timeout: Optional[float] = None) -> bool:
        return self._synced.wait(timeout)

    # ------------------------
    # event handling
    # ------------------------

    def _dispatch(self, event: ChangeEvent) -> None:
        for handler in self._handlers:
            try:
                handler(event)
            except Exception:
                log.exception("[informer %s] handler failed for %s", self.kind.plural, event.key)

    def handle(self, event_type: str, obj: Dict[str, Any]) -> None:
        kind = _WATCH_TYPES.get(event_type)
        if kind is None:
            log.debug("[informer %s] ignoring %s event", self.kind.plural, event_type)
            return

        key = object_key(obj)
        with self._lock:
            old = self._cache.get(key)
            if kind is ChangeKind.DELETE:
                self._cache.pop(key, None)
            else:
                self._cache[key] = obj

        if kind is ChangeKind.CREATE and old is not None:
            # ADDED for an object we already knew about: a replay after a relist
            kind = ChangeKind.UPDATE
        if kind is ChangeKind.UPDATE and old is None:
            kind = ChangeKind.CREATE

        self._dispatch(ChangeEvent(kind=kind, obj=obj, old=old if kind is ChangeKind.UPDATE else None))

    def relist(self) -> None:
        items, rv = self.store.list(self.kind, self.namespace)
        fresh = {object_key(o): o for o in items}

        with self._lock:
            gone = [(k, o) for k, o in self._cache.items() if k not in fresh]

        for key, obj in fresh.items():
            self.handle("ADDED", obj)
        for key, obj in gone:
            self.handle("DELETED", obj)

        self._resource_version = rv
        self._synced.set()
        log.debug("[informer %s] listed %d objects at resourceVersion %s", self.kind.plural, len(fresh), rv)

    def _watch_once(self) -> None:
        for event_type, obj in self.store.watch(
            self.kind,
            self.namespace,
            resource_version=self._resource_version,
            timeout_seconds=self.watch_timeout_seconds,
            stop=self._stop,
        ):
            if self._stop.is_set():
                return
            rv = (obj.get("metadata") or {}).get("resourceVersion")
            if rv:
                self._resource_version = rv
            self.handle(event_type, obj)

    # ------------------------
    # lifecycle
    # ------------------------

    def run(self) -> None:
        needs_list = True
        while not self._stop.is_set():
            try:
                if needs_list:
                    self.relist()
                    needs_list = False
                self._watch_once()
            except WatchExpiredError:
                log.info("[informer %s] watch expired, relisting", self.kind.plural)
                needs_list = True
            except CacheCertError as exc:
                log.warning("[informer %s] %s; retrying in %.1fs", self.kind.plural, exc, self.error_delay)
                needs_list = True
                self._stop.wait(self.error_delay)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self.run, name=f"informer-{self.kind.plural}", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is None:
            return
        self._thread.join(timeout)
        if self._thread.is_alive():
            log.warning("[informer %s] watch did not stop within %ss", self.kind.plural, timeout)
        self._thread = None
