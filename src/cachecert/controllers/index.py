# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/controllers/index.py

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Set

from cachecert.runtime.events import ChangeEvent, ChangeKind, Key

log = logging.getLogger("cachecert")


def upstream_ref_name(obj: dict) -> Optional[str]:
    ref = (obj.get("status") or {}).get("upstreamRef") or {}
    return ref.get("name") or None


class DependencyIndex:
    """
    Upstream Certificate name -> CachedCertificates currently pointing at it.

    Derived entirely from ``status.upstreamRef`` and kept current by feeding
    it the same CachedCertificate events that drive reconciles.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._dependents: Dict[str, Set[Key]] = {}
        self._upstream: Dict[Key, str] = {}

    def observe(self, event: ChangeEvent) -> None:
        if event.kind is ChangeKind.DELETE:
            self.remove(event.key)
        else:
            self.set(event.key, upstream_ref_name(event.obj))

    def set(self, key: Key, upstream: Optional[str]) -> None:
        with self._lock:
            previous = self._upstream.get(key)
            if previous == upstream:
                return
            self._unlink_locked(key)
            if upstream:
                self._upstream[key] = upstream
                self._dependents.setdefault(upstream, set()).add(key)
        log.debug("index: %s/%s -> %s", key[0], key[1], upstream)

    def remove(self, key: Key) -> None:
        with self._lock:
            self._unlink_locked(key)

    def _unlink_locked(self, key: Key) -> None:
        previous = self._upstream.pop(key, None)
        if previous is None:
            return
        keys = self._dependents.get(previous)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._dependents[previous]

    def dependents(self, upstream: str) -> Set[Key]:
        with self._lock:
            return set(self._dependents.get(upstream, ()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._upstream)
