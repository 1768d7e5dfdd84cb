# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/runtime/controller.py

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Protocol

from .deadline import Deadline
from .events import ChangeEvent, Key, Predicate
from .informer import Informer
from .queue import WorkQueue

log = logging.getLogger("cachecert")


@dataclass(frozen=True)
class Result:
    # run again right away
    requeue: bool = False
    # run again after a fixed delay (seconds)
    requeue_after: Optional[float] = None


class Reconciler(Protocol):
    def reconcile(self, key: Key, deadline: Deadline) -> Result: ...


Mapper = Callable[[ChangeEvent], Iterable[Key]]


def own_key(event: ChangeEvent) -> List[Key]:
    return [event.key]


class Controller:
    """
    Feeds events from one or more informers into a work queue and runs
    ``workers`` threads that reconcile the queued keys.

    The queue never hands the same key to two workers at once, so a
    reconciler only has to deal with concurrency across different keys.
    """

    def __init__(
        self,
        name: str,
        reconciler: Reconciler,
        *,
        workers: int = 1,
        reconcile_timeout: Optional[float] = 30.0,
        queue: Optional[WorkQueue] = None,
    ):
        self.name = name
        self.reconciler = reconciler
        self.workers = workers
        self.reconcile_timeout = reconcile_timeout
        self.queue = queue or WorkQueue()
        self._threads: List[threading.Thread] = []

    def watch(
        self,
        informer: Informer,
        *,
        predicates: Iterable[Predicate] = (),
        mapper: Mapper = own_key,
    ) -> "Controller":
        predicates = list(predicates)

        def _on_event(event: ChangeEvent) -> None:
            if not all(p(event) for p in predicates):
                return
            for key in mapper(event):
                self.queue.add(key)

        informer.add_handler(_on_event)
        return self

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Reconcile one key. Returns False when nothing was ready."""
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False

        try:
            result = self.reconciler.reconcile(key, Deadline(self.reconcile_timeout))
        except Exception as exc:
            delay = self.queue.add_rate_limited(key)
            log.error("[%s] reconcile %s/%s failed: %s (retry in %.2fs)", self.name, key[0], key[1], exc, delay)
            log.debug("[%s] reconcile failure detail", self.name, exc_info=True)
        else:
            self.queue.forget(key)
            if result.requeue_after:
                self.queue.add_after(key, result.requeue_after)
            elif result.requeue:
                self.queue.add(key)
        finally:
            self.queue.done(key)
        return True

    def _worker(self) -> None:
        while not self.queue.shutting_down:
            self.process_next(timeout=0.5)

    def start(self) -> None:
        for i in range(self.workers):
            t = threading.Thread(target=self._worker, name=f"{self.name}-worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        log.info("[%s] started %d workers", self.name, self.workers)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self.queue.shutdown()
        for t in self._threads:
            t.join(timeout)
        self._threads.clear()
