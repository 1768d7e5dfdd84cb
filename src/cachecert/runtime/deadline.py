# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/runtime/deadline.py

from __future__ import annotations

import time
from typing import Callable, Optional

from cachecert.controllers.errors import DeadlineExceededError


class Deadline:
    """
    Cooperative deadline for one reconcile pass.

    Nothing is interrupted; callers check before every side effect so a pass
    that ran out of time stops before applying anything further.
    """

    def __init__(self, seconds: Optional[float], *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    @classmethod
    def none(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, what: str = "reconcile") -> None:
        if self.expired():
            raise DeadlineExceededError(f"deadline exceeded before {what}")

    def timeout(self, per_call: Optional[float]) -> Optional[float]:
        """Timeout for the next API call: the smaller of per_call and what is left."""
        remaining = self.remaining()
        if remaining is None:
            return per_call
        if per_call is None:
            return remaining
        return min(per_call, remaining)
