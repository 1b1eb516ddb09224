"""
Per-endpoint cooldown bookkeeping.

An endpoint that fails a query is excluded from selection until its cooldown
elapses. Endpoints are identified by their index in the watcher's ordered
endpoint list; an index with no entry is always available.

Usage:
    health = EndpointHealthTracker()
    health.mark_unavailable(2, 10)
    available = health.available_indices(total=3)   # -> [0, 1]
"""

from __future__ import annotations

import time
from typing import Callable


class EndpointHealthTracker:
    """Cooldown map keyed by endpoint index. One instance per scan engine."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._cooldown_until: dict[int, float] = {}

    def mark_unavailable(self, index: int, duration_seconds: float) -> float:
        """Exclude ``index`` until now + duration. Returns the cooldown deadline."""
        until = self._clock() + duration_seconds
        self._cooldown_until[index] = until
        return until

    def is_available(self, index: int, now: float | None = None) -> bool:
        if now is None:
            now = self._clock()
        return now >= self._cooldown_until.get(index, float("-inf"))

    def available_indices(self, total: int, now: float | None = None) -> list[int]:
        """Indices in [0, total) whose cooldown has elapsed, ascending."""
        if now is None:
            now = self._clock()
        return [i for i in range(total) if self.is_available(i, now)]

    def cooldown_remaining(self, index: int) -> float:
        return max(0.0, self._cooldown_until.get(index, 0.0) - self._clock())

    def reset(self) -> None:
        self._cooldown_until.clear()
