"""
Deterministic endpoint selection over the healthy subset.

The block number being scanned picks the endpoint:
``available[current_block % len(available)]``. Consecutive batches spread
round-robin across healthy endpoints, and a given (block, health state)
always resolves to the same endpoint.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.endpoint_health import EndpointHealthTracker


class EndpointRotator:

    def __init__(self, health: EndpointHealthTracker) -> None:
        self._health = health

    def available(self, total: int) -> list[int]:
        return self._health.available_indices(total)

    def select(self, total: int, current_block: int) -> int | None:
        """Return the endpoint index for ``current_block``, or None if all are cooling down."""
        return self.pick(self.available(total), current_block)

    @staticmethod
    def pick(available: list[int], current_block: int) -> int | None:
        if not available:
            return None
        return available[current_block % len(available)]
