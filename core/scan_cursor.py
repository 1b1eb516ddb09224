"""
Range scan cursor: next block to query and the last time the scan moved
forward on real data.
"""

from __future__ import annotations

import time
from typing import Callable


class ScanCursor:
    """
    In-memory scan position, owned by a single ScanEngine.

    ``next_block`` never decreases. ``last_forward_timestamp`` is refreshed
    only when logs were actually retrieved (``advance_to``), so a run of empty
    batches eventually ages past the chain-tip grace window.
    """

    def __init__(self, next_block: int, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.next_block: int = max(0, next_block)
        self.last_forward_timestamp: float = clock()

    @property
    def last_confirmed_block(self) -> int:
        return self.next_block - 1

    def advance_to(self, block: int) -> None:
        """Confirm ``block`` as processed and mark forward progress."""
        self._move(block + 1)
        self.last_forward_timestamp = self._clock()

    def skip_to(self, block: int) -> None:
        """Confirm ``block`` (empty range) without refreshing the progress timestamp."""
        self._move(block + 1)

    def seek(self, block: int) -> bool:
        """Position the cursor at ``block`` for a new pass. Returns False if that would rewind."""
        if block < self.next_block:
            return False
        self.next_block = block
        return True

    def seconds_since_forward(self) -> float:
        return self._clock() - self.last_forward_timestamp

    def _move(self, next_block: int) -> None:
        if next_block > self.next_block:
            self.next_block = next_block

    def __repr__(self) -> str:
        return (
            f"ScanCursor(next_block={self.next_block}, "
            f"last_forward_timestamp={self.last_forward_timestamp:.3f})"
        )
