"""
Shared data types for the transaction-log scanner.

Centralized dataclasses and enums used across all modules.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PassOutcome(Enum):
    NO_ENDPOINTS = "no_endpoints"  # Every endpoint is cooling down
    CHAIN_TIP = "chain_tip"  # Node has not produced the next block yet
    CALLBACK_FAILED = "callback_failed"  # on_log_event raised
    ENDPOINTS_FAILED = "endpoints_failed"  # watcher.endpoints() raised
    ABORTED = "aborted"  # Unexpected exception escaped the pass


class BatchKind(Enum):
    """Classification of one eth_getLogs batch."""

    ADVANCED = "advanced"  # Non-empty result, cursor moved past the logs
    EMPTY_MINED = "empty_mined"  # Empty result, range exists on chain
    NOT_YET_MINED = "not_yet_mined"  # Empty result, chain height < range start
    QUERY_ERROR = "query_error"  # Endpoint failed, cooled down


# ---------------------------------------------------------------------------
# Log Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LogEvent:
    """One emitted contract log, as returned by eth_getLogs."""

    address: str
    topics: tuple[str, ...]  # 0x-prefixed 32-byte hex, topic0 first
    block_number: int
    data: bytes
    transaction_hash: str | None = None
    log_index: int | None = None

    @property
    def topic0(self) -> str:
        """Primary topic (event signature hash); empty for anonymous logs."""
        return self.topics[0] if self.topics else ""


# ---------------------------------------------------------------------------
# Scan Result Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PassResult:
    last_block: int  # Highest block fully processed (start - 1 if none)
    outcome: PassOutcome
    error: BaseException | None = None
    events_delivered: int = 0

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class DriverStatus:
    last_scanned_block: int
    consecutive_errors: int
    passes_completed: int
    running: bool
