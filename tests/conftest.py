"""
Shared pytest configuration and fixtures for the scanner tests.

Provides a manual clock, scripted node clients and a recording watcher so
scan passes are fully deterministic.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable
from unittest.mock import MagicMock

import pytest

from core.watcher import TxlogWatcher
from execution.node_client import NodeClientError
from shared.types import LogEvent

# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

USDT_ADDRESS = "0x55d398326f99059fF775485246999027B3197955"
OTHER_ADDRESS = "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d"
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
APPROVAL_TOPIC = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"

STANDARD_SCANNER_TIMING = {
    "endpoint_cooldown_seconds": 10,
    "tip_check_grace_seconds": 10,
    "query_timeout_seconds": 5,
    "max_consecutive_errors": 10,
    "circuit_breaker_sleep_seconds": 30,
    "idle_delay_seconds": 1,
}


def make_log(
    block_number: int,
    address: str = USDT_ADDRESS,
    topic0: str = TRANSFER_TOPIC,
    log_index: int = 0,
) -> LogEvent:
    return LogEvent(
        address=address,
        topics=(topic0,),
        block_number=block_number,
        data=b"\x00" * 32,
        transaction_hash="0x" + f"{block_number:064x}",
        log_index=log_index,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNode:
    """
    Scripted NodeClient.

    ``logs`` are served for any requested range, capped at ``height``.
    ``failures`` is the number of upcoming get_logs calls that raise.
    ``latency`` advances the shared clock on every call.
    """

    def __init__(
        self,
        clock: FakeClock,
        logs: Iterable[LogEvent] = (),
        height: int = 0,
        failures: int = 0,
        latency: float = 0.0,
        chain_id: int = 56,
    ) -> None:
        self.clock = clock
        self.logs = list(logs)
        self.height = height
        self.failures = failures
        self.latency = latency
        self.chain_id = chain_id
        self.log_queries: list[tuple[int, int]] = []
        self.height_queries = 0
        self.close_calls = 0

    async def get_logs(self, from_block: int, to_block: int) -> list[LogEvent]:
        self.clock.advance(self.latency)
        self.log_queries.append((from_block, to_block))
        if self.failures > 0:
            self.failures -= 1
            raise NodeClientError("connection reset by peer")
        upper = min(to_block, self.height)
        return [ev for ev in self.logs if from_block <= ev.block_number <= upper]

    async def get_block_number(self) -> int:
        self.clock.advance(self.latency)
        self.height_queries += 1
        return self.height

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def close(self) -> None:
        self.close_calls += 1


class RecordingWatcher(TxlogWatcher):
    """TxlogWatcher over a fixed set of fake nodes that records deliveries."""

    def __init__(
        self,
        nodes: list[FakeNode],
        start_block: int = 100,
        block_count: int = 5,
        interest: Callable[[str, str], bool] | None = None,
        fail_on_block: int | None = None,
        interval: Any = 0.0,
    ) -> None:
        self.nodes = nodes
        self.start_block = start_block
        self.block_count = block_count
        self.interest = interest or (lambda address, topic0: True)
        self.fail_on_block = fail_on_block
        self.interval = interval
        self.delivered: list[LogEvent] = []
        self.endpoint_calls = 0

    def scan_start_block(self) -> int:
        return self.start_block

    def per_scan_block_count(self) -> int:
        return self.block_count

    async def endpoints(self) -> list:
        self.endpoint_calls += 1
        return list(self.nodes)

    def is_interested(self, address: str, topic0: str) -> bool:
        return self.interest(address, topic0)

    def on_log_event(self, event: LogEvent) -> None:
        if self.fail_on_block is not None and event.block_number == self.fail_on_block:
            raise RuntimeError(f"consumer rejected block {event.block_number}")
        self.delivered.append(event)

    def scan_interval(self) -> Any:
        return self.interval


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_node(fake_clock):
    def _make(**kwargs) -> FakeNode:
        return FakeNode(fake_clock, **kwargs)

    return _make


@pytest.fixture
def make_watcher():
    def _make(nodes, **kwargs) -> RecordingWatcher:
        return RecordingWatcher(nodes, **kwargs)

    return _make


@pytest.fixture
def mock_config_loader():
    """
    Provide a mock ConfigLoader that returns standard scanner timing.

    Usage in tests:
        def test_something(mock_config_loader):
            mock_config_loader.get_scanner_timing.return_value = {...}
    """
    loader = MagicMock()
    loader.get_scanner_timing.return_value = STANDARD_SCANNER_TIMING.copy()
    loader.get_app_config.return_value = {"logging": {"log_dir": "logs"}}
    return loader


@pytest.fixture
def make_log_event():
    return make_log
