"""
Unit tests for core/scan_engine.py.

Tests cover batch classification (advance / empty-but-mined / not-yet-mined /
query error), endpoint cooldown and rotation within a pass, callback failure
semantics, idempotent re-runs, and the scoped endpoint lifecycle.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from execution.node_client import NodeClientError
from shared.types import LogEvent, PassOutcome

USDT_ADDRESS = "0x55d398326f99059fF775485246999027B3197955"
OTHER_ADDRESS = "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_engine(mock_config_loader, fake_clock):
    def _make(watcher, **timing):
        mock_config_loader.get_scanner_timing.return_value.update(timing)
        with patch("core.scan_engine.get_config") as mock_cfg, \
             patch("core.scan_engine.setup_module_logger") as mock_logger:
            mock_cfg.return_value = mock_config_loader
            mock_logger.return_value = MagicMock()

            from core.scan_engine import ScanEngine
            return ScanEngine(watcher, clock=fake_clock)

    return _make


def _usdt_only(address: str, topic0: str) -> bool:
    return address == USDT_ADDRESS


# ---------------------------------------------------------------------------
# A. End-to-end scenarios
# ---------------------------------------------------------------------------


class TestScenarios:

    @pytest.mark.asyncio
    async def test_delivers_only_interesting_logs_and_stops_at_tip(
        self, make_engine, make_node, make_watcher, make_log_event
    ):
        logs = [
            make_log_event(block, address=USDT_ADDRESS if block in (101, 103) else OTHER_ADDRESS)
            for block in range(100, 105)
        ]
        node = make_node(logs=logs, height=104, latency=11)
        watcher = make_watcher([node], start_block=100, block_count=5, interest=_usdt_only)
        engine = make_engine(watcher)

        result = await engine.scan_pass(100)

        assert [ev.block_number for ev in watcher.delivered] == [101, 103]
        assert engine.cursor.next_block == 105
        assert result.last_block == 104
        assert result.outcome == PassOutcome.CHAIN_TIP
        assert result.error is None
        assert result.events_delivered == 2

    @pytest.mark.asyncio
    async def test_query_error_then_recovery_after_cooldown(
        self, make_engine, make_node, make_watcher, make_log_event, fake_clock
    ):
        logs = [make_log_event(b) for b in (100, 101, 102)]
        node = make_node(logs=logs, height=102, failures=1, latency=11)
        watcher = make_watcher([node], start_block=100, block_count=5)
        engine = make_engine(watcher)

        first = await engine.scan_pass(100)
        assert first.outcome == PassOutcome.NO_ENDPOINTS
        assert first.last_block == 99
        assert first.error is None
        assert not engine.health.is_available(0)

        fake_clock.advance(10)
        second = await engine.scan_pass(first.last_block + 1)

        assert engine.cursor.next_block == 103
        assert second.last_block == 102
        assert second.error is None
        assert len(watcher.delivered) == 3


# ---------------------------------------------------------------------------
# B. Empty result classification
# ---------------------------------------------------------------------------


class TestEmptyBatches:

    @pytest.mark.asyncio
    async def test_height_below_range_is_not_yet_mined(
        self, make_engine, make_node, make_watcher, fake_clock
    ):
        node = make_node(height=99)
        watcher = make_watcher([node], start_block=100)
        engine = make_engine(watcher)
        fake_clock.advance(11)

        result = await engine.scan_pass(100)

        assert result.outcome == PassOutcome.CHAIN_TIP
        assert result.last_block == 99
        assert engine.cursor.next_block == 100
        assert node.log_queries == [(100, 104)]
        assert node.height_queries == 1

    @pytest.mark.asyncio
    async def test_empty_mined_range_advances_one_block_per_batch(
        self, make_engine, make_node, make_watcher
    ):
        node = make_node(height=110)
        watcher = make_watcher([node], start_block=100, block_count=5)
        engine = make_engine(watcher, tip_check_grace_seconds=0)

        result = await engine.scan_pass(100)

        assert [q[0] for q in node.log_queries] == list(range(100, 112))
        assert all(to - frm == 4 for frm, to in node.log_queries)
        assert engine.cursor.next_block == 111
        assert result.outcome == PassOutcome.CHAIN_TIP

    @pytest.mark.asyncio
    async def test_empty_batches_inside_grace_window_skip_height_check(
        self, make_engine, make_node, make_watcher
    ):
        node = make_node(height=500)
        original = node.get_logs

        async def flaky(from_block, to_block):
            if len(node.log_queries) >= 3:
                node.failures = 1
            return await original(from_block, to_block)

        node.get_logs = flaky
        watcher = make_watcher([node], start_block=100)
        engine = make_engine(watcher)

        result = await engine.scan_pass(100)

        assert node.height_queries == 0
        assert engine.cursor.next_block == 103
        assert result.outcome == PassOutcome.NO_ENDPOINTS

    @pytest.mark.asyncio
    async def test_empty_advance_does_not_refresh_progress_timestamp(
        self, make_engine, make_node, make_watcher, fake_clock
    ):
        node = make_node(height=100, latency=4)
        watcher = make_watcher([node], start_block=100)
        engine = make_engine(watcher)
        stamp = engine.cursor.last_forward_timestamp

        await engine.scan_pass(100)

        assert engine.cursor.last_forward_timestamp == stamp
        assert node.height_queries >= 1

    @pytest.mark.asyncio
    async def test_failed_height_query_cools_endpoint(
        self, make_engine, make_node, make_watcher, fake_clock
    ):
        node = make_node(height=200)
        node.get_block_number = AsyncMock(side_effect=NodeClientError("timeout"))
        watcher = make_watcher([node], start_block=100)
        engine = make_engine(watcher)
        fake_clock.advance(11)

        result = await engine.scan_pass(100)

        assert result.outcome == PassOutcome.NO_ENDPOINTS
        assert engine.cursor.next_block == 100
        assert not engine.health.is_available(0)


# ---------------------------------------------------------------------------
# C. Non-empty results
# ---------------------------------------------------------------------------


class TestNonEmptyBatches:

    @pytest.mark.asyncio
    async def test_partial_page_advances_to_last_block_present(
        self, make_engine, make_node, make_watcher, make_log_event
    ):
        node = make_node()
        node.get_logs = AsyncMock(
            side_effect=[[make_log_event(100), make_log_event(101)], NodeClientError("reset")]
        )
        watcher = make_watcher([node], start_block=100, block_count=5)
        engine = make_engine(watcher)

        result = await engine.scan_pass(100)

        assert engine.cursor.next_block == 102
        assert result.last_block == 101
        assert node.get_logs.await_args_list[1].args == (102, 106)

    @pytest.mark.asyncio
    async def test_logs_below_cursor_are_not_delivered(
        self, make_engine, make_node, make_watcher, make_log_event
    ):
        node = make_node()
        node.get_logs = AsyncMock(
            side_effect=[[make_log_event(98), make_log_event(100)], NodeClientError("reset")]
        )
        watcher = make_watcher([node], start_block=100)
        engine = make_engine(watcher)

        await engine.scan_pass(100)

        assert [ev.block_number for ev in watcher.delivered] == [100]
        assert engine.cursor.next_block == 101

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(
        self, make_engine, make_node, make_watcher, make_log_event
    ):
        node = make_node(logs=[make_log_event(100), make_log_event(101)], height=101, latency=11)
        watcher = make_watcher([node], start_block=100)
        watcher.on_log_event = AsyncMock()
        engine = make_engine(watcher)

        result = await engine.scan_pass(100)

        assert watcher.on_log_event.await_count == 2
        assert result.events_delivered == 2

    @pytest.mark.asyncio
    async def test_anonymous_log_passes_empty_topic0(
        self, make_engine, make_node, make_watcher, make_log_event
    ):
        anonymous = LogEvent(address=USDT_ADDRESS, topics=(), block_number=100, data=b"")
        seen = []
        node = make_node(logs=[anonymous], height=100, latency=11)
        watcher = make_watcher(
            [node], start_block=100, interest=lambda a, t: seen.append((a, t)) or False
        )
        engine = make_engine(watcher)

        await engine.scan_pass(100)

        assert seen == [(USDT_ADDRESS, "")]
        assert engine.cursor.next_block == 101


# ---------------------------------------------------------------------------
# D. Callback failure and idempotence
# ---------------------------------------------------------------------------


class TestCallbackFailure:

    @pytest.mark.asyncio
    async def test_callback_failure_aborts_without_committing_batch(
        self, make_engine, make_node, make_watcher, make_log_event
    ):
        logs = [make_log_event(b) for b in (100, 101, 102)]
        node = make_node(logs=logs, height=102, latency=11)
        watcher = make_watcher([node], start_block=100, fail_on_block=101)
        engine = make_engine(watcher)

        result = await engine.scan_pass(100)

        assert result.outcome == PassOutcome.CALLBACK_FAILED
        assert isinstance(result.error, RuntimeError)
        assert result.last_block == 99
        assert result.events_delivered == 1
        assert engine.cursor.next_block == 100
        assert node.close_calls == 1

    @pytest.mark.asyncio
    async def test_retry_after_failure_redelivers_uncommitted_batch(
        self, make_engine, make_node, make_watcher, make_log_event
    ):
        logs = [make_log_event(b) for b in (100, 101, 102)]
        node = make_node(logs=logs, height=102, latency=11)
        watcher = make_watcher([node], start_block=100, fail_on_block=101)
        engine = make_engine(watcher)

        failed = await engine.scan_pass(100)
        watcher.fail_on_block = None
        retried = await engine.scan_pass(failed.last_block + 1)

        assert [ev.block_number for ev in watcher.delivered] == [100, 100, 101, 102]
        assert retried.last_block == 102

    @pytest.mark.asyncio
    async def test_rerun_from_confirmed_block_does_not_redeliver(
        self, make_engine, make_node, make_watcher, make_log_event
    ):
        logs = [make_log_event(b) for b in (100, 101, 102)]
        node = make_node(logs=logs, height=102, latency=11)
        watcher = make_watcher([node], start_block=100)
        engine = make_engine(watcher)

        await engine.scan_pass(100)
        delivered_before = list(watcher.delivered)
        result = await engine.scan_pass(100)

        assert watcher.delivered == delivered_before
        assert result.events_delivered == 0
        assert node.log_queries[-1] == (103, 107)

    @pytest.mark.asyncio
    async def test_predicate_failure_counts_as_callback_failure(
        self, make_engine, make_node, make_watcher, make_log_event
    ):
        def broken(address, topic0):
            raise ValueError("bad predicate")

        node = make_node(logs=[make_log_event(100)], height=100)
        watcher = make_watcher([node], start_block=100, interest=broken)
        engine = make_engine(watcher)

        result = await engine.scan_pass(100)

        assert result.outcome == PassOutcome.CALLBACK_FAILED
        assert isinstance(result.error, ValueError)


# ---------------------------------------------------------------------------
# E. Endpoint selection and lifecycle
# ---------------------------------------------------------------------------


class TestEndpoints:

    @pytest.mark.asyncio
    async def test_cooled_endpoint_is_skipped_for_rest_of_pass(
        self, make_engine, make_node, make_watcher, make_log_event
    ):
        logs = [make_log_event(b) for b in range(100, 106)]
        nodes = [
            make_node(logs=logs, height=105),
            make_node(logs=logs, height=105, failures=100),
            make_node(logs=logs, height=105),
        ]
        watcher = make_watcher(nodes, start_block=100, block_count=1)
        engine = make_engine(watcher, tip_check_grace_seconds=0)

        result = await engine.scan_pass(100)

        # 100 % 3 == 1 selects the failing endpoint first, then only 0 and 2
        assert nodes[1].log_queries == [(100, 100)]
        served = sorted(q[0] for n in (nodes[0], nodes[2]) for q in n.log_queries)
        assert served == list(range(100, 107))
        assert engine.cursor.next_block == 106
        assert result.error is None

    @pytest.mark.asyncio
    async def test_endpoint_acquisition_failure(self, make_engine, make_watcher):
        watcher = make_watcher([], start_block=100)
        watcher.endpoints = AsyncMock(side_effect=NodeClientError("dns failure"))
        engine = make_engine(watcher)

        result = await engine.scan_pass(100)

        assert result.outcome == PassOutcome.ENDPOINTS_FAILED
        assert isinstance(result.error, NodeClientError)
        assert result.last_block == 99

    @pytest.mark.asyncio
    async def test_no_endpoints_configured_ends_pass_quietly(self, make_engine, make_watcher):
        watcher = make_watcher([], start_block=100)
        engine = make_engine(watcher)

        result = await engine.scan_pass(100)

        assert result.outcome == PassOutcome.NO_ENDPOINTS
        assert result.error is None

    @pytest.mark.asyncio
    async def test_all_endpoints_closed_after_pass(self, make_engine, make_node, make_watcher):
        nodes = [make_node(height=99), make_node(height=99)]
        watcher = make_watcher(nodes, start_block=100)
        engine = make_engine(watcher, tip_check_grace_seconds=0)

        await engine.scan_pass(100)
        await engine.scan_pass(100)

        assert [n.close_calls for n in nodes] == [2, 2]
        assert watcher.endpoint_calls == 2

    @pytest.mark.asyncio
    async def test_slow_query_times_out_and_cools_endpoint(
        self, make_engine, make_node, make_watcher
    ):
        node = make_node(height=200)

        async def hang(from_block, to_block):
            await asyncio.sleep(1)
            return []

        node.get_logs = hang
        watcher = make_watcher([node], start_block=100)
        engine = make_engine(watcher, query_timeout_seconds=0.01)

        result = await engine.scan_pass(100)

        assert result.outcome == PassOutcome.NO_ENDPOINTS
        assert not engine.health.is_available(0)
        assert engine.cursor.next_block == 100

    @pytest.mark.asyncio
    async def test_cooldown_warning_carries_endpoint_and_block(
        self, make_engine, make_node, make_watcher
    ):
        node = make_node(failures=1)
        watcher = make_watcher([node], start_block=100)
        engine = make_engine(watcher)

        await engine.scan_pass(100)

        extra = engine._logger.warning.call_args.kwargs["extra"]
        assert extra == {"endpoint_index": 0, "block_number": 100}
