"""
Scan engine: one block-advancing pass over the watcher's endpoint pool.

Each iteration picks a healthy endpoint for the cursor's block, queries
eth_getLogs for ``[current, current + per_scan_block_count - 1]`` and
classifies the batch:

    ADVANCED       logs returned; interesting ones delivered, cursor moves to
                   one past the highest block present in the result
    EMPTY_MINED    no logs and the range exists; cursor moves one block
    NOT_YET_MINED  no logs and the node's height is below the range; pass ends
    QUERY_ERROR    endpoint failed; it is cooled down and the loop retries

An empty batch is only checked against eth_blockNumber once
``tip_check_grace_seconds`` have passed without forward progress; inside
that window it is assumed mined.

Usage:
    engine = ScanEngine(watcher)
    result = await engine.scan_pass(45_000_000)
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import TYPE_CHECKING, Callable, Sequence

from config.loader import get_config
from core.endpoint_health import EndpointHealthTracker
from core.endpoint_rotator import EndpointRotator
from core.scan_cursor import ScanCursor
from execution.node_client import close_node_clients
from scanner_logging.logger_manager import setup_module_logger
from shared.constants import (
    DEFAULT_ENDPOINT_COOLDOWN_SECONDS,
    DEFAULT_QUERY_TIMEOUT_SECONDS,
    DEFAULT_TIP_CHECK_GRACE_SECONDS,
)
from shared.types import BatchKind, LogEvent, PassOutcome, PassResult

if TYPE_CHECKING:
    from core.watcher import TxlogWatcher
    from execution.node_client import NodeClient


class CallbackFailedError(Exception):
    """Raised inside a pass when the watcher's predicate or callback fails."""

    def __init__(self, event: LogEvent, cause: BaseException) -> None:
        super().__init__(
            f"on_log_event failed at block {event.block_number} "
            f"(log {event.log_index}): {cause}"
        )
        self.event = event
        self.cause = cause


class ScanEngine:
    """
    Owns the cursor and endpoint health for a single watcher.

    Never share an engine (or its cursor / health tracker) between watchers;
    run one engine per watcher instead.
    """

    def __init__(
        self,
        watcher: TxlogWatcher,
        health: EndpointHealthTracker | None = None,
        cursor: ScanCursor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._watcher = watcher
        self._clock = clock

        timing_cfg = get_config().get_scanner_timing()
        self._cooldown_seconds: float = timing_cfg.get(
            "endpoint_cooldown_seconds", DEFAULT_ENDPOINT_COOLDOWN_SECONDS
        )
        self._tip_check_grace: float = timing_cfg.get(
            "tip_check_grace_seconds", DEFAULT_TIP_CHECK_GRACE_SECONDS
        )
        self._query_timeout: float = timing_cfg.get(
            "query_timeout_seconds", DEFAULT_QUERY_TIMEOUT_SECONDS
        )

        self._health = health if health is not None else EndpointHealthTracker(clock)
        self._rotator = EndpointRotator(self._health)
        self._cursor = (
            cursor if cursor is not None else ScanCursor(watcher.scan_start_block(), clock)
        )
        self._delivered = 0

        self._logger = setup_module_logger(
            "scan_engine", "scan_engine.log", module_folder="Scan_Engine_Logs"
        )

    @property
    def cursor(self) -> ScanCursor:
        return self._cursor

    @property
    def health(self) -> EndpointHealthTracker:
        return self._health

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def scan_pass(self, start_block: int) -> PassResult:
        """
        Scan forward from ``start_block`` until no endpoint is usable, the
        chain tip is reached, or the callback fails.

        Endpoints are acquired once for the pass and closed when it ends.
        A start block behind the cursor is ignored so confirmed blocks are
        never delivered twice.
        """
        if not self._cursor.seek(start_block):
            self._logger.warning(
                "Pass requested from block %d but cursor is at %d; resuming at cursor",
                start_block,
                self._cursor.next_block,
            )
        first_block = self._cursor.next_block
        self._delivered = 0

        try:
            clients = await self._watcher.endpoints()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.error("Could not acquire endpoints: %s", exc)
            return PassResult(
                last_block=self._cursor.last_confirmed_block,
                outcome=PassOutcome.ENDPOINTS_FAILED,
                error=exc,
            )

        try:
            result = await self._run_pass(clients)
        finally:
            await close_node_clients(clients, self._logger)

        self._logger.info(
            "Pass %s: blocks %d..%d confirmed, %d events delivered",
            result.outcome.value,
            first_block,
            result.last_block,
            result.events_delivered,
        )
        return result

    async def _run_pass(self, clients: Sequence[NodeClient]) -> PassResult:
        batch_size = max(1, int(self._watcher.per_scan_block_count()))

        while True:
            current = self._cursor.next_block
            index = self._rotator.select(len(clients), current)
            if index is None:
                self._logger.info(
                    "No available endpoints (%d configured); pausing at block %d",
                    len(clients),
                    current,
                )
                return self._result(PassOutcome.NO_ENDPOINTS)

            try:
                kind = await self._scan_batch(clients[index], index, current, batch_size)
            except CallbackFailedError as exc:
                self._logger.error(
                    "%s; pass aborted, last confirmed block %d",
                    exc,
                    self._cursor.last_confirmed_block,
                )
                return self._result(PassOutcome.CALLBACK_FAILED, exc.cause)

            if kind is BatchKind.NOT_YET_MINED:
                return self._result(PassOutcome.CHAIN_TIP)

    def _result(self, outcome: PassOutcome, error: BaseException | None = None) -> PassResult:
        return PassResult(
            last_block=self._cursor.last_confirmed_block,
            outcome=outcome,
            error=error,
            events_delivered=self._delivered,
        )

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def _scan_batch(
        self, client: NodeClient, index: int, current: int, batch_size: int
    ) -> BatchKind:
        to_block = current + batch_size - 1
        self._logger.debug(
            "Scanning blocks %d..%d tx logs on client_%d", current, to_block, index
        )

        try:
            events = await asyncio.wait_for(
                client.get_logs(current, to_block), timeout=self._query_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._cool_down(index, "eth_getLogs", exc)
            return BatchKind.QUERY_ERROR

        # Anything below the cursor is already confirmed
        in_range = [ev for ev in events if current <= ev.block_number <= to_block]
        if not in_range:
            kind = await self._classify_empty(client, index, current)
            if kind is BatchKind.EMPTY_MINED:
                self._cursor.skip_to(current)
            return kind

        for event in in_range:
            await self._deliver(event)

        highest = max(ev.block_number for ev in in_range)
        if highest < to_block:
            self._logger.debug(
                "Result covers blocks up to %d of %d; advancing to %d only",
                highest,
                to_block,
                highest,
            )
        self._cursor.advance_to(highest)
        return BatchKind.ADVANCED

    async def _classify_empty(self, client: NodeClient, index: int, current: int) -> BatchKind:
        """Tell an empty-but-mined range from one the node has not produced yet."""
        idle = self._cursor.seconds_since_forward()
        if idle < self._tip_check_grace:
            return BatchKind.EMPTY_MINED

        try:
            height = await asyncio.wait_for(
                client.get_block_number(), timeout=self._query_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._cool_down(index, "eth_blockNumber", exc)
            return BatchKind.QUERY_ERROR

        if height < current:
            self._logger.debug(
                "Chain height %d on client_%d is below block %d; not yet mined",
                height,
                index,
                current,
            )
            return BatchKind.NOT_YET_MINED
        return BatchKind.EMPTY_MINED

    async def _deliver(self, event: LogEvent) -> None:
        try:
            if not self._watcher.is_interested(event.address, event.topic0):
                return
            outcome = self._watcher.on_log_event(event)
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise CallbackFailedError(event, exc) from exc
        self._delivered += 1

    def _cool_down(self, index: int, call: str, exc: BaseException) -> None:
        self._health.mark_unavailable(index, self._cooldown_seconds)
        reason = "timed out" if isinstance(exc, asyncio.TimeoutError) else str(exc)
        self._logger.warning(
            "client_%d %s error, sleep %ss: %s",
            index,
            call,
            self._cooldown_seconds,
            reason,
            extra={"endpoint_index": index, "block_number": self._cursor.next_block},
        )
