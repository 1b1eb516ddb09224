"""
Scan loop driver: runs the scan engine pass after pass until stopped.

Tracks the last scanned block across passes, counts consecutive failed
passes and trips a circuit breaker (long sleep) after too many in a row.
Every sleep waits on the stop event, so ``stop()`` takes effect promptly.

Usage:
    driver = ScanDriver(watcher)
    task = asyncio.create_task(driver.run(), name="txlog_scanner")
    ...
    driver.stop()
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

from config.loader import get_config
from core.scan_engine import ScanEngine
from execution.node_client import close_node_clients
from scanner_logging.logger_manager import setup_module_logger
from shared.constants import (
    DEFAULT_CIRCUIT_BREAKER_SLEEP_SECONDS,
    DEFAULT_IDLE_DELAY_SECONDS,
    DEFAULT_MAX_CONSECUTIVE_ERRORS,
    MIN_SCAN_INTERVAL_SECONDS,
)
from shared.types import DriverStatus, PassOutcome, PassResult

if TYPE_CHECKING:
    from core.watcher import TxlogWatcher


class ScannerStartupError(Exception):
    """Raised by ``run()`` when endpoints or the chain ID cannot be obtained at startup."""


class ScanDriver:
    """
    Long-running scan loop for one watcher.

    Failure policy:
        pass succeeded        -> error counter reset
        failed, made progress -> progress kept, error counter unchanged
        failed, no progress   -> error counter + 1
        counter hits the max  -> sleep circuit_breaker_sleep_seconds, reset
    """

    def __init__(self, watcher: TxlogWatcher, engine: ScanEngine | None = None) -> None:
        self._watcher = watcher
        self._engine = engine if engine is not None else ScanEngine(watcher)

        timing_cfg = get_config().get_scanner_timing()
        self._max_consecutive_errors: int = timing_cfg.get(
            "max_consecutive_errors", DEFAULT_MAX_CONSECUTIVE_ERRORS
        )
        self._circuit_breaker_sleep: float = timing_cfg.get(
            "circuit_breaker_sleep_seconds", DEFAULT_CIRCUIT_BREAKER_SLEEP_SECONDS
        )
        self._idle_delay: float = timing_cfg.get("idle_delay_seconds", DEFAULT_IDLE_DELAY_SECONDS)

        # Mutable state
        self._last_scanned_block: int = max(watcher.scan_start_block(), 0) - 1
        self._consecutive_errors: int = 0
        self._passes_completed: int = 0
        self._running: bool = False
        self._stop_event = asyncio.Event()

        self._logger = setup_module_logger(
            "scan_driver", "scan_driver.log", module_folder="Scan_Driver_Logs"
        )

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Main scan loop, designed to be launched as an asyncio.Task."""
        self._running = True
        self._logger.info("Tx log scanner starting at block %d", self._last_scanned_block + 1)
        try:
            await self._log_chain_id()
            interval = self._scan_interval()
            while not self._stop_event.is_set():
                start_block = self._last_scanned_block + 1
                result = await self.run_once()
                if self._stop_event.is_set():
                    break

                if interval > 0:
                    await self._sleep(interval)
                elif result.last_block < start_block:
                    # Nothing moved (tip reached or endpoints cooling); don't spin
                    await self._sleep(self._idle_delay)
        except asyncio.CancelledError:
            self._logger.info("Tx log scanner cancelled")
        finally:
            self._running = False
            self._logger.info(
                "Tx log scanner stopped at block %d after %d passes",
                self._last_scanned_block,
                self._passes_completed,
            )

    def stop(self) -> None:
        """Signal the run loop to stop; interrupts any pending sleep."""
        self._stop_event.set()

    async def run_once(self) -> PassResult:
        """Run one pass from the last scanned block and apply the failure policy."""
        start_block = self._last_scanned_block + 1
        try:
            result = await self._engine.scan_pass(start_block)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.exception("Unexpected error in pass from block %d", start_block)
            result = PassResult(
                last_block=self._last_scanned_block,
                outcome=PassOutcome.ABORTED,
                error=exc,
            )
        self._passes_completed += 1

        progressed = result.last_block > self._last_scanned_block
        if progressed:
            self._last_scanned_block = result.last_block

        if result.failed:
            if not progressed:
                self._consecutive_errors += 1
            self._logger.error(
                "Pass from block %d failed (%s, %d/%d consecutive): %s",
                start_block,
                result.outcome.value,
                self._consecutive_errors,
                self._max_consecutive_errors,
                result.error,
            )
        else:
            self._consecutive_errors = 0

        if self._consecutive_errors >= self._max_consecutive_errors:
            self._logger.warning(
                "Scanning blocks failed %d times in a row, sleeping %ss",
                self._consecutive_errors,
                self._circuit_breaker_sleep,
            )
            await self._sleep(self._circuit_breaker_sleep)
            self._consecutive_errors = 0

        return result

    def status(self) -> DriverStatus:
        return DriverStatus(
            last_scanned_block=self._last_scanned_block,
            consecutive_errors=self._consecutive_errors,
            passes_completed=self._passes_completed,
            running=self._running,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _log_chain_id(self) -> None:
        """Confirm the endpoints answer before looping (fail fast on bad config)."""
        try:
            clients = await self._watcher.endpoints()
        except Exception as exc:
            raise ScannerStartupError(f"Cannot open endpoints: {exc}") from exc

        try:
            if not clients:
                raise ScannerStartupError("Watcher returned no endpoints")
            chain_id = await clients[0].get_chain_id()
        except ScannerStartupError:
            raise
        except Exception as exc:
            raise ScannerStartupError(f"Cannot read chain ID from client_0: {exc}") from exc
        finally:
            await close_node_clients(clients, self._logger)

        self._logger.info(
            "chainID: %d, %d endpoints, filter scanning...", chain_id, len(clients)
        )

    def _scan_interval(self) -> float:
        interval = self._watcher.scan_interval()
        if isinstance(interval, timedelta):
            interval = interval.total_seconds()
        if interval is None or interval <= MIN_SCAN_INTERVAL_SECONDS:
            return 0.0
        return float(interval)

    async def _sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``. Returns True if ``stop()`` ended the wait early."""
        if seconds <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False
