"""
Transaction-log scanner - Main Entrypoint.

Single-process asyncio runner: builds a SimpleLogWatcher from
config/watcher.json (.env overrides apply), then runs the scan driver until
SIGINT/SIGTERM. Matching logs are written as JSON lines to
logs/Event_Logs/events.jsonl.

Usage:
    python main.py
    SCANNER_RPC_URLS=https://a,https://b SCAN_START_BLOCK=45000000 python main.py
"""

from __future__ import annotations

import asyncio
import signal
import sys

from dotenv import load_dotenv

from config.loader import get_config
from config.validate import ConfigValidationError, validate_all_configs
from scanner_logging.logger_manager import create_module_log_directories, setup_module_logger
from shared.serialization_utils import log_event_to_json
from shared.types import LogEvent

# ---------------------------------------------------------------------------
# Module loggers (logged to logs/ root, no sub-folder)
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log")


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(watcher_cfg: dict) -> None:
    """Log a concise startup summary."""
    rpc_urls = watcher_cfg["rpc_urls"]
    _logger.info("=" * 60)
    _logger.info("Tx log scanner starting")
    _logger.info("=" * 60)
    for i, url in enumerate(rpc_urls):
        _logger.info("  client_%-9d : %s...%s", i, url[:25], url[-6:] if len(url) > 31 else "")
    _logger.info("  start_block     : %d", watcher_cfg["scan_start_block"])
    _logger.info("  blocks/query    : %d", watcher_cfg["per_scan_block_count"])
    _logger.info("  scan_interval   : %ss", watcher_cfg["scan_interval_seconds"])
    _logger.info("  addresses       : %d", len(watcher_cfg["interested_addresses"]))
    _logger.info("  topics          : %d", len(watcher_cfg["interested_topics"]))
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Task done callback: detect unhandled exceptions
# ---------------------------------------------------------------------------


def _task_done_callback(
    task: asyncio.Task[None],
    shutdown_event: asyncio.Event,
) -> None:
    """Called when the scanner task finishes (normally or with error)."""
    try:
        exc = task.exception()
    except asyncio.CancelledError:
        _logger.info("Task %s cancelled", task.get_name())
        return

    if exc is not None:
        _logger.critical(
            "Task %s failed with unhandled exception: %s",
            task.get_name(),
            exc,
            exc_info=exc,
        )
    shutdown_event.set()


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run() -> None:
    """Wire the watcher and driver, then run until a shutdown signal."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        sys.exit(1)

    watcher_cfg = get_config().get_watcher_config()
    _log_banner(watcher_cfg)

    # ------------------------------------------------------------------
    # 2. Event sink + watcher + driver
    # ------------------------------------------------------------------
    from core.scan_driver import ScanDriver
    from core.watcher import SimpleLogWatcher

    create_module_log_directories()
    event_sink = setup_module_logger(
        "events", "events.jsonl", module_folder="Event_Logs", use_raw_formatter=True, console=False
    )

    def _write_event(event: LogEvent) -> None:
        event_sink.info(log_event_to_json(event))

    watcher = SimpleLogWatcher(
        rpc_urls=watcher_cfg["rpc_urls"],
        scan_start_block=watcher_cfg["scan_start_block"],
        callback=_write_event,
        per_scan_block_count=watcher_cfg["per_scan_block_count"],
        scan_interval_seconds=watcher_cfg["scan_interval_seconds"],
        interested_addresses=watcher_cfg["interested_addresses"],
        interested_topics=watcher_cfg["interested_topics"],
    )
    driver = ScanDriver(watcher)

    # ------------------------------------------------------------------
    # 3. Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating graceful shutdown", sig.name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    # ------------------------------------------------------------------
    # 4. Launch the scanner and wait
    # ------------------------------------------------------------------
    task = asyncio.create_task(driver.run(), name="txlog_scanner")
    task.add_done_callback(lambda done_task: _task_done_callback(done_task, shutdown_event))

    try:
        await shutdown_event.wait()
    finally:
        _logger.info("Shutting down, stopping scanner")
        driver.stop()
        try:
            await asyncio.wait_for(task, timeout=10)
        except asyncio.TimeoutError:
            _logger.warning("Scanner did not stop within 10s; cancelling")
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        except Exception as exc:
            _logger.error("Scanner exited with error: %s", exc)
        _logger.info(
            "Shutdown complete at block %d", driver.status().last_scanned_block
        )


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    """Synchronous entry point."""
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
