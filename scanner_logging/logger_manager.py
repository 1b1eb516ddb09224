"""
Centralized logging for the transaction-log scanner.

Every component logs through its own named logger with a dedicated file under
``logs/<module folder>/``. Records are mirrored to stderr unless app.json sets
``logging.console`` to false. The matched-event sink uses the raw formatter
so each line of ``events.jsonl`` is exactly one JSON document.

Usage:
    from scanner_logging.logger_manager import setup_module_logger, create_module_log_directories

    create_module_log_directories()
    logger = setup_module_logger('scan_engine', 'scan_engine.log', module_folder='Scan_Engine_Logs')
    logger.warning("client_%d eth_getLogs error", 1, extra={"endpoint_index": 1})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

_PROJECT_ROOT = Path(__file__).parent.parent

try:
    from config.loader import get_config

    _logging_config = get_config().get_app_config().get("logging", {})
except ImportError:
    _logging_config = {}

_LOG_DIR = str(_PROJECT_ROOT / _logging_config.get("log_dir", "logs"))
_CONSOLE_ENABLED: bool = _logging_config.get("console", True)
# Loggers whose log file is always JSON
_JSON_LOGGERS: frozenset[str] = frozenset(_logging_config.get("json_loggers", ()))
_MODULE_FOLDERS: dict[str, str] = _logging_config.get(
    "module_folders",
    {
        "scan_engine": "Scan_Engine_Logs",
        "scan_driver": "Scan_Driver_Logs",
        "node_client": "Node_Client_Logs",
        "events": "Event_Logs",
    },
)

# ``extra=`` keys copied into structured records
SCAN_EXTRA_FIELDS = ("block_number", "endpoint_index", "address", "topic0", "error")


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with scan context from ``extra=`` when given."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            {key: getattr(record, key) for key in SCAN_EXTRA_FIELDS if hasattr(record, key)}
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``time | LEVEL | logger | message`` lines for files and the console."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)-12s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class RawMessageFormatter(logging.Formatter):
    """Message only; the caller has already serialized the payload."""

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


def _select_formatter(use_json: bool, use_raw: bool) -> logging.Formatter:
    if use_raw:
        return RawMessageFormatter()
    if use_json:
        return JSONFormatter()
    return HumanReadableFormatter()


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_logger_cache: dict[str, logging.Logger] = {}


def create_module_log_directories() -> dict[str, str]:
    """Create ``logs/`` and every configured module folder. Returns key -> path."""
    os.makedirs(_LOG_DIR, exist_ok=True)
    created = {}
    for key, folder_name in _MODULE_FOLDERS.items():
        created[key] = os.path.join(_LOG_DIR, folder_name)
        os.makedirs(created[key], exist_ok=True)
    return created


def _log_path(log_file: str, module_folder: str | None) -> str:
    folder = os.path.join(_LOG_DIR, module_folder) if module_folder else _LOG_DIR
    os.makedirs(folder, exist_ok=True)
    return os.path.join(folder, log_file)


def setup_module_logger(
    name: str,
    log_file: str,
    level: int = logging.INFO,
    module_folder: str | None = None,
    use_json_formatter: bool = False,
    use_raw_formatter: bool = False,
    console: bool | None = None,
) -> logging.Logger:
    """
    Return the logger ``name`` writing to ``logs/[module_folder/]log_file``.

    Loggers are cached by (name, folder, file); a logger that already has
    handlers is returned untouched. Loggers listed in app.json
    ``json_loggers`` always write JSON files. ``console`` defaults to the
    app.json flag; the console mirror is always human-readable. Records do not
    propagate to the root logger.
    """
    cache_key = f"{name}:{module_folder}:{log_file}"
    cached = _logger_cache.get(cache_key)
    if cached is not None:
        return cached

    logger = logging.getLogger(name)
    logger.setLevel(level)
    _logger_cache[cache_key] = logger
    if logger.handlers:
        return logger

    file_handler = logging.FileHandler(_log_path(log_file, module_folder), mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    use_json = use_json_formatter or name in _JSON_LOGGERS
    file_handler.setFormatter(_select_formatter(use_json, use_raw_formatter))
    logger.addHandler(file_handler)

    mirror = _CONSOLE_ENABLED if console is None else console
    if mirror:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(level)
        stream_handler.setFormatter(HumanReadableFormatter())
        logger.addHandler(stream_handler)

    logger.propagate = False
    return logger
