"""
Configuration loader for the transaction-log scanner.

Provides centralized configuration management with .env overrides.

Usage:
    from config.loader import get_config

    config = get_config()
    scanner_timing = config.get_scanner_timing()
    watcher_cfg = config.get_watcher_config()
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        if var_type == list:
            return [item.strip() for item in value.split(",") if item.strip()]
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central configuration manager for the scanner.

    Loads configuration from JSON files in the config/ directory with .env overrides.
    All file accessors are cached via @lru_cache.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self):
        self._config_dir = _CONFIG_DIR
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ------------------------------------------------------------------
    # Core config file loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings (logging)."""
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        """Load timing intervals and timeouts."""
        return _load_json(self._config_dir / "timing.json")

    @lru_cache(maxsize=1)
    def get_watcher_file_config(self) -> Dict[str, Any]:
        """Load the raw watcher definition (endpoints, start block, interests)."""
        return _load_json(self._config_dir / "watcher.json")

    # ------------------------------------------------------------------
    # Derived accessors
    # ------------------------------------------------------------------

    def get_scanner_timing(self) -> Dict[str, Any]:
        """Scanner section of timing.json (cooldowns, tip-check gate, breaker)."""
        return self.get_timing_config().get("scanner", {})

    def get_watcher_config(self) -> Dict[str, Any]:
        """
        Watcher config with environment overrides applied.

        Env vars:
            SCANNER_RPC_URLS       comma-separated endpoint URLs
            SCAN_START_BLOCK       first block to scan
            SCAN_BLOCK_COUNT       blocks per eth_getLogs query
            SCAN_INTERVAL_SECONDS  delay between passes
        """
        raw = dict(self.get_watcher_file_config())
        rpc_urls: List[str] = get_env_var("SCANNER_RPC_URLS", raw.get("rpc_urls", []), list)
        raw["rpc_urls"] = rpc_urls
        raw["scan_start_block"] = get_env_var(
            "SCAN_START_BLOCK", raw.get("scan_start_block", 0), int
        )
        raw["per_scan_block_count"] = get_env_var(
            "SCAN_BLOCK_COUNT", raw.get("per_scan_block_count", 1), int
        )
        raw["scan_interval_seconds"] = get_env_var(
            "SCAN_INTERVAL_SECONDS", raw.get("scan_interval_seconds", 0), float
        )
        raw.setdefault("interested_addresses", [])
        raw.setdefault("interested_topics", [])
        return raw

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear all cached configurations (useful for testing)."""
        for method_name in dir(self):
            method = getattr(self, method_name)
            if hasattr(method, "cache_clear"):
                method.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()
