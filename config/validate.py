"""
Configuration schema validation for the transaction-log scanner.

Validates that all required config files exist and contain required keys.
Run at startup to fail fast on misconfiguration.
"""

from typing import Any

from config.loader import get_config


class ConfigValidationError(ValueError):
    """Raised when a required config key is missing or invalid."""

    pass


def _check_keys(config: dict[str, Any], required_keys: list[str], config_name: str) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        parts = key.split(".")
        current = config
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                missing.append(key)
                break
            current = current[part]
    return missing


def validate_timing_config(config: dict[str, Any]) -> list[str]:
    """Validate timing.json has the scanner section and its required fields."""
    errors = _check_keys(
        config,
        [
            "scanner.endpoint_cooldown_seconds",
            "scanner.tip_check_grace_seconds",
            "scanner.max_consecutive_errors",
            "scanner.circuit_breaker_sleep_seconds",
        ],
        "timing.json",
    )
    if not errors:
        breaker = config["scanner"]["max_consecutive_errors"]
        if not isinstance(breaker, int) or breaker < 1:
            errors.append("scanner.max_consecutive_errors: must be an integer >= 1")
    return errors


def validate_watcher_config(config: dict[str, Any]) -> list[str]:
    """Validate the (env-overridden) watcher config."""
    errors = _check_keys(
        config,
        [
            "rpc_urls",
            "scan_start_block",
            "per_scan_block_count",
        ],
        "watcher.json",
    )
    if errors:
        return errors

    rpc_urls = config.get("rpc_urls", [])
    if not isinstance(rpc_urls, list) or len(rpc_urls) == 0:
        errors.append("rpc_urls: must be a non-empty list")
    if not isinstance(config["scan_start_block"], int) or config["scan_start_block"] < 0:
        errors.append("scan_start_block: must be an integer >= 0")
    if not isinstance(config["per_scan_block_count"], int) or config["per_scan_block_count"] < 1:
        errors.append("per_scan_block_count: must be an integer >= 1")
    if not config.get("interested_addresses") and not config.get("interested_topics"):
        errors.append("interested_addresses/interested_topics: at least one must be non-empty")
    return errors


def validate_all_configs() -> None:
    """
    Validate all config files. Raises ConfigValidationError with details
    if any required keys are missing.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        "timing.json": (loader.get_timing_config, validate_timing_config),
        "watcher.json": (loader.get_watcher_config, validate_watcher_config),
    }

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - invalid: {error}")
        raise ConfigValidationError("\n".join(lines))
