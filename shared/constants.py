"""
Shared constants for the transaction-log scanner.

Default timing values used when config/timing.json omits a key.
"""

# ---------------------------------------------------------------------------
# Endpoint health
# ---------------------------------------------------------------------------

DEFAULT_ENDPOINT_COOLDOWN_SECONDS = 10  # Exclusion window after a failed query
DEFAULT_QUERY_TIMEOUT_SECONDS = 30  # Per eth_getLogs / eth_blockNumber call

# ---------------------------------------------------------------------------
# Scan engine
# ---------------------------------------------------------------------------

# Minimum time without forward progress before an empty batch triggers an
# eth_blockNumber check (chain tip detection).
DEFAULT_TIP_CHECK_GRACE_SECONDS = 10

# ---------------------------------------------------------------------------
# Scan loop driver
# ---------------------------------------------------------------------------

DEFAULT_MAX_CONSECUTIVE_ERRORS = 10
DEFAULT_CIRCUIT_BREAKER_SLEEP_SECONDS = 30
DEFAULT_IDLE_DELAY_SECONDS = 1

# Scan intervals at or below one polling tick mean "no delay"
MIN_SCAN_INTERVAL_SECONDS = 0.001
