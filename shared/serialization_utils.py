"""
Serialization utilities for the transaction-log scanner.

Provides JSON encoding for LogEvent, HexBytes, raw bytes and large integers.

Usage:
    from shared.serialization_utils import LogEventEncoder
    json.dumps(event, cls=LogEventEncoder)
"""

import dataclasses
import json
from json import JSONEncoder
from typing import Any

from hexbytes import HexBytes

from shared.types import LogEvent


def _to_hex(value: bytes) -> str:
    """0x-prefixed hex (HexBytes.hex() drops the prefix on hexbytes>=1.0)."""
    return "0x" + bytes(value).hex()


class LogEventEncoder(JSONEncoder):
    """
    JSON encoder for scanner payloads.

    Sources:
    - RFC 7159 section 6 (JSON number limits)
    - IEEE 754-2008 (double precision safe integer limit: 2^53 - 1)
    """

    # IEEE 754 double precision safe integer limit
    _MAX_SAFE_INTEGER = 2**53 - 1

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (HexBytes, bytes, bytearray)):
            return _to_hex(obj)
        # Handle web3.py AttributeDict (raw log receipts)
        if hasattr(obj, "__iter__") and hasattr(obj, "keys"):
            return dict(obj)
        return super().default(obj)

    def encode(self, obj: Any) -> str:
        """Override encode to normalize LogEvents and large integers first."""
        return super().encode(self._normalize(obj))

    def _normalize(self, obj: Any) -> Any:
        """
        Recursively flatten LogEvents and stringify integers beyond the IEEE 754
        safe range (uint256 values from log topics decoded by consumers).
        """
        if isinstance(obj, LogEvent):
            payload = {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
            payload["topics"] = list(obj.topics)
            return self._normalize(payload)
        if isinstance(obj, dict):
            return {k: self._normalize(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [self._normalize(item) for item in obj]
        elif isinstance(obj, (HexBytes, bytes, bytearray)):
            return _to_hex(obj)
        elif isinstance(obj, int) and not isinstance(obj, bool) and (
            obj > self._MAX_SAFE_INTEGER or obj < -self._MAX_SAFE_INTEGER
        ):
            return str(obj)
        return obj


def log_event_to_json(event: LogEvent) -> str:
    """Single-line JSON representation of a LogEvent."""
    return json.dumps(event, cls=LogEventEncoder, separators=(",", ":"))
