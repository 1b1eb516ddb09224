"""
Node client layer: eth_getLogs / eth_blockNumber over one RPC endpoint.

The scan engine only depends on the ``NodeClient`` protocol; ``Web3NodeClient``
is the production implementation over ``AsyncWeb3(AsyncHTTPProvider(url))``.
Raw log receipts are normalized into immutable ``LogEvent`` values here, so
nothing downstream touches web3 types.

Usage:
    from execution.node_client import open_node_clients

    clients = open_node_clients(["https://bsc-dataseed1.binance.org/"])
    logs = await clients[0].get_logs(45_000_000, 45_000_004)
    await clients[0].close()
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, Sequence

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from config.loader import get_config
from scanner_logging.logger_manager import setup_module_logger
from shared.constants import DEFAULT_QUERY_TIMEOUT_SECONDS
from shared.types import LogEvent


class NodeClientError(Exception):
    """Raised when an RPC call to a node fails."""


class NodeClient(Protocol):
    """Contract for one redundant node endpoint."""

    async def get_logs(self, from_block: int, to_block: int) -> list[LogEvent]:
        """Return logs for [from_block, to_block] inclusive, ordered by block."""

    async def get_block_number(self) -> int:
        """Return the node's current chain height."""

    async def get_chain_id(self) -> int:
        """Return the chain ID reported by the node."""

    async def close(self) -> None:
        """Release the underlying connection."""


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return Web3.to_hex(value)


def log_receipt_to_event(receipt: Mapping[str, Any]) -> LogEvent:
    """Normalize a web3 LogReceipt (AttributeDict or plain dict) into a LogEvent."""
    data = receipt.get("data", b"")
    if isinstance(data, str):
        data = bytes.fromhex(data[2:] if data.startswith("0x") else data)
    tx_hash = receipt.get("transactionHash")
    return LogEvent(
        address=Web3.to_checksum_address(receipt["address"]),
        topics=tuple(_hex(t) for t in receipt.get("topics", [])),
        block_number=int(receipt["blockNumber"]),
        data=bytes(data),
        transaction_hash=_hex(tx_hash) if tx_hash is not None else None,
        log_index=receipt.get("logIndex"),
    )


class Web3NodeClient:
    """
    AsyncWeb3-backed node client.

    Each client owns its own provider so a slow or broken endpoint never
    shares an HTTP session with a healthy one.
    """

    def __init__(self, rpc_url: str, w3: AsyncWeb3 | None = None, index: int = 0) -> None:
        self._rpc_url = rpc_url
        self._index = index

        timing_cfg = get_config().get_scanner_timing()
        timeout: float = timing_cfg.get("query_timeout_seconds", DEFAULT_QUERY_TIMEOUT_SECONDS)

        if w3 is None:
            w3 = AsyncWeb3(
                AsyncHTTPProvider(
                    rpc_url,
                    request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)},
                )
            )
        self._w3 = w3

        self._logger = setup_module_logger(
            "node_client", "node_client.log", module_folder="Node_Client_Logs"
        )

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    def __repr__(self) -> str:
        return f"Web3NodeClient(client_{self._index}, {self._rpc_url[:40]})"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_logs(self, from_block: int, to_block: int) -> list[LogEvent]:
        try:
            receipts = await self._w3.eth.get_logs(
                {"fromBlock": from_block, "toBlock": to_block}
            )
        except Exception as e:
            self._logger.debug(
                "client_%d eth_getLogs [%d, %d] failed: %s", self._index, from_block, to_block, e
            )
            raise NodeClientError(f"eth_getLogs failed on client_{self._index}: {e}") from e

        events = [log_receipt_to_event(r) for r in receipts]
        events.sort(key=lambda ev: (ev.block_number, ev.log_index or 0))
        return events

    async def get_block_number(self) -> int:
        try:
            return int(await self._w3.eth.block_number)
        except Exception as e:
            raise NodeClientError(f"eth_blockNumber failed on client_{self._index}: {e}") from e

    async def get_chain_id(self) -> int:
        try:
            return int(await self._w3.eth.chain_id)
        except Exception as e:
            raise NodeClientError(f"eth_chainId failed on client_{self._index}: {e}") from e

    async def close(self) -> None:
        await self._w3.provider.disconnect()


def open_node_clients(rpc_urls: Sequence[str]) -> list[Web3NodeClient]:
    """Build one client per URL, preserving order (order defines endpoint index)."""
    if not rpc_urls:
        raise NodeClientError("No RPC endpoints configured")
    return [Web3NodeClient(url, index=i) for i, url in enumerate(rpc_urls)]


async def close_node_clients(clients: Sequence[NodeClient], logger: logging.Logger) -> None:
    """Close every client; a failing close is logged and does not stop the others."""
    for i, client in enumerate(clients):
        try:
            await client.close()
        except Exception as e:
            logger.warning("client_%d close failed: %s", i, e)
