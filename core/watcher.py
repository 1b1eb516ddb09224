"""
Watcher contract: what a consumer supplies to the scanner.

``TxlogWatcher`` is the capability set the scan engine and driver consume
(start block, batch width, endpoints, interest predicate, delivery callback,
inter-pass delay). ``SimpleLogWatcher`` is a ready-made implementation that
matches logs by contract address and/or primary topic.

Usage:
    watcher = SimpleLogWatcher(rpc_urls, scan_start_block=45_000_000, callback=handle)
    watcher.add_interested_address("0x55d398326f99059fF775485246999027B3197955")
    await ScanDriver(watcher).run()
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, Sequence

from execution.node_client import NodeClient, open_node_clients
from shared.types import LogEvent

LogCallback = Callable[[LogEvent], "Awaitable[Any] | Any"]


class TxlogWatcher(ABC):
    """Abstract capability set implemented by scanner consumers."""

    @abstractmethod
    def scan_start_block(self) -> int:
        """Block to start from when no prior progress exists."""

    @abstractmethod
    def per_scan_block_count(self) -> int:
        """Blocks per eth_getLogs query (>= 1)."""

    @abstractmethod
    async def endpoints(self) -> list[NodeClient]:
        """
        Open connections to the redundant nodes, in a stable order.

        The scanner closes every returned client when the pass ends.
        """

    @abstractmethod
    def is_interested(self, address: str, topic0: str) -> bool:
        """Interest predicate over (contract address, primary topic)."""

    @abstractmethod
    def on_log_event(self, event: LogEvent) -> Awaitable[Any] | Any:
        """
        Deliver a matching log. May be sync or async.

        Raising aborts the current pass; the same log can be delivered again on
        the retry, so handlers should be idempotent (dedupe on block + log index).
        """

    def scan_interval(self) -> float:
        """Seconds between passes. Values at or below one polling tick mean no delay."""
        return 0.0


class SimpleLogWatcher(TxlogWatcher):
    """
    Address / topic0 interest sets backed by a fixed list of RPC URLs.

    A log is interesting when its address OR its primary topic is registered.
    Both comparisons are case-insensitive.
    """

    def __init__(
        self,
        rpc_urls: Sequence[str],
        scan_start_block: int,
        callback: LogCallback,
        per_scan_block_count: int = 1,
        scan_interval_seconds: float = 0.0,
        interested_addresses: Iterable[str] = (),
        interested_topics: Iterable[str] = (),
    ) -> None:
        self._rpc_urls = list(rpc_urls)
        self._scan_start_block = scan_start_block
        self._callback = callback
        self._per_scan_block_count = per_scan_block_count
        self._scan_interval_seconds = scan_interval_seconds
        self._interested_addresses: set[str] = set()
        self._interested_topics: set[str] = set()

        for address in interested_addresses:
            self.add_interested_address(address)
        for topic in interested_topics:
            self.add_interested_topic(topic)

    # ------------------------------------------------------------------
    # Interest registration
    # ------------------------------------------------------------------

    def add_interested_address(self, address: str) -> None:
        self._interested_addresses.add(address.lower())

    def add_interested_topic(self, topic: str) -> None:
        self._interested_topics.add(topic.lower())

    # ------------------------------------------------------------------
    # TxlogWatcher
    # ------------------------------------------------------------------

    def scan_start_block(self) -> int:
        return self._scan_start_block

    def per_scan_block_count(self) -> int:
        return self._per_scan_block_count

    async def endpoints(self) -> list[NodeClient]:
        return list(open_node_clients(self._rpc_urls))

    def is_interested(self, address: str, topic0: str) -> bool:
        if address and address.lower() in self._interested_addresses:
            return True
        if topic0 and topic0.lower() in self._interested_topics:
            return True
        return False

    def on_log_event(self, event: LogEvent) -> Awaitable[Any] | Any:
        return self._callback(event)

    def scan_interval(self) -> float:
        return self._scan_interval_seconds
