from execution.node_client import (
    NodeClient,
    NodeClientError,
    Web3NodeClient,
    close_node_clients,
    log_receipt_to_event,
    open_node_clients,
)

__all__ = [
    "NodeClient",
    "NodeClientError",
    "Web3NodeClient",
    "close_node_clients",
    "log_receipt_to_event",
    "open_node_clients",
]
