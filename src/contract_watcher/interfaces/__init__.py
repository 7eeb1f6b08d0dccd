"""Protocol interfaces for contract_watcher components."""

from contract_watcher.interfaces.transport import Connection, NodeTransport
from contract_watcher.interfaces.sink import NotificationSink
from contract_watcher.interfaces.store import CheckpointStore

__all__ = ["Connection", "NodeTransport", "NotificationSink", "CheckpointStore"]
