"""Data models for contract_watcher."""

from contract_watcher.models.events import (
    DecodedEvent,
    DecodeFailure,
    EnrichedEvent,
    Notification,
    QueryFailure,
    RawLogRecord,
    StateSnapshot,
)
from contract_watcher.models.config import (
    ConnectionState,
    Endpoint,
    ListenerState,
    WatcherConfig,
)

__all__ = [
    "DecodedEvent", "DecodeFailure", "EnrichedEvent", "Notification",
    "QueryFailure", "RawLogRecord", "StateSnapshot",
    "ConnectionState", "Endpoint", "ListenerState", "WatcherConfig",
]
