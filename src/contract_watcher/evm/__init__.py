"""EVM node integration components."""

from contract_watcher.evm.decoder import EventDecoder, event_topic
from contract_watcher.evm.queries import ContractQueries
from contract_watcher.evm.transport import LogSubscription, NodeConnection, WebSocketTransport

__all__ = [
    "EventDecoder", "event_topic", "ContractQueries",
    "LogSubscription", "NodeConnection", "WebSocketTransport",
]
