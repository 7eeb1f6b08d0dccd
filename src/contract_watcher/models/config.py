"""Configuration and lifecycle models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from web3 import Web3

from contract_watcher.errors import InvalidAddress, MissingField

DEFAULT_EVENT_SIGNATURE = "NumberUpdatedEvent(address)"


class ConnectionState(str, Enum):
    """Lifecycle of a single node connection."""

    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"


class ListenerState(str, Enum):
    """States of the listener loop."""

    STARTING = "starting"
    CONNECTED = "connected"
    LISTENING = "listening"
    RECOVERING = "recovering"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Endpoint:
    """What to watch: node URL, contract address and event signature."""

    node_url: str
    contract_address: str
    event_signature: str = DEFAULT_EVENT_SIGNATURE


@dataclass
class WatcherConfig:
    """Complete watcher configuration."""

    # Daemon
    log_level: str = "info"

    # Node
    node_url: str = ""  # loaded from env var NODE_URL
    retry_delay: float = 5.0  # seconds between reconnect attempts
    open_timeout: float = 10.0  # seconds for the WebSocket handshake
    request_timeout: float = 30.0  # seconds per JSON-RPC request
    ping_interval: float | None = 20.0
    ping_timeout: float | None = 20.0

    # Contract
    contract_address: str = ""  # loaded from env var CONTRACT_ADDRESS
    event_signature: str = DEFAULT_EVENT_SIGNATURE

    # Storage (opt-in catch-up after restarts and reconnects)
    checkpoint_path: str | None = None
    catch_up: bool = False

    def endpoint(self) -> Endpoint:
        """Validate the watch target and build the immutable Endpoint.

        Raises:
            MissingField: node URL, contract address or signature is empty.
            InvalidAddress: the contract address is not a 20-byte hex address.
        """
        if not self.node_url:
            raise MissingField("node URL is not set (NODE_URL)")
        if not self.node_url.startswith(("ws://", "wss://")):
            raise MissingField(f"node URL must be a ws:// or wss:// URL, got {self.node_url!r}")
        if not self.contract_address:
            raise MissingField("contract address is not set (CONTRACT_ADDRESS)")
        if not self.event_signature:
            raise MissingField("event signature is empty")
        if not Web3.is_address(self.contract_address):
            raise InvalidAddress(f"invalid contract address: {self.contract_address!r}")
        return Endpoint(
            node_url=self.node_url,
            contract_address=Web3.to_checksum_address(self.contract_address),
            event_signature=self.event_signature,
        )
