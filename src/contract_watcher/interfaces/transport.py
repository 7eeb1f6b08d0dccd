"""NodeTransport protocol - streaming connection to an EVM node."""

from __future__ import annotations

from typing import Any, Protocol

from contract_watcher.models.config import Endpoint
from contract_watcher.models.events import RawLogRecord


class Connection(Protocol):
    """One live JSON-RPC channel to the node."""

    async def request(self, method: str, params: list[Any]) -> Any:
        """Send a request and return its ``result``. Raises TransportError."""
        ...


class NodeTransport(Protocol):
    """Hides connection instability behind connect/subscribe/reconnect."""

    async def connect(self, endpoint: Endpoint) -> Any:
        ...

    async def subscribe(
        self, connection: Any, contract_address: str, event_signature: str,
    ) -> Any:
        ...

    async def next_record(self, subscription: Any) -> RawLogRecord | None:
        """Next matching log, or None once the connection has closed."""
        ...

    async def reconnect_with_backoff(self, endpoint: Endpoint) -> Any:
        """Retry ``connect`` until it succeeds. Never raises TransportError."""
        ...

    async def close(self, connection: Any) -> None:
        """Release the connection. Safe to call repeatedly."""
        ...

    async def get_logs(
        self,
        connection: Any,
        contract_address: str,
        event_signature: str,
        from_block: int,
        to_block: int | None = None,
    ) -> list[RawLogRecord]:
        ...

    async def block_number(self, connection: Any) -> int:
        ...
