"""Exception taxonomy for contract_watcher."""

from __future__ import annotations


class WatcherError(Exception):
    """Base class for all contract_watcher errors."""


# ── Transport ──────────────────────────────────────────


class TransportError(WatcherError):
    """The node connection failed or misbehaved."""


class Unreachable(TransportError):
    """The node could not be reached (refused, DNS failure, timeout)."""


class HandshakeFailed(TransportError):
    """The node rejected the WebSocket handshake."""


class SubscriptionRejected(TransportError):
    """The node refused the log filter."""


class StreamClosed(TransportError):
    """The connection closed while a request or subscription was active."""


class TransportIOError(TransportError):
    """Low-level read/write failure on an open connection."""


class RpcError(TransportError):
    """The node answered a request with a JSON-RPC error object."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


# ── Decoding ───────────────────────────────────────────


class DecodeError(WatcherError):
    """A raw log could not be turned into a typed event."""


class SignatureMismatch(DecodeError):
    """topic0 does not match the expected event signature hash."""


class MalformedPayload(DecodeError):
    """The log is missing fields or its byte layout is too short."""


# ── Configuration ──────────────────────────────────────


class ConfigError(WatcherError):
    """Startup configuration is unusable. Always fatal."""


class MissingField(ConfigError):
    pass


class InvalidAddress(ConfigError):
    pass
