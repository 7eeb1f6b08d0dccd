"""WebSocket JSON-RPC transport - connections, log subscriptions, reconnects."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from contract_watcher.errors import (
    HandshakeFailed,
    RpcError,
    StreamClosed,
    SubscriptionRejected,
    TransportError,
    TransportIOError,
    Unreachable,
)
from contract_watcher.evm.decoder import event_topic
from contract_watcher.models.config import ConnectionState, Endpoint
from contract_watcher.models.events import RawLogRecord

log = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]

_END = object()  # end-of-stream marker queued to subscriptions
_MAX_FRAME = 10 * 1024 * 1024


def _to_int(value: str | int | None) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


def _to_bytes(value: str) -> bytes:
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return bytes.fromhex(value)


def parse_log(entry: dict) -> RawLogRecord:
    """Build a RawLogRecord from a JSON-RPC log object.

    Raises ValueError/TypeError/AttributeError on non-hex fields.
    """
    return RawLogRecord(
        tx_hash=entry.get("transactionHash"),
        block_number=_to_int(entry.get("blockNumber")),
        address=entry.get("address", ""),
        topics=tuple(_to_bytes(t) for t in entry.get("topics") or []),
        data=_to_bytes(entry.get("data") or "0x"),
        log_index=_to_int(entry.get("logIndex")),
        removed=bool(entry.get("removed", False)),
    )


def salvage_log(entry: object, error: Exception) -> RawLogRecord:
    """Placeholder for a log ``parse_log`` rejected, keeping what is readable.

    The decoder turns it into a MalformedPayload so the failure reaches the sink.
    """
    fields = entry if isinstance(entry, dict) else {}
    tx_hash = fields.get("transactionHash")
    try:
        block_number = _to_int(fields.get("blockNumber"))
    except (TypeError, ValueError):
        block_number = None
    return RawLogRecord(
        tx_hash=tx_hash if isinstance(tx_hash, str) else None,
        block_number=block_number,
        address=str(fields.get("address", "")),
        topics=(),
        data=b"",
        malformed=f"unparseable log: {error}",
    )


class LogSubscription:
    """Server-side log filter bound to one open connection.

    Ends (yields None forever) when its connection closes and is never
    carried over to a new connection.
    """

    def __init__(self, subscription_id: str, contract_address: str, topic: str) -> None:
        self.id = subscription_id
        self.contract_address = contract_address
        self.topic = topic
        self._queue: asyncio.Queue = asyncio.Queue()
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def _push(self, record: RawLogRecord) -> None:
        if not self._ended:
            self._queue.put_nowait(record)

    def _end(self, error: TransportError | None = None) -> None:
        if self._ended:
            return
        self._ended = True
        self._queue.put_nowait(error if error is not None else _END)

    async def next(self) -> RawLogRecord | None:
        item = await self._queue.get()
        if item is _END:
            self._queue.put_nowait(_END)
            return None
        if isinstance(item, TransportError):
            self._queue.put_nowait(item)
            raise item
        return item


class NodeConnection:
    """One JSON-RPC channel over a WebSocket.

    A reader task routes responses to waiting requests by id and
    ``eth_subscription`` notifications to their LogSubscription.
    """

    def __init__(self, node_url: str, request_timeout: float = 30.0) -> None:
        self.node_url = node_url
        self.state = ConnectionState.CLOSED
        self._request_timeout = request_timeout
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._subscriptions: dict[str, LogSubscription] = {}
        # Ids of eth_subscribe requests awaiting their response
        self._subscribe_requests: set[int] = set()
        # Notifications for subscription ids the node just handed out,
        # arriving before the LogSubscription is registered
        self._early: dict[str, list[RawLogRecord]] = {}
        self._closing = False

    # ── Lifecycle ──────────────────────────────────────────

    async def open(self, connector: Connector, **options: Any) -> None:
        """Perform the WebSocket handshake and start the reader.

        Raises:
            Unreachable: the node could not be reached.
            HandshakeFailed: the node (or URL) rejected the upgrade.
        """
        self.state = ConnectionState.CONNECTING
        try:
            self._ws = await connector(self.node_url, **options)
        except InvalidURI as exc:
            self.state = ConnectionState.CLOSED
            raise HandshakeFailed(f"invalid node URL {self.node_url}: {exc}") from exc
        except InvalidHandshake as exc:
            self.state = ConnectionState.CLOSED
            raise HandshakeFailed(f"handshake with {self.node_url} failed: {exc}") from exc
        except (OSError, asyncio.TimeoutError) as exc:
            self.state = ConnectionState.CLOSED
            raise Unreachable(f"cannot reach {self.node_url}: {exc or type(exc).__name__}") from exc

        self.state = ConnectionState.OPEN
        self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        """Close the socket and end all requests and subscriptions. Idempotent."""
        if self._closing:
            return
        self._closing = True

        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as exc:
                log.debug("Error closing websocket to %s: %s", self.node_url, exc)

        self._shutdown(None)

    # ── Requests ───────────────────────────────────────────

    async def request(self, method: str, params: list[Any]) -> Any:
        """Send a JSON-RPC request and wait for its result.

        Raises:
            StreamClosed: the connection is not open or closed mid-request.
            RpcError: the node returned an error object.
            TransportIOError: no response within the request timeout.
        """
        if self.state is not ConnectionState.OPEN:
            raise StreamClosed(f"{method}: connection to {self.node_url} is not open")

        req_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = future
        if method == "eth_subscribe":
            self._subscribe_requests.add(req_id)
        payload = {"jsonrpc": "2.0", "id": req_id, "method": method, "params": params}

        try:
            try:
                await self._ws.send(json.dumps(payload))
            except ConnectionClosed as exc:
                raise StreamClosed(f"{method}: connection closed: {exc}") from exc

            try:
                response = await asyncio.wait_for(future, self._request_timeout)
            except asyncio.TimeoutError as exc:
                raise TransportIOError(
                    f"{method}: no response after {self._request_timeout}s"
                ) from exc
        finally:
            self._pending.pop(req_id, None)
            self._subscribe_requests.discard(req_id)

        if error := response.get("error"):
            if isinstance(error, dict):
                raise RpcError(f"{method}: {error.get('message', error)}", error.get("code"))
            raise RpcError(f"{method}: {error}")
        return response.get("result")

    def register(self, subscription: LogSubscription) -> None:
        """Start routing notifications for ``subscription.id``."""
        if self.state is not ConnectionState.OPEN:
            subscription._end()
            return
        self._subscriptions[subscription.id] = subscription
        for record in self._early.pop(subscription.id, []):
            subscription._push(record)

    # ── Reader ─────────────────────────────────────────────

    async def _read_loop(self) -> None:
        error: TransportError | None = None
        try:
            async for raw in self._ws:
                self._dispatch(raw)
            log.info("Connection to %s closed by peer", self.node_url)
        except ConnectionClosed as exc:
            log.warning("Connection to %s lost: %s", self.node_url, exc)
            error = StreamClosed(f"connection lost: {exc}")
        except OSError as exc:
            log.error("I/O error on connection to %s: %s", self.node_url, exc)
            error = TransportIOError(str(exc))
        finally:
            self._shutdown(error)

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            log.warning("Ignoring non-JSON frame from %s", self.node_url)
            return
        if not isinstance(message, dict):
            log.debug("Ignoring unexpected frame: %r", message)
            return

        if message.get("method") == "eth_subscription":
            params = message.get("params") or {}
            sub_id = params.get("subscription")
            entry = params.get("result") or {}
            try:
                record = parse_log(entry)
            except (ValueError, TypeError, AttributeError) as exc:
                log.warning("Malformed log notification: %s", exc)
                record = salvage_log(entry, exc)
            sub = self._subscriptions.get(sub_id)
            if sub is not None:
                sub._push(record)
            elif sub_id in self._early:
                self._early[sub_id].append(record)
            else:
                log.debug("Dropping notification for unknown subscription %s", sub_id)
            return

        req_id = message.get("id")
        if req_id in self._subscribe_requests:
            self._subscribe_requests.discard(req_id)
            if isinstance(message.get("result"), str):
                self._early.setdefault(message["result"], [])
        future = self._pending.get(req_id)
        if future is not None and not future.done():
            future.set_result(message)

    def _shutdown(self, error: TransportError | None) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error or StreamClosed("connection closed"))
        self._pending.clear()
        for sub in self._subscriptions.values():
            sub._end(error)
        self._subscriptions.clear()
        self._early.clear()
        self._subscribe_requests.clear()


class WebSocketTransport:
    """NodeTransport over JSON-RPC WebSockets.

    Reconnects with a fixed delay and never gives up.
    """

    def __init__(
        self,
        retry_delay: float = 5.0,
        open_timeout: float = 10.0,
        request_timeout: float = 30.0,
        ping_interval: float | None = 20.0,
        ping_timeout: float | None = 20.0,
        connector: Connector = ws_connect,
    ) -> None:
        self._retry_delay = retry_delay
        self._request_timeout = request_timeout
        self._connector = connector
        self._ws_options = {
            "open_timeout": open_timeout,
            "ping_interval": ping_interval,
            "ping_timeout": ping_timeout,
            "max_size": _MAX_FRAME,
        }

    async def connect(self, endpoint: Endpoint) -> NodeConnection:
        """Open a new connection. Raises Unreachable or HandshakeFailed."""
        conn = NodeConnection(endpoint.node_url, self._request_timeout)
        await conn.open(self._connector, **self._ws_options)
        log.info("Connected to node at %s", endpoint.node_url)
        return conn

    async def subscribe(
        self,
        connection: NodeConnection,
        contract_address: str,
        event_signature: str,
    ) -> LogSubscription:
        """Install an eth_subscribe log filter for one address and topic0."""
        topic = event_topic(event_signature)
        log_filter = {"address": contract_address, "topics": [topic]}
        try:
            sub_id = await connection.request("eth_subscribe", ["logs", log_filter])
        except RpcError as exc:
            raise SubscriptionRejected(f"node rejected log filter: {exc}") from exc
        if not isinstance(sub_id, str) or not sub_id:
            raise SubscriptionRejected(f"unexpected subscription id: {sub_id!r}")

        subscription = LogSubscription(sub_id, contract_address, topic)
        connection.register(subscription)
        log.info(
            "Subscribed to %s on %s (subscription %s)",
            event_signature, contract_address, sub_id,
        )
        return subscription

    async def next_record(self, subscription: LogSubscription) -> RawLogRecord | None:
        return await subscription.next()

    async def reconnect_with_backoff(self, endpoint: Endpoint) -> NodeConnection:
        """Retry ``connect`` every ``retry_delay`` seconds until it succeeds."""
        attempt = 0
        while True:
            attempt += 1
            try:
                conn = await self.connect(endpoint)
            except TransportError as exc:
                log.warning(
                    "Reconnect attempt %d to %s failed: %s. Retrying in %.1fs",
                    attempt, endpoint.node_url, exc, self._retry_delay,
                )
                await asyncio.sleep(self._retry_delay)
                continue
            log.info("Reconnected to %s after %d attempt(s)", endpoint.node_url, attempt)
            return conn

    async def close(self, connection: NodeConnection) -> None:
        await connection.close()

    async def get_logs(
        self,
        connection: NodeConnection,
        contract_address: str,
        event_signature: str,
        from_block: int,
        to_block: int | None = None,
    ) -> list[RawLogRecord]:
        """Fetch past logs for the filter via eth_getLogs."""
        log_filter = {
            "address": contract_address,
            "topics": [event_topic(event_signature)],
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block) if to_block is not None else "latest",
        }
        result = await connection.request("eth_getLogs", [log_filter])
        try:
            return [parse_log(entry) for entry in result or []]
        except (ValueError, TypeError, AttributeError) as exc:
            raise TransportIOError(f"eth_getLogs returned a malformed log: {exc}") from exc

    async def block_number(self, connection: NodeConnection) -> int:
        result = await connection.request("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as exc:
            raise TransportIOError(f"eth_blockNumber returned {result!r}") from exc
