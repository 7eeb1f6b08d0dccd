"""Listener loop - subscribes, decodes, enriches and notifies, forever."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Any, Awaitable, TypeVar

from contract_watcher.errors import DecodeError, TransportError
from contract_watcher.evm.decoder import EventDecoder
from contract_watcher.evm.queries import ContractQueries
from contract_watcher.evm.transport import WebSocketTransport
from contract_watcher.interfaces.sink import NotificationSink
from contract_watcher.interfaces.store import CheckpointStore
from contract_watcher.interfaces.transport import NodeTransport
from contract_watcher.models.config import Endpoint, ListenerState, WatcherConfig
from contract_watcher.models.events import (
    DecodeFailure,
    EnrichedEvent,
    Notification,
    QueryFailure,
    RawLogRecord,
)
from contract_watcher.notify.console import ConsoleSink
from contract_watcher.storage.sqlite import SQLiteCheckpointStore

log = logging.getLogger(__name__)

T = TypeVar("T")


class _Stopped(Exception):
    """Raised at a suspension point once stop() has been requested."""


class EventListener:
    """Keeps one log subscription alive and feeds every event to a sink.

    States: STARTING -> CONNECTED -> LISTENING -> (RECOVERING -> CONNECTED)
    -> ... -> STOPPED. Network failures only ever lead to RECOVERING; the
    loop ends solely through stop().

    One record is decoded, enriched and delivered before the next one is
    pulled, so notifications follow the order logs were received.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        transport: NodeTransport,
        sink: NotificationSink,
        queries: ContractQueries | None = None,
        store: CheckpointStore | None = None,
        catch_up: bool = False,
        retry_delay: float = 5.0,
    ) -> None:
        self._endpoint = endpoint
        self._transport = transport
        self._sink = sink
        self._queries = queries or ContractQueries()
        self._decoder = EventDecoder(endpoint.event_signature)
        self._store = store
        self._catch_up = catch_up and store is not None
        self._retry_delay = retry_delay

        self._state = ListenerState.STOPPED
        self._stop_event = asyncio.Event()
        self._connection: Any = None
        self._subscription: Any = None
        self._checkpoint: tuple[int, int] | None = None
        self.reconnects = 0

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def store(self) -> CheckpointStore | None:
        return self._store

    # ── Lifecycle ──────────────────────────────────────────

    async def run(self) -> None:
        """Run until stop() is called. The connection is released on exit."""
        log.info(
            "Watching %s on %s for %s",
            self._endpoint.contract_address,
            self._endpoint.node_url,
            self._endpoint.event_signature,
        )
        if self._store is not None:
            self._checkpoint = await self._store.get_checkpoint()
            if self._checkpoint:
                log.info(
                    "Restored checkpoint: block %d, log %d", *self._checkpoint,
                )

        try:
            await self._start()
            while True:
                await self._listen()
                await self._recover()
        except _Stopped:
            pass
        finally:
            await self._release()
            self._set_state(ListenerState.STOPPED)
            log.info("Listener stopped")

    async def stop(self) -> None:
        """Signal the listener to stop at its next suspension point."""
        log.info("Stop requested")
        self._stop_event.set()

    async def replay(self, from_block: int, to_block: int | None = None) -> int:
        """One-shot: fetch past logs in a block range and notify them as historical.

        Connects once without retrying; TransportError propagates to the caller.
        Returns the number of records processed.
        """
        self._connection = await self._transport.connect(self._endpoint)
        try:
            records = await self._transport.get_logs(
                self._connection,
                self._endpoint.contract_address,
                self._endpoint.event_signature,
                from_block,
                to_block,
            )
            log.info("Replaying %d log(s) from block %d", len(records), from_block)
            for record in records:
                await self._process(record, historical=True)
            return len(records)
        finally:
            await self._release()

    # ── States ─────────────────────────────────────────────

    async def _start(self) -> None:
        """STARTING: first connection attempt, falling back to RECOVERING."""
        self._set_state(ListenerState.STARTING)
        try:
            self._connection = await self._until_stopped(
                self._transport.connect(self._endpoint)
            )
        except TransportError as exc:
            log.warning("Initial connection failed: %s", exc)
            await self._recover()
            return
        if not await self._establish():
            await self._recover()

    async def _establish(self) -> bool:
        """CONNECTED: subscribe on the current connection, then catch up."""
        self._set_state(ListenerState.CONNECTED)
        try:
            self._subscription = await self._until_stopped(
                self._transport.subscribe(
                    self._connection,
                    self._endpoint.contract_address,
                    self._endpoint.event_signature,
                )
            )
            if self._catch_up:
                await self._replay_missed()
        except TransportError as exc:
            log.warning("Subscription setup failed: %s", exc)
            return False
        return True

    async def _listen(self) -> None:
        """LISTENING: returns when the stream ends or fails."""
        self._set_state(ListenerState.LISTENING)
        log.info("Listening for %s...", self._endpoint.event_signature)
        while True:
            try:
                record = await self._until_stopped(
                    self._transport.next_record(self._subscription)
                )
            except TransportError as exc:
                log.warning("Subscription stream failed: %s", exc)
                return
            if record is None:
                log.warning("Subscription stream ended")
                return
            await self._process(record)

    async def _recover(self) -> None:
        """RECOVERING: reconnect and resubscribe until both succeed."""
        while True:
            self._set_state(ListenerState.RECOVERING)
            await self._release()
            self.reconnects += 1
            log.info("Reconnecting to %s", self._endpoint.node_url)
            self._connection = await self._until_stopped(
                self._transport.reconnect_with_backoff(self._endpoint)
            )
            if await self._establish():
                return
            await self._until_stopped(asyncio.sleep(self._retry_delay))

    # ── Event handling ─────────────────────────────────────

    async def _process(self, record: RawLogRecord, historical: bool = False) -> None:
        if record.removed:
            log.warning(
                "Skipping removed log (chain reorg): tx=%s block=%s",
                record.tx_hash, record.block_number,
            )
            return
        if self._seen(record):
            log.debug("Skipping already processed log: tx=%s", record.tx_hash)
            return

        try:
            event = self._decoder.decode(record, historical=historical)
        except DecodeError as exc:
            log.warning("Failed to decode log in tx %s: %s", record.tx_hash, exc)
            await self._emit(DecodeFailure(record=record, error=exc))
            await self._advance(record)
            return

        log.info(
            "%s event: tx=%s block=%d sender=%s",
            self._endpoint.event_signature.split("(")[0],
            event.tx_hash, event.block_number, event.sender,
        )

        snapshot = None
        failure = None
        try:
            snapshot = await self._until_stopped(
                self._queries.query_state(
                    self._connection, self._endpoint.contract_address, event.block_number,
                )
            )
        except TransportError as exc:
            log.warning("State query at block %d failed: %s", event.block_number, exc)
            failure = QueryFailure(event=event, error=exc)

        await self._emit(EnrichedEvent(event=event, snapshot=snapshot))
        if failure is not None:
            await self._emit(failure)
        await self._advance(record)

    async def _emit(self, notification: Notification) -> None:
        try:
            await self._sink.notify(notification)
        except Exception as exc:
            log.error("Notification sink failed: %s", exc, exc_info=True)

    async def _replay_missed(self) -> None:
        if self._checkpoint is None:
            return
        from_block = self._checkpoint[0]
        records = await self._until_stopped(
            self._transport.get_logs(
                self._connection,
                self._endpoint.contract_address,
                self._endpoint.event_signature,
                from_block,
            )
        )
        log.info("Catch-up: %d log(s) since block %d", len(records), from_block)
        for record in records:
            await self._process(record, historical=True)

    # ── Checkpoint ─────────────────────────────────────────

    @staticmethod
    def _position(record: RawLogRecord) -> tuple[int, int] | None:
        if record.block_number is None:
            return None
        return (record.block_number, record.log_index or 0)

    def _seen(self, record: RawLogRecord) -> bool:
        if self._store is None or self._checkpoint is None:
            return False
        pos = self._position(record)
        return pos is not None and pos <= self._checkpoint

    async def _advance(self, record: RawLogRecord) -> None:
        if self._store is None:
            return
        pos = self._position(record)
        if pos is None or (self._checkpoint is not None and pos <= self._checkpoint):
            return
        self._checkpoint = pos
        try:
            await self._store.set_checkpoint(*pos)
        except Exception as exc:
            log.error("Checkpoint write failed at block %d: %s", pos[0], exc, exc_info=True)

    # ── Helpers ────────────────────────────────────────────

    def _set_state(self, state: ListenerState) -> None:
        if state is not self._state:
            log.debug("Listener state: %s -> %s", self._state.value, state.value)
            self._state = state

    async def _release(self) -> None:
        self._subscription = None
        if self._connection is not None:
            conn, self._connection = self._connection, None
            await self._transport.close(conn)

    async def _until_stopped(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless stop() fires first, in which case it is cancelled.

        A pending stop wins even over an awaitable that is already complete.
        """
        if self._stop_event.is_set():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise _Stopped
        task = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if stopper.done() and not stopper.cancelled():
            if task.done() and not task.cancelled():
                task.exception()  # mark retrieved
            raise _Stopped
        if task.cancelled():
            raise _Stopped
        return task.result()


def build_listener(cfg: WatcherConfig, sink: NotificationSink | None = None) -> EventListener:
    """Wire an EventListener from configuration. Raises ConfigError."""
    endpoint = cfg.endpoint()
    transport = WebSocketTransport(
        retry_delay=cfg.retry_delay,
        open_timeout=cfg.open_timeout,
        request_timeout=cfg.request_timeout,
        ping_interval=cfg.ping_interval,
        ping_timeout=cfg.ping_timeout,
    )
    store = SQLiteCheckpointStore(cfg.checkpoint_path) if cfg.checkpoint_path else None
    return EventListener(
        endpoint,
        transport,
        sink or ConsoleSink(),
        store=store,
        catch_up=cfg.catch_up,
        retry_delay=cfg.retry_delay,
    )


async def run_listener(cfg: WatcherConfig) -> None:
    """Entry point for running the listener until SIGINT/SIGTERM."""
    listener = build_listener(cfg)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(listener.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    store = listener.store
    if store is not None:
        await store.initialize()
    try:
        await listener.run()
    finally:
        if store is not None:
            await store.close()
