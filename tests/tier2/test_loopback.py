"""Listener and transport against a real WebSocket node on loopback."""

from __future__ import annotations

import asyncio

import pytest

from contract_watcher.errors import Unreachable
from contract_watcher.evm.transport import WebSocketTransport
from contract_watcher.listener import EventListener, build_listener
from contract_watcher.models.config import ListenerState
from contract_watcher.models.events import EnrichedEvent
from contract_watcher.storage.sqlite import SQLiteCheckpointStore

from tests.conftest import make_test_config
from tests.factories import CONTRACT, SENDER, checksum, make_log_json
from tests.mocks import RecordingSink

pytestmark = pytest.mark.loopback


def make_loopback_listener(node, sink, **overrides) -> EventListener:
    cfg = make_test_config(node_url=node.url, **overrides)
    return build_listener(cfg, sink)


async def wait_for_state(listener: EventListener, state: ListenerState, timeout: float = 2.0):
    async def _poll():
        while listener.state is not state:
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout)


async def test_event_enriched_end_to_end(node):
    sink = RecordingSink()
    listener = make_loopback_listener(node, sink)
    task = asyncio.create_task(listener.run())
    try:
        await node.wait_subscribed()
        await node.emit(make_log_json(tx_hash="0x111", block_number=6))
        await sink.wait_for(1)
    finally:
        await listener.stop()
        await asyncio.wait_for(task, 2.0)

    (note,) = sink.notifications
    assert isinstance(note, EnrichedEvent)
    assert note.tx_hash == "0x111"
    assert note.block_number == 6
    assert note.sender == checksum(SENDER)
    assert note.value == 8

    subscribe = next(r for r in node.requests if r["method"] == "eth_subscribe")
    assert subscribe["params"][1]["address"] == checksum(CONTRACT)
    call = next(r for r in node.requests if r["method"] == "eth_call")
    assert call["params"][1] == "0x6"
    assert listener.state is ListenerState.STOPPED


async def test_listener_resubscribes_after_node_drop(node):
    sink = RecordingSink()
    listener = make_loopback_listener(node, sink)
    task = asyncio.create_task(listener.run())
    try:
        await node.wait_subscribed()
        await node.emit(make_log_json(tx_hash="0xa", block_number=1))
        await sink.wait_for(1)

        await node.drop_clients()
        await node.wait_subscribed()
        await wait_for_state(listener, ListenerState.LISTENING)
        await node.emit(make_log_json(tx_hash="0xb", block_number=2))
        await sink.wait_for(2)
    finally:
        await listener.stop()
        await asyncio.wait_for(task, 2.0)

    assert [e.tx_hash for e in sink.events] == ["0xa", "0xb"]
    assert listener.reconnects == 1


async def test_catch_up_after_restart(node, tmp_path):
    db = str(tmp_path / "cp.db")
    node.history = [
        make_log_json(tx_hash="0x5", block_number=5),
        make_log_json(tx_hash="0x6", block_number=6),
    ]

    store = SQLiteCheckpointStore(db)
    await store.initialize()
    await store.set_checkpoint(5, 0)
    await store.close()

    sink = RecordingSink()
    listener = make_loopback_listener(node, sink, checkpoint_path=db, catch_up=True)
    await listener.store.initialize()
    task = asyncio.create_task(listener.run())
    try:
        await sink.wait_for(1)
    finally:
        await listener.stop()
        await asyncio.wait_for(task, 2.0)
        await listener.store.close()

    assert [e.tx_hash for e in sink.events] == ["0x6"]
    assert sink.events[0].event.historical
    assert sink.events[0].value == 8


async def test_replay_range(node):
    node.history = [
        make_log_json(tx_hash="0x6", block_number=6),
        make_log_json(tx_hash="0x7", block_number=7, log_index=1),
    ]
    sink = RecordingSink()
    listener = make_loopback_listener(node, sink)

    count = await listener.replay(6)

    assert count == 2
    assert [e.tx_hash for e in sink.events] == ["0x6", "0x7"]
    assert [e.value for e in sink.events] == [8, 0]


async def test_connect_refused_is_unreachable():
    cfg = make_test_config(node_url="ws://127.0.0.1:1")
    transport = WebSocketTransport(open_timeout=1)
    with pytest.raises(Unreachable):
        await transport.connect(cfg.endpoint())
