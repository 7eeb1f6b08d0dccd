"""Shared fixtures for contract_watcher tests."""

from __future__ import annotations

import asyncio

import pytest
from pytest_metadata.plugin import metadata_key

from contract_watcher.listener import EventListener
from contract_watcher.models.config import Endpoint, WatcherConfig
from contract_watcher.storage.sqlite import SQLiteCheckpointStore

from tests.factories import CONTRACT, SIGNATURE
from tests.mocks import MockQueries, MockTransport, RecordingSink

NODE_URL = "ws://node.test:8546"


# ── Report metadata ──────────────────────────────────────────────


def pytest_configure(config):
    """Add watch target info to the HTML report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Node"] = NODE_URL
    meta["Contract"] = CONTRACT
    meta["Event"] = SIGNATURE


def make_test_config(**overrides) -> WatcherConfig:
    """Build a WatcherConfig suitable for testing."""
    defaults = dict(
        node_url=NODE_URL,
        contract_address=CONTRACT,
        event_signature=SIGNATURE,
        retry_delay=0,
        open_timeout=1,
        request_timeout=1,
        checkpoint_path=None,
        catch_up=False,
    )
    defaults.update(overrides)
    return WatcherConfig(**defaults)


async def run_until(listener: EventListener, sink: RecordingSink, count: int) -> None:
    """Run the listener until the sink holds ``count`` notifications, then stop it."""
    task = asyncio.create_task(listener.run())
    try:
        await sink.wait_for(count)
    finally:
        await listener.stop()
        await asyncio.wait_for(task, 2.0)


@pytest.fixture
def endpoint() -> Endpoint:
    return make_test_config().endpoint()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def mock_queries():
    return MockQueries(values={6: 8}, default=1)


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteCheckpointStore."""
    s = SQLiteCheckpointStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def make_listener(endpoint, sink, mock_queries):
    """Factory: EventListener wired to a MockTransport and the shared sink."""

    def _make(transport: MockTransport, **kwargs) -> EventListener:
        kwargs.setdefault("queries", mock_queries)
        kwargs.setdefault("retry_delay", 0)
        return EventListener(endpoint, transport, sink, **kwargs)

    return _make
