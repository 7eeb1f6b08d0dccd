"""Console sink output."""

from __future__ import annotations

from contract_watcher.errors import RpcError, SignatureMismatch
from contract_watcher.models.events import (
    DecodedEvent,
    DecodeFailure,
    EnrichedEvent,
    QueryFailure,
    StateSnapshot,
)
from contract_watcher.notify.console import ConsoleSink, format_event

from tests.factories import SENDER, checksum, make_record


def make_event(historical: bool = False) -> DecodedEvent:
    return DecodedEvent(
        tx_hash="0x111", block_number=6, sender=checksum(SENDER), historical=historical,
    )


class CapturingEcho:

    def __init__(self) -> None:
        self.out: list[str] = []
        self.err: list[str] = []

    def __call__(self, message: str, err: bool = False) -> None:
        (self.err if err else self.out).append(message)


def test_format_live_event():
    text = format_event(EnrichedEvent(make_event(), StateSnapshot(value=8, block_number=6)))
    lines = text.strip().splitlines()
    assert lines[0] == "===== Event Detected ====="
    assert "Transaction: 0x111" in lines
    assert "Block: 6" in lines
    assert f"Sender: {checksum(SENDER)}" in lines
    assert "New Value: 8" in lines


def test_format_historical_event_header():
    text = format_event(EnrichedEvent(make_event(historical=True), StateSnapshot(1, 6)))
    assert text.strip().splitlines()[0] == "======= Event ======="


def test_format_without_snapshot():
    text = format_event(EnrichedEvent(make_event()))
    assert "New Value: (unavailable)" in text


async def test_sink_routes_failures_to_stderr():
    echo = CapturingEcho()
    sink = ConsoleSink(echo=echo)

    await sink.notify(EnrichedEvent(make_event(), StateSnapshot(8, 6)))
    await sink.notify(DecodeFailure(make_record(tx_hash="0xbad"), SignatureMismatch("nope")))
    await sink.notify(QueryFailure(make_event(), RpcError("reverted")))

    assert len(echo.out) == 1
    assert "0xbad" in echo.err[0]
    assert "reverted" in echo.err[1]


async def test_sink_ignores_unknown_notification(caplog):
    echo = CapturingEcho()
    await ConsoleSink(echo=echo).notify("surprise")
    assert echo.out == [] and echo.err == []
    assert "Unknown notification type" in caplog.text
