"""Log and event models produced from the node's log stream."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from contract_watcher.errors import DecodeError, TransportError


@dataclass(frozen=True)
class RawLogRecord:
    """One matching log exactly as delivered by the node.

    ``tx_hash`` and ``block_number`` are None for pending logs.
    ``malformed`` holds the parse error when the node's JSON fields were
    not valid hex; such records carry no topics or data.
    """

    tx_hash: str | None
    block_number: int | None
    address: str
    topics: tuple[bytes, ...]
    data: bytes
    log_index: int | None = None
    removed: bool = False
    malformed: str | None = None


@dataclass(frozen=True)
class DecodedEvent:
    """Typed extraction of a NumberUpdatedEvent-style log."""

    tx_hash: str
    block_number: int
    sender: str  # checksummed address
    log_index: int | None = None
    historical: bool = False  # replayed via eth_getLogs rather than streamed


@dataclass(frozen=True)
class StateSnapshot:
    """Contract storage value read at a specific block."""

    value: int
    block_number: int


@dataclass(frozen=True)
class EnrichedEvent:
    """A decoded event plus the state read at its block (None if the read failed)."""

    event: DecodedEvent
    snapshot: StateSnapshot | None = None

    @property
    def tx_hash(self) -> str:
        return self.event.tx_hash

    @property
    def block_number(self) -> int:
        return self.event.block_number

    @property
    def sender(self) -> str:
        return self.event.sender

    @property
    def value(self) -> int | None:
        return self.snapshot.value if self.snapshot is not None else None


@dataclass(frozen=True)
class DecodeFailure:
    """A record that matched the filter but could not be decoded."""

    record: RawLogRecord
    error: DecodeError


@dataclass(frozen=True)
class QueryFailure:
    """The state query for a decoded event failed."""

    event: DecodedEvent
    error: TransportError


Notification = Union[EnrichedEvent, DecodeFailure, QueryFailure]
