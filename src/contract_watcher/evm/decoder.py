"""Event decoder - turns raw logs into typed events for one event signature."""

from __future__ import annotations

from functools import lru_cache

from web3 import Web3

from contract_watcher.errors import MalformedPayload, SignatureMismatch
from contract_watcher.models.events import DecodedEvent, RawLogRecord

_WORD = 32


@lru_cache(maxsize=None)
def event_topic(event_signature: str) -> str:
    """Return topic0 for an event signature: 0x-prefixed keccak256 hex."""
    return "0x" + bytes(Web3.keccak(text=event_signature)).hex()


def _word_to_address(word: bytes) -> str:
    """Read an ABI-encoded address (last 20 bytes of a 32-byte word)."""
    if len(word) < _WORD:
        raise MalformedPayload(f"address word is {len(word)} bytes, expected {_WORD}")
    return Web3.to_checksum_address("0x" + word[12:_WORD].hex())


class EventDecoder:
    """Decodes logs of a single event whose first argument is an address.

    The sender is read from topic1 when the argument is indexed, otherwise
    from the first word of the log data.
    """

    def __init__(self, event_signature: str) -> None:
        self._signature = event_signature
        self._topic = bytes.fromhex(event_topic(event_signature)[2:])

    @property
    def signature(self) -> str:
        return self._signature

    @property
    def topic(self) -> str:
        return "0x" + self._topic.hex()

    def decode(self, record: RawLogRecord, historical: bool = False) -> DecodedEvent:
        """Decode one raw log.

        Raises:
            SignatureMismatch: topic0 is missing or is not this event's hash.
            MalformedPayload: the log could not be parsed, tx hash / block
                number missing, or sender unreadable.
        """
        if record.malformed:
            raise MalformedPayload(record.malformed)
        if not record.topics or record.topics[0] != self._topic:
            got = "0x" + record.topics[0].hex() if record.topics else "none"
            raise SignatureMismatch(
                f"topic0 {got} does not match {self._signature} ({self.topic})"
            )

        if record.tx_hash is None:
            raise MalformedPayload("log has no transaction hash")
        if record.block_number is None:
            raise MalformedPayload("log has no block number")

        if len(record.topics) > 1:
            sender = _word_to_address(record.topics[1])
        elif record.data:
            sender = _word_to_address(record.data[:_WORD])
        else:
            raise MalformedPayload("log carries neither an indexed nor a data sender")

        return DecodedEvent(
            tx_hash=record.tx_hash,
            block_number=record.block_number,
            sender=sender,
            log_index=record.log_index,
            historical=historical,
        )


def decode(record: RawLogRecord, event_signature: str) -> DecodedEvent:
    """Convenience wrapper around ``EventDecoder(event_signature).decode``."""
    return EventDecoder(event_signature).decode(record)
