"""CheckpointStore protocol - remembers the last processed log position."""

from __future__ import annotations

from typing import Protocol


class CheckpointStore(Protocol):

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        ...

    async def get_checkpoint(self) -> tuple[int, int] | None:
        """Return (block_number, log_index) of the last processed log."""
        ...

    async def set_checkpoint(self, block_number: int, log_index: int) -> None:
        ...
