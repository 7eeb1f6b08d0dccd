"""SQLite implementation of the CheckpointStore protocol."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

SCHEMA = """
-- Last processed log position for catch-up replay
CREATE TABLE IF NOT EXISTS cursor (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_block INTEGER NOT NULL,
    last_log_index INTEGER NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteCheckpointStore:
    """SQLite-backed implementation of the CheckpointStore protocol."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    async def get_checkpoint(self) -> tuple[int, int] | None:
        async with self.db.execute(
            "SELECT last_block, last_log_index FROM cursor WHERE id=1"
        ) as cur:
            row = await cur.fetchone()
            return (row["last_block"], row["last_log_index"]) if row else None

    async def set_checkpoint(self, block_number: int, log_index: int) -> None:
        await self.db.execute(
            "INSERT INTO cursor (id, last_block, last_log_index, updated_at)"
            " VALUES (1, ?, ?, ?)"
            " ON CONFLICT(id) DO UPDATE SET last_block=excluded.last_block,"
            " last_log_index=excluded.last_log_index, updated_at=excluded.updated_at",
            (block_number, log_index, _now()),
        )
        await self.db.commit()
