"""Persistence backends."""

from contract_watcher.storage.sqlite import SQLiteCheckpointStore

__all__ = ["SQLiteCheckpointStore"]
