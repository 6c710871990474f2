"""Storage backends for tickit-sync."""

from tickit_sync.storage.base import DeviceCursor, SyncStorage, UpsertOutcome
from tickit_sync.storage.memory_store import InMemoryStorage
from tickit_sync.storage.sqlite_store import SQLiteStorage

__all__ = [
    "DeviceCursor",
    "InMemoryStorage",
    "SQLiteStorage",
    "SyncStorage",
    "UpsertOutcome",
]
