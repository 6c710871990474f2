"""Core data structures for tickit-sync."""

from tickit_sync.core.errors import (
    CursorRegressionError,
    InvariantViolation,
    StorageError,
    TickitSyncError,
)
from tickit_sync.core.records import (
    Priority,
    Record,
    RecordKind,
    SyncRecord,
    Tag,
    Task,
    TaskList,
    TaskTagLink,
    Tombstone,
    link_id,
    record_kind,
)

__all__ = [
    "CursorRegressionError",
    "InvariantViolation",
    "Priority",
    "Record",
    "RecordKind",
    "StorageError",
    "SyncRecord",
    "Tag",
    "Task",
    "TaskList",
    "TaskTagLink",
    "TickitSyncError",
    "Tombstone",
    "link_id",
    "record_kind",
]
