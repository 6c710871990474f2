"""Row-to-model conversion functions for SQLite storage."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import aiosqlite

from tickit_sync.core.records import (
    Priority,
    Record,
    RecordKind,
    Tag,
    Task,
    TaskList,
    TaskTagLink,
    Tombstone,
)
from tickit_sync.storage.base import DeviceCursor
from tickit_sync.utils.timeutils import (
    format_optional,
    format_timestamp,
    parse_optional,
    parse_timestamp,
)


def row_to_task(row: aiosqlite.Row) -> Task:
    """Convert database row to Task.

    Rows read through ``visible_select`` carry ``linked_tag_ids``, which
    replaces the tag_ids column written with the task.
    """
    tag_ids = row["linked_tag_ids"] if "linked_tag_ids" in row.keys() else row["tag_ids"]
    return Task(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        url=row["url"],
        priority=Priority(row["priority"]),
        completed=bool(row["completed"]),
        list_id=row["list_id"],
        tag_ids=frozenset(json.loads(tag_ids)),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        completed_at=parse_optional(row["completed_at"]),
        due_date=parse_optional(row["due_date"]),
    )


def row_to_list(row: aiosqlite.Row) -> TaskList:
    """Convert database row to TaskList."""
    return TaskList(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        icon=row["icon"],
        color=row["color"],
        is_inbox=bool(row["is_inbox"]),
        sort_order=row["sort_order"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def row_to_tag(row: aiosqlite.Row) -> Tag:
    """Convert database row to Tag."""
    return Tag(
        id=row["id"],
        name=row["name"],
        color=row["color"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def row_to_link(row: aiosqlite.Row) -> TaskTagLink:
    """Convert database row to TaskTagLink."""
    return TaskTagLink(
        task_id=row["task_id"],
        tag_id=row["tag_id"],
        created_at=parse_timestamp(row["created_at"]),
    )


def row_to_tombstone(row: aiosqlite.Row) -> Tombstone:
    """Convert database row to Tombstone."""
    return Tombstone(
        id=row["id"],
        record_kind=RecordKind(row["record_type"]),
        deleted_at=parse_timestamp(row["deleted_at"]),
    )


def row_to_device(row: aiosqlite.Row) -> DeviceCursor:
    """Convert database row to DeviceCursor."""
    return DeviceCursor(
        device_id=row["device_id"],
        device_name=row["device_name"] or "",
        last_sync=parse_timestamp(row["last_sync"]),
        registered_at=parse_timestamp(row["registered_at"]),
    )


ROW_MAPPERS: dict[RecordKind, Callable[[aiosqlite.Row], Record]] = {
    RecordKind.TASK: row_to_task,
    RecordKind.LIST: row_to_list,
    RecordKind.TAG: row_to_tag,
    RecordKind.TASK_TAG: row_to_link,
}


def record_to_row(record: Record) -> dict[str, Any]:
    """Convert a record to column values of its table."""
    if isinstance(record, Task):
        return {
            "id": record.id,
            "title": record.title,
            "description": record.description,
            "url": record.url,
            "priority": record.priority.value,
            "completed": int(record.completed),
            "list_id": record.list_id,
            "tag_ids": json.dumps(sorted(record.tag_ids)),
            "created_at": format_timestamp(record.created_at),
            "updated_at": format_timestamp(record.updated_at),
            "completed_at": format_optional(record.completed_at),
            "due_date": format_optional(record.due_date),
        }
    if isinstance(record, TaskList):
        return {
            "id": record.id,
            "name": record.name,
            "description": record.description,
            "icon": record.icon,
            "color": record.color,
            "is_inbox": int(record.is_inbox),
            "sort_order": record.sort_order,
            "created_at": format_timestamp(record.created_at),
            "updated_at": format_timestamp(record.updated_at),
        }
    if isinstance(record, Tag):
        return {
            "id": record.id,
            "name": record.name,
            "color": record.color,
            "created_at": format_timestamp(record.created_at),
            "updated_at": format_timestamp(record.updated_at),
        }
    if isinstance(record, TaskTagLink):
        return {
            "task_id": record.task_id,
            "tag_id": record.tag_id,
            "created_at": format_timestamp(record.created_at),
        }
    raise TypeError(f"Not a syncable record: {type(record).__name__}")
