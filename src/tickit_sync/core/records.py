"""Syncable record model: tasks, lists, tags, task/tag links and tombstones.

Every record is an immutable dataclass. ``SyncRecord`` is the tagged union
exchanged with clients; ``RecordKind`` is its discriminator. Dispatch on the
union goes through ``record_kind`` so that every site handles the same closed
set of variants.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from tickit_sync.utils.timeutils import format_optional, format_timestamp

LINK_ID_SEPARATOR = ":"


class RecordKind(StrEnum):
    """Kinds of syncable records (also the tombstone ``record_type``)."""

    TASK = "task"
    LIST = "list"
    TAG = "tag"
    TASK_TAG = "task_tag"


class Priority(StrEnum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


@dataclass(frozen=True)
class Task:
    """A task/todo item. ``list_id`` must reference a TaskList."""

    id: str
    title: str
    list_id: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    url: str | None = None
    priority: Priority = Priority.MEDIUM
    completed: bool = False
    completed_at: datetime | None = None
    due_date: datetime | None = None
    tag_ids: frozenset[str] = field(default_factory=frozenset)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "priority": self.priority.value,
            "completed": self.completed,
            "list_id": self.list_id,
            "tag_ids": sorted(self.tag_ids),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "completed_at": format_optional(self.completed_at),
            "due_date": format_optional(self.due_date),
        }


@dataclass(frozen=True)
class TaskList:
    """A list/project that contains tasks.

    At most one live list per server may carry ``is_inbox``.
    """

    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    icon: str = "📋"
    color: str | None = None
    is_inbox: bool = False
    sort_order: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "color": self.color,
            "is_inbox": self.is_inbox,
            "sort_order": self.sort_order,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }


@dataclass(frozen=True)
class Tag:
    """A tag that can be attached to tasks."""

    id: str
    name: str
    color: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }


@dataclass(frozen=True)
class TaskTagLink:
    """Membership of a tag on a task.

    A link is either present or absent, so ``created_at`` doubles as its
    conflict timestamp. Its identity is the composite ``task_id:tag_id``.
    """

    task_id: str
    tag_id: str
    created_at: datetime

    @property
    def id(self) -> str:
        return link_id(self.task_id, self.tag_id)

    @property
    def updated_at(self) -> datetime:
        return self.created_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "tag_id": self.tag_id,
            "created_at": format_timestamp(self.created_at),
        }


@dataclass(frozen=True)
class Tombstone:
    """Persistent marker that a record was deleted."""

    id: str
    record_kind: RecordKind
    deleted_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "record_type": self.record_kind.value,
            "deleted_at": format_timestamp(self.deleted_at),
        }


Record = Task | TaskList | Tag | TaskTagLink
SyncRecord = Record | Tombstone


def link_id(task_id: str, tag_id: str) -> str:
    """Composite identity of a task/tag link."""
    return f"{task_id}{LINK_ID_SEPARATOR}{tag_id}"


def split_link_id(composite_id: str) -> tuple[str, str]:
    """Split a composite link id into ``(task_id, tag_id)``.

    Raises:
        ValueError: If the id is not of the form ``task_id:tag_id``
    """
    task_id, sep, tag_id = composite_id.partition(LINK_ID_SEPARATOR)
    if not sep or not task_id or not tag_id:
        raise ValueError(f"Invalid task_tag id: {composite_id!r}")
    return task_id, tag_id


def record_kind(record: Record) -> RecordKind:
    """Return the discriminator of a live record."""
    if isinstance(record, Task):
        return RecordKind.TASK
    if isinstance(record, TaskList):
        return RecordKind.LIST
    if isinstance(record, Tag):
        return RecordKind.TAG
    if isinstance(record, TaskTagLink):
        return RecordKind.TASK_TAG
    raise TypeError(f"Not a syncable record: {type(record).__name__}")


def record_to_envelope(record: SyncRecord) -> dict[str, Any]:
    """Wire form of a record: its fields plus the ``type`` discriminator."""
    if isinstance(record, Tombstone):
        return {"type": "deleted", **record.to_dict()}
    return {"type": record_kind(record).value, **record.to_dict()}


def canonical_payload(record: Record) -> str:
    """Deterministic serialization used to break timestamp ties.

    Two devices holding the same pair of versions always pick the same
    winner because the comparison depends only on the payloads.
    """
    return json.dumps(record.to_dict(), sort_keys=True, ensure_ascii=False, separators=(",", ":"))
