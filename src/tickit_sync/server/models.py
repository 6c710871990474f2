"""Pydantic models for API request/response."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator

from tickit_sync.core.records import (
    Priority,
    RecordKind,
    SyncRecord,
    Tag,
    Task,
    TaskList,
    TaskTagLink,
    Tombstone,
)
from tickit_sync.utils.timeutils import ensure_utc

# Record ids must not contain ":" (the task/tag link separator)
ID_PATTERN = r"^[A-Za-z0-9_\-\.]+$"
LINK_ID_PATTERN = r"^[A-Za-z0-9_\-\.]+:[A-Za-z0-9_\-\.]+$"
DEVICE_ID_PATTERN = r"^[A-Za-z0-9_\-\.:]+$"

RecordId = Annotated[str, Field(min_length=1, max_length=128, pattern=ID_PATTERN)]


def _utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


# ============ Change Envelopes ============


class TaskChange(BaseModel):
    """A task upsert."""

    type: Literal["task"]
    id: RecordId
    title: str = Field(..., max_length=10_000)
    description: str | None = Field(None, max_length=100_000)
    url: str | None = Field(None, max_length=4096)
    priority: Priority = Priority.MEDIUM
    completed: bool = False
    list_id: RecordId
    tag_ids: list[RecordId] = Field(default_factory=list, max_length=1000)
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    due_date: datetime | None = None

    def to_record(self) -> Task:
        return Task(
            id=self.id,
            title=self.title,
            description=self.description,
            url=self.url,
            priority=self.priority,
            completed=self.completed,
            list_id=self.list_id,
            tag_ids=frozenset(self.tag_ids),
            created_at=ensure_utc(self.created_at),
            updated_at=ensure_utc(self.updated_at),
            completed_at=_utc(self.completed_at),
            due_date=_utc(self.due_date),
        )


class ListChange(BaseModel):
    """A list upsert."""

    type: Literal["list"]
    id: RecordId
    name: str = Field(..., max_length=1000)
    description: str | None = Field(None, max_length=100_000)
    icon: str = Field("📋", max_length=64)
    color: str | None = Field(None, max_length=64)
    is_inbox: bool = False
    sort_order: int = 0
    created_at: datetime
    updated_at: datetime

    def to_record(self) -> TaskList:
        return TaskList(
            id=self.id,
            name=self.name,
            description=self.description,
            icon=self.icon,
            color=self.color,
            is_inbox=self.is_inbox,
            sort_order=self.sort_order,
            created_at=ensure_utc(self.created_at),
            updated_at=ensure_utc(self.updated_at),
        )


class TagChange(BaseModel):
    """A tag upsert. ``updated_at`` defaults to ``created_at``."""

    type: Literal["tag"]
    id: RecordId
    name: str = Field(..., max_length=1000)
    color: str = Field(..., max_length=64)
    created_at: datetime
    updated_at: datetime | None = None

    def to_record(self) -> Tag:
        created_at = ensure_utc(self.created_at)
        return Tag(
            id=self.id,
            name=self.name,
            color=self.color,
            created_at=created_at,
            updated_at=_utc(self.updated_at) or created_at,
        )


class TaskTagChange(BaseModel):
    """A task/tag link upsert."""

    type: Literal["task_tag"]
    task_id: RecordId
    tag_id: RecordId
    created_at: datetime

    def to_record(self) -> TaskTagLink:
        return TaskTagLink(
            task_id=self.task_id,
            tag_id=self.tag_id,
            created_at=ensure_utc(self.created_at),
        )


class DeletedChange(BaseModel):
    """A deletion marker. Link deletions use the ``task_id:tag_id`` id."""

    type: Literal["deleted"]
    id: str = Field(..., min_length=1, max_length=257)
    record_type: RecordKind
    deleted_at: datetime

    @model_validator(mode="after")
    def _check_id_shape(self) -> DeletedChange:
        pattern = LINK_ID_PATTERN if self.record_type == RecordKind.TASK_TAG else ID_PATTERN
        if not re.match(pattern, self.id):
            raise ValueError(f"Invalid id for record_type {self.record_type.value}")
        return self

    def to_record(self) -> Tombstone:
        return Tombstone(
            id=self.id,
            record_kind=self.record_type,
            deleted_at=ensure_utc(self.deleted_at),
        )


ChangeEnvelope = Annotated[
    TaskChange | ListChange | TagChange | TaskTagChange | DeletedChange,
    Field(discriminator="type"),
]


# ============ Request Models ============


class SyncRequest(BaseModel):
    """Request body of POST /api/v1/sync."""

    device_id: str = Field(..., min_length=1, max_length=128, pattern=DEVICE_ID_PATTERN)
    device_name: str = Field("", max_length=256)
    last_sync: datetime | None = Field(
        None, description="server_time of the previous sync; omit for a full sync"
    )
    changes: list[ChangeEnvelope] = Field(default_factory=list)

    def to_records(self) -> list[SyncRecord]:
        return [change.to_record() for change in self.changes]


# ============ Response Models ============


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str


class SyncResponse(BaseModel):
    """Response body of POST /api/v1/sync."""

    server_time: str
    changes: list[dict[str, Any]]
    conflicts: list[dict[str, Any]]
    rejected: list[dict[str, Any]]


class DeviceResponse(BaseModel):
    """One device cursor."""

    device_id: str
    device_name: str
    last_sync: str
    registered_at: str


class StatusResponse(BaseModel):
    """Server status summary."""

    version: str
    server_time: str
    stats: dict[str, int]
