"""Sync protocol data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from tickit_sync.core.records import SyncRecord


class RejectReason(StrEnum):
    """Why a single incoming change was refused."""

    UNKNOWN_LIST = "unknown_list"
    UNKNOWN_TASK = "unknown_task"
    UNKNOWN_TAG = "unknown_tag"
    DUPLICATE_INBOX = "duplicate_inbox"
    INBOX_DELETE = "inbox_delete"


@dataclass(frozen=True)
class RejectedChange:
    """An incoming change refused for a referential reason.

    The rest of the batch is still applied.
    """

    record_type: str
    id: str
    reason: RejectReason
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_type": self.record_type,
            "id": self.id,
            "reason": self.reason.value,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync call.

    Attributes:
        server_time: New cursor of the device; send it back as ``last_sync``
        changes: Records and tombstones the device has not seen yet
        conflicts: Always empty; last-write-wins resolves silently
        rejected: Changes refused for referential reasons
        applied: Incoming changes that modified server state
        skipped: Incoming changes that lost to newer state
    """

    server_time: datetime
    changes: list[SyncRecord] = field(default_factory=list)
    conflicts: list[dict[str, Any]] = field(default_factory=list)
    rejected: list[RejectedChange] = field(default_factory=list)
    applied: int = 0
    skipped: int = 0
