"""Server-side sync engine: merge client batches and compute deltas."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from tickit_sync.core.conflict import deletion_blocks
from tickit_sync.core.records import (
    Record,
    RecordKind,
    SyncRecord,
    Task,
    TaskList,
    TaskTagLink,
    Tombstone,
    record_kind,
)
from tickit_sync.storage.base import UpsertOutcome
from tickit_sync.sync.protocol import RejectedChange, RejectReason, SyncResult
from tickit_sync.utils.timeutils import utcnow

if TYPE_CHECKING:
    from tickit_sync.storage.base import SyncStorage

logger = logging.getLogger(__name__)

DEFAULT_REDELIVERY_WINDOW_SECONDS = 5.0

# Parents are applied before children so that references inside one batch
# resolve; deletions come last.
_APPLY_ORDER: dict[RecordKind, int] = {
    RecordKind.LIST: 0,
    RecordKind.TAG: 1,
    RecordKind.TASK: 2,
    RecordKind.TASK_TAG: 3,
}
_DELETION_RANK = len(_APPLY_ORDER)

OUTGOING_ORDER: tuple[RecordKind, ...] = (
    RecordKind.LIST,
    RecordKind.TAG,
    RecordKind.TASK,
    RecordKind.TASK_TAG,
)


def _apply_rank(change: SyncRecord) -> int:
    if isinstance(change, Tombstone):
        return _DELETION_RANK
    return _APPLY_ORDER[record_kind(change)]


@dataclass
class _Batch:
    """Bookkeeping for one sync call."""

    # Versions the device already holds, keyed by (kind, id); never echoed.
    held_records: dict[tuple[RecordKind, str], Record] = field(default_factory=dict)
    held_tombstones: dict[tuple[RecordKind, str], Tombstone] = field(default_factory=dict)
    rejected: list[RejectedChange] = field(default_factory=list)
    applied: int = 0
    skipped: int = 0

    def reject(self, change: SyncRecord, reason: RejectReason, detail: str) -> None:
        if isinstance(change, Tombstone):
            kind = change.record_kind
        else:
            kind = record_kind(change)
        self.rejected.append(RejectedChange(kind.value, change.id, reason, detail))


class SyncEngine:
    """Applies client change batches with last-write-wins.

    One ``sync()`` call runs inside one storage transaction:

    1. Capture server time and the previous cursor of the device
    2. Apply incoming changes in dependency order
    3. Collect records and tombstones changed since the device's cursor
    4. Advance the cursor

    The engine holds no state between calls; the storage handle is the only
    shared resource.
    """

    def __init__(
        self,
        storage: SyncStorage,
        redelivery_window_seconds: float = DEFAULT_REDELIVERY_WINDOW_SECONDS,
    ) -> None:
        self._storage = storage
        self._redelivery_window = timedelta(seconds=max(0.0, redelivery_window_seconds))

    @property
    def redelivery_window(self) -> timedelta:
        return self._redelivery_window

    async def sync(
        self,
        device_id: str,
        last_sync: datetime | None,
        changes: Sequence[SyncRecord],
        *,
        device_name: str = "",
    ) -> SyncResult:
        """
        Merge a batch from one device and return what it has not seen.

        Args:
            device_id: Requesting device
            last_sync: ``server_time`` returned by the device's previous
                sync, or None for a first (full) sync
            changes: Incoming records and tombstones, in any order
            device_name: Optional display name stored with the cursor

        Returns:
            The new server time, the outgoing delta and rejected changes

        Raises:
            StorageError: If the transaction failed and was rolled back
            CursorRegressionError: If the device cursor would move backward
        """
        batch = _Batch()

        async with self._storage.transaction():
            previous = await self._storage.get_device(device_id)
            server_time = utcnow()
            if previous is not None and previous.last_sync > server_time:
                server_time = previous.last_sync

            for change in sorted(changes, key=_apply_rank):
                if isinstance(change, Tombstone):
                    await self._apply_deletion(change, batch)
                else:
                    await self._apply_upsert(change, batch)

            since = None if last_sync is None else last_sync - self._redelivery_window
            outgoing = await self._collect_changes(since, batch)

            await self._storage.set_cursor(device_id, server_time, device_name)

        logger.info(
            "Sync %s: %d in (%d applied, %d skipped, %d rejected), %d out",
            device_id,
            len(changes),
            batch.applied,
            batch.skipped,
            len(batch.rejected),
            len(outgoing),
        )

        return SyncResult(
            server_time=server_time,
            changes=outgoing,
            conflicts=[],
            rejected=batch.rejected,
            applied=batch.applied,
            skipped=batch.skipped,
        )

    # ------------------------------------------------------------------
    # Incoming
    # ------------------------------------------------------------------

    async def _apply_upsert(self, record: Record, batch: _Batch) -> None:
        kind = record_kind(record)

        tombstone = await self._storage.get_tombstone(kind, record.id)
        if deletion_blocks(tombstone, record.updated_at):
            logger.debug("Upsert of deleted %s %s ignored", kind.value, record.id)
            batch.skipped += 1
            return

        rejection = await self._check_references(record)
        if rejection is not None:
            reason, detail = rejection
            logger.warning("Rejected %s %s: %s", kind.value, record.id, detail)
            batch.reject(record, reason, detail)
            return

        outcome = await self._storage.upsert_if_newer(record)
        if outcome == UpsertOutcome.APPLIED:
            batch.applied += 1
            if isinstance(record, Task):
                await self._reconcile_links(record, batch)
        else:
            batch.skipped += 1

        # Stored tasks report the tag_ids of their visible links, so this
        # comparison runs after reconciliation.
        if await self._storage.get_record(kind, record.id) == record:
            batch.held_records[(kind, record.id)] = record

    async def _apply_deletion(self, tombstone: Tombstone, batch: _Batch) -> None:
        kind = tombstone.record_kind

        if kind == RecordKind.LIST:
            inbox = await self._storage.find_inbox()
            if inbox is not None and inbox.id == tombstone.id:
                detail = f"list {tombstone.id} is the inbox"
                logger.warning("Rejected deletion: %s", detail)
                batch.reject(tombstone, RejectReason.INBOX_DELETE, detail)
                return

        outcome = await self._storage.put_tombstone(tombstone)
        if await self._storage.get_tombstone(kind, tombstone.id) == tombstone:
            batch.held_tombstones[(kind, tombstone.id)] = tombstone

        if outcome == UpsertOutcome.APPLIED:
            batch.applied += 1
        else:
            batch.skipped += 1

    async def _check_references(self, record: Record) -> tuple[RejectReason, str] | None:
        """Return a rejection if ``record`` points at ids the server never saw."""
        storage = self._storage

        if isinstance(record, Task):
            if not await storage.record_known(RecordKind.LIST, record.list_id):
                return RejectReason.UNKNOWN_LIST, f"unknown list {record.list_id}"
            return None
        if isinstance(record, TaskTagLink):
            if not await storage.record_known(RecordKind.TASK, record.task_id):
                return RejectReason.UNKNOWN_TASK, f"unknown task {record.task_id}"
            if not await storage.record_known(RecordKind.TAG, record.tag_id):
                return RejectReason.UNKNOWN_TAG, f"unknown tag {record.tag_id}"
            return None
        if isinstance(record, TaskList):
            if record.is_inbox:
                inbox = await storage.find_inbox()
                if inbox is not None and inbox.id != record.id:
                    return RejectReason.DUPLICATE_INBOX, f"inbox already exists: {inbox.id}"
            return None
        return None

    async def _reconcile_links(self, task: Task, batch: _Batch) -> None:
        """Bring the task's link rows in line with its ``tag_ids``.

        Missing links are created with the task's timestamp; links absent
        from ``tag_ids`` that predate this task version are tombstoned.
        """
        storage = self._storage
        current = {link.tag_id: link for link in await storage.links_for_task(task.id)}

        for tag_id in sorted(task.tag_ids - current.keys()):
            if not await storage.record_known(RecordKind.TAG, tag_id):
                logger.debug("Task %s references unknown tag %s", task.id, tag_id)
                continue
            link = TaskTagLink(task_id=task.id, tag_id=tag_id, created_at=task.updated_at)
            if deletion_blocks(
                await storage.get_tombstone(RecordKind.TASK_TAG, link.id), link.created_at
            ):
                continue
            if await storage.upsert_if_newer(link) == UpsertOutcome.APPLIED:
                batch.held_records[(RecordKind.TASK_TAG, link.id)] = link

        for tag_id, link in current.items():
            if tag_id in task.tag_ids or link.created_at >= task.updated_at:
                continue
            removal = Tombstone(
                id=link.id, record_kind=RecordKind.TASK_TAG, deleted_at=task.updated_at
            )
            if await storage.put_tombstone(removal) == UpsertOutcome.APPLIED:
                batch.held_tombstones[(RecordKind.TASK_TAG, link.id)] = removal

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    async def _collect_changes(self, since: datetime | None, batch: _Batch) -> list[SyncRecord]:
        """Tombstones first, then records parent-first, minus what the device holds."""
        outgoing: list[SyncRecord] = [
            tombstone
            for tombstone in await self._storage.tombstones_since(since)
            if batch.held_tombstones.get((tombstone.record_kind, tombstone.id)) != tombstone
        ]
        for kind in OUTGOING_ORDER:
            outgoing.extend(
                record
                for record in await self._storage.changed_since(kind, since)
                if batch.held_records.get((kind, record.id)) != record
            )
        return outgoing
