"""In-memory storage backend for development and testing."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import datetime

from tickit_sync.core.conflict import deletion_blocks, incoming_wins, tombstone_supersedes
from tickit_sync.core.errors import CursorRegressionError
from tickit_sync.core.records import (
    Record,
    RecordKind,
    Task,
    TaskList,
    TaskTagLink,
    Tombstone,
    record_kind,
)
from tickit_sync.storage.base import DeviceCursor, SyncStorage, UpsertOutcome
from tickit_sync.utils.timeutils import format_timestamp, utcnow


@dataclass
class _State:
    rows: dict[RecordKind, dict[str, Record]] = field(
        default_factory=lambda: {kind: {} for kind in RecordKind}
    )
    tombstones: dict[tuple[RecordKind, str], Tombstone] = field(default_factory=dict)
    devices: dict[str, DeviceCursor] = field(default_factory=dict)

    def copy(self) -> _State:
        # Records are immutable, so copying the containers is enough.
        return _State(
            rows={kind: dict(rows) for kind, rows in self.rows.items()},
            tombstones=dict(self.tombstones),
            devices=dict(self.devices),
        )


class InMemoryStorage(SyncStorage):
    """Dict-based storage for development and testing.

    A transaction works on a staged copy of the state that replaces the
    committed state on success and is dropped on error. Data is lost when
    the process exits.
    """

    def __init__(self) -> None:
        self._state = _State()
        self._lock = asyncio.Lock()
        self._staged: ContextVar[_State | None] = ContextVar(
            f"tickit_memory_tx_{id(self)}", default=None
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._staged.get() is not None:
            raise RuntimeError("Nested transactions are not supported")
        async with self._lock:
            staged = self._state.copy()
            token = self._staged.set(staged)
            try:
                yield
            finally:
                self._staged.reset(token)
            self._state = staged

    def _view(self) -> _State:
        staged = self._staged.get()
        return staged if staged is not None else self._state

    def _writable(self) -> _State:
        staged = self._staged.get()
        if staged is None:
            raise RuntimeError("Writes require an open transaction")
        return staged

    def _is_visible(self, state: _State, kind: RecordKind, record: Record) -> bool:
        tombstone = state.tombstones.get((kind, record.id))
        return not deletion_blocks(tombstone, record.updated_at)

    def _visible_links(self, state: _State, task_id: str) -> list[TaskTagLink]:
        return [
            link
            for link in state.rows[RecordKind.TASK_TAG].values()
            if isinstance(link, TaskTagLink)
            and link.task_id == task_id
            and self._is_visible(state, RecordKind.TASK_TAG, link)
        ]

    def _present(self, state: _State, record: Record) -> Record:
        """Return a stored record as readers see it.

        A task's ``tag_ids`` is whatever its visible links say, not the
        value last written with the task.
        """
        if not isinstance(record, Task):
            return record
        tag_ids = frozenset(link.tag_id for link in self._visible_links(state, record.id))
        return replace(record, tag_ids=tag_ids)

    # ========== Record Operations ==========

    async def upsert_if_newer(self, record: Record) -> UpsertOutcome:
        state = self._writable()
        rows = state.rows[record_kind(record)]
        if not incoming_wins(record, rows.get(record.id)):
            return UpsertOutcome.SKIPPED
        rows[record.id] = record
        return UpsertOutcome.APPLIED

    async def get_record(self, kind: RecordKind, record_id: str) -> Record | None:
        state = self._view()
        record = state.rows[kind].get(record_id)
        if record is None or not self._is_visible(state, kind, record):
            return None
        return self._present(state, record)

    async def changed_since(self, kind: RecordKind, since: datetime | None) -> list[Record]:
        state = self._view()
        matches = [
            self._present(state, record)
            for record in state.rows[kind].values()
            if (since is None or record.updated_at > since)
            and self._is_visible(state, kind, record)
        ]
        return sorted(matches, key=lambda r: (r.updated_at, r.id))

    async def record_known(self, kind: RecordKind, record_id: str) -> bool:
        state = self._view()
        return record_id in state.rows[kind] or (kind, record_id) in state.tombstones

    async def links_for_task(self, task_id: str) -> list[TaskTagLink]:
        links = self._visible_links(self._view(), task_id)
        return sorted(links, key=lambda link: link.tag_id)

    async def find_inbox(self) -> TaskList | None:
        state = self._view()
        for record in state.rows[RecordKind.LIST].values():
            if (
                isinstance(record, TaskList)
                and record.is_inbox
                and self._is_visible(state, RecordKind.LIST, record)
            ):
                return record
        return None

    # ========== Tombstone Operations ==========

    async def get_tombstone(self, kind: RecordKind, record_id: str) -> Tombstone | None:
        return self._view().tombstones.get((kind, record_id))

    async def put_tombstone(self, tombstone: Tombstone) -> UpsertOutcome:
        state = self._writable()
        key = (tombstone.record_kind, tombstone.id)
        if not tombstone_supersedes(tombstone, state.tombstones.get(key)):
            return UpsertOutcome.SKIPPED
        state.tombstones[key] = tombstone
        return UpsertOutcome.APPLIED

    async def tombstones_since(self, since: datetime | None) -> list[Tombstone]:
        matches = [
            t for t in self._view().tombstones.values() if since is None or t.deleted_at > since
        ]
        return sorted(matches, key=lambda t: (t.deleted_at, t.record_kind.value, t.id))

    # ========== Device Operations ==========

    async def get_device(self, device_id: str) -> DeviceCursor | None:
        return self._view().devices.get(device_id)

    async def set_cursor(
        self,
        device_id: str,
        timestamp: datetime,
        device_name: str = "",
    ) -> DeviceCursor:
        state = self._writable()
        existing = state.devices.get(device_id)
        if existing is None:
            cursor = DeviceCursor(
                device_id=device_id,
                device_name=device_name,
                last_sync=timestamp,
                registered_at=utcnow(),
            )
        else:
            if timestamp < existing.last_sync:
                raise CursorRegressionError(
                    device_id,
                    format_timestamp(existing.last_sync),
                    format_timestamp(timestamp),
                )
            cursor = replace(
                existing,
                last_sync=timestamp,
                device_name=device_name or existing.device_name,
            )
        state.devices[device_id] = cursor
        return cursor

    async def list_devices(self) -> list[DeviceCursor]:
        return sorted(
            self._view().devices.values(),
            key=lambda d: (d.last_sync, d.device_id),
            reverse=True,
        )

    # ========== Statistics ==========

    async def get_stats(self) -> dict[str, int]:
        state = self._view()
        stats = {
            f"{kind.value}_count": sum(
                1 for record in state.rows[kind].values() if self._is_visible(state, kind, record)
            )
            for kind in RecordKind
        }
        stats["tombstone_count"] = len(state.tombstones)
        stats["device_count"] = len(state.devices)
        return stats
