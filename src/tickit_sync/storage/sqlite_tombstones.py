"""SQLite tombstone log operations mixin."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from tickit_sync.core.records import RecordKind, Tombstone
from tickit_sync.storage.base import UpsertOutcome
from tickit_sync.storage.sqlite_row_mappers import row_to_tombstone
from tickit_sync.utils.timeutils import format_timestamp

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)


class SQLiteTombstonesMixin:
    """Mixin providing the permanent deletion log."""

    # ------------------------------------------------------------------
    # Protocol stubs, satisfied by SQLiteStorage at runtime.
    # ------------------------------------------------------------------

    def _write_conn(self) -> aiosqlite.Connection:
        raise NotImplementedError

    def _read_conn(self) -> aiosqlite.Connection:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_tombstone(self, kind: RecordKind, record_id: str) -> Tombstone | None:
        conn = self._read_conn()
        async with conn.execute(
            "SELECT * FROM tombstones WHERE record_type = ? AND id = ?",
            (kind.value, record_id),
        ) as cursor:
            row = await cursor.fetchone()
        return row_to_tombstone(row) if row is not None else None

    async def put_tombstone(self, tombstone: Tombstone) -> UpsertOutcome:
        conn = self._write_conn()
        # The WHERE clause keeps the latest deletion; an equal or earlier
        # deleted_at leaves the row untouched and reports no change.
        cursor = await conn.execute(
            """INSERT INTO tombstones (record_type, id, deleted_at)
               VALUES (?, ?, ?)
               ON CONFLICT(record_type, id) DO UPDATE SET deleted_at = excluded.deleted_at
               WHERE excluded.deleted_at > tombstones.deleted_at""",
            (
                tombstone.record_kind.value,
                tombstone.id,
                format_timestamp(tombstone.deleted_at),
            ),
        )
        if cursor.rowcount > 0:
            logger.debug("Tombstoned %s %s", tombstone.record_kind.value, tombstone.id)
            return UpsertOutcome.APPLIED
        return UpsertOutcome.SKIPPED

    async def tombstones_since(self, since: datetime | None) -> list[Tombstone]:
        conn = self._read_conn()
        if since is None:
            query = "SELECT * FROM tombstones ORDER BY deleted_at, record_type, id"
            params: tuple[str, ...] = ()
        else:
            query = (
                "SELECT * FROM tombstones WHERE deleted_at > ? "
                "ORDER BY deleted_at, record_type, id"
            )
            params = (format_timestamp(since),)

        async with conn.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [row_to_tombstone(row) for row in rows]
