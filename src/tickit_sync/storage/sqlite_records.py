"""SQLite record operations mixin (tasks, lists, tags, task/tag links)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from tickit_sync.core.conflict import incoming_wins
from tickit_sync.core.records import (
    Record,
    RecordKind,
    TaskList,
    TaskTagLink,
    record_kind,
    split_link_id,
)
from tickit_sync.storage.base import UpsertOutcome
from tickit_sync.storage.sqlite_row_mappers import ROW_MAPPERS, record_to_row, row_to_link
from tickit_sync.utils.timeutils import format_timestamp

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)


class _Table:
    """Table layout of one record kind."""

    def __init__(self, name: str, key_columns: tuple[str, ...], timestamp_column: str) -> None:
        self.name = name
        self.key_columns = key_columns
        self.timestamp_column = timestamp_column
        # Expression yielding the record id, matched against tombstones.id
        self.id_expr = " || ':' || ".join(f"r.{col}" for col in key_columns)


TABLES: dict[RecordKind, _Table] = {
    RecordKind.LIST: _Table("lists", ("id",), "updated_at"),
    RecordKind.TAG: _Table("tags", ("id",), "updated_at"),
    RecordKind.TASK: _Table("tasks", ("id",), "updated_at"),
    RecordKind.TASK_TAG: _Table("task_tags", ("task_id", "tag_id"), "created_at"),
}


def _key_values(kind: RecordKind, record_id: str) -> tuple[str, ...]:
    if kind == RecordKind.TASK_TAG:
        return split_link_id(record_id)
    return (record_id,)


# Tag ids of a task's visible links; stored tasks report these as tag_ids.
LINKED_TAG_IDS = (
    "(SELECT json_group_array(l.tag_id) FROM task_tags l "
    "LEFT JOIN tombstones lt ON lt.record_type = 'task_tag' "
    "AND lt.id = l.task_id || ':' || l.tag_id "
    "WHERE l.task_id = r.id AND (lt.deleted_at IS NULL OR lt.deleted_at < l.created_at))"
)


def visible_select(kind: RecordKind, where: str = "") -> str:
    """SELECT over rows of ``kind`` not hidden by a tombstone.

    The first bound parameter is the tombstone record_type. Task rows carry
    an extra ``linked_tag_ids`` column.
    """
    table = TABLES[kind]
    columns = "r.*"
    if kind == RecordKind.TASK:
        columns += f", {LINKED_TAG_IDS} AS linked_tag_ids"
    sql = (
        f"SELECT {columns} FROM {table.name} r "
        f"LEFT JOIN tombstones t ON t.record_type = ? AND t.id = {table.id_expr} "
        f"WHERE (t.deleted_at IS NULL OR t.deleted_at < r.{table.timestamp_column})"
    )
    if where:
        sql += f" AND {where}"
    return sql


class SQLiteRecordsMixin:
    """Mixin providing current-state record operations."""

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

    async def upsert_if_newer(self, record: Record) -> UpsertOutcome:
        conn = self._write_conn()
        kind = record_kind(record)
        table = TABLES[kind]

        key_where = " AND ".join(f"{col} = ?" for col in table.key_columns)
        async with conn.execute(
            f"SELECT * FROM {table.name} WHERE {key_where}",
            _key_values(kind, record.id),
        ) as cursor:
            row = await cursor.fetchone()

        stored = ROW_MAPPERS[kind](row) if row is not None else None
        if not incoming_wins(record, stored):
            logger.debug("Skipped stale %s %s", kind.value, record.id)
            return UpsertOutcome.SKIPPED

        values: dict[str, Any] = record_to_row(record)
        columns = list(values)
        updates = [col for col in columns if col not in table.key_columns]
        await conn.execute(
            f"INSERT INTO {table.name} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) "
            f"ON CONFLICT({', '.join(table.key_columns)}) DO UPDATE SET "
            + ", ".join(f"{col} = excluded.{col}" for col in updates),
            tuple(values.values()),
        )
        return UpsertOutcome.APPLIED

    async def get_record(self, kind: RecordKind, record_id: str) -> Record | None:
        conn = self._read_conn()
        table = TABLES[kind]
        key_where = " AND ".join(f"r.{col} = ?" for col in table.key_columns)

        async with conn.execute(
            visible_select(kind, key_where),
            (kind.value, *_key_values(kind, record_id)),
        ) as cursor:
            row = await cursor.fetchone()

        return ROW_MAPPERS[kind](row) if row is not None else None

    async def changed_since(self, kind: RecordKind, since: datetime | None) -> list[Record]:
        conn = self._read_conn()
        table = TABLES[kind]
        order = f" ORDER BY r.{table.timestamp_column}, {table.id_expr}"

        if since is None:
            sql = visible_select(kind) + order
            params: tuple[Any, ...] = (kind.value,)
        else:
            sql = visible_select(kind, f"r.{table.timestamp_column} > ?") + order
            params = (kind.value, format_timestamp(since))

        mapper = ROW_MAPPERS[kind]
        async with conn.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [mapper(row) for row in rows]

    async def record_known(self, kind: RecordKind, record_id: str) -> bool:
        conn = self._read_conn()
        table = TABLES[kind]
        key_where = " AND ".join(f"{col} = ?" for col in table.key_columns)

        async with conn.execute(
            f"""SELECT
                  EXISTS(SELECT 1 FROM {table.name} WHERE {key_where})
                  OR EXISTS(SELECT 1 FROM tombstones WHERE record_type = ? AND id = ?)
                AS known""",
            (*_key_values(kind, record_id), kind.value, record_id),
        ) as cursor:
            row = await cursor.fetchone()
        return bool(row["known"]) if row else False

    async def links_for_task(self, task_id: str) -> list[TaskTagLink]:
        conn = self._read_conn()
        async with conn.execute(
            visible_select(RecordKind.TASK_TAG, "r.task_id = ?") + " ORDER BY r.tag_id",
            (RecordKind.TASK_TAG.value, task_id),
        ) as cursor:
            rows = await cursor.fetchall()
        return [row_to_link(row) for row in rows]

    async def find_inbox(self) -> TaskList | None:
        conn = self._read_conn()
        async with conn.execute(
            visible_select(RecordKind.LIST, "r.is_inbox = 1") + " ORDER BY r.id LIMIT 1",
            (RecordKind.LIST.value,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        record = ROW_MAPPERS[RecordKind.LIST](row)
        return record if isinstance(record, TaskList) else None
