"""Tests for the storage contract, run against every backend."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from tickit_sync.core.errors import CursorRegressionError
from tickit_sync.core.records import (
    Priority,
    RecordKind,
    Tag,
    Task,
    TaskList,
    TaskTagLink,
    Tombstone,
)
from tickit_sync.storage.base import SyncStorage, UpsertOutcome

BASE = datetime(2025, 1, 1, tzinfo=UTC)


def at(seconds: int) -> datetime:
    return BASE + timedelta(seconds=seconds)


def _list(list_id: str = "l1", updated: int = 10, is_inbox: bool = False) -> TaskList:
    return TaskList(
        id=list_id, name=list_id, created_at=at(0), updated_at=at(updated), is_inbox=is_inbox
    )


def _task(task_id: str = "t1", updated: int = 100, title: str = "A") -> Task:
    return Task(
        id=task_id,
        title=title,
        list_id="l1",
        created_at=at(0),
        updated_at=at(updated),
        description="details",
        url="https://example.com",
        priority=Priority.HIGH,
        completed=True,
        completed_at=at(90),
        due_date=at(1000),
        tag_ids=frozenset({"g1", "g2"}),
    )


def _tombstone(kind: RecordKind, record_id: str, when: int) -> Tombstone:
    return Tombstone(id=record_id, record_kind=kind, deleted_at=at(when))


# ── Transactions ──────────────────────────────────────────────


class TestTransactions:
    async def test_writes_outside_transaction_fail(self, any_storage: SyncStorage) -> None:
        with pytest.raises(RuntimeError, match="open transaction"):
            await any_storage.upsert_if_newer(_list())
        with pytest.raises(RuntimeError, match="open transaction"):
            await any_storage.put_tombstone(_tombstone(RecordKind.LIST, "l1", 5))
        with pytest.raises(RuntimeError, match="open transaction"):
            await any_storage.set_cursor("dev", at(0))

    async def test_commit_makes_writes_visible(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.upsert_if_newer(_list())

        assert await any_storage.get_record(RecordKind.LIST, "l1") == _list()

    async def test_error_rolls_back_everything(self, any_storage: SyncStorage) -> None:
        with pytest.raises(ValueError, match="boom"):
            async with any_storage.transaction():
                await any_storage.upsert_if_newer(_list())
                await any_storage.put_tombstone(_tombstone(RecordKind.TAG, "g1", 5))
                await any_storage.set_cursor("dev", at(0))
                raise ValueError("boom")

        assert await any_storage.get_record(RecordKind.LIST, "l1") is None
        assert await any_storage.get_tombstone(RecordKind.TAG, "g1") is None
        assert await any_storage.get_device("dev") is None

    async def test_reads_inside_transaction_see_pending_writes(
        self, any_storage: SyncStorage
    ) -> None:
        async with any_storage.transaction():
            await any_storage.upsert_if_newer(_list())
            assert await any_storage.record_known(RecordKind.LIST, "l1")

    async def test_nested_transaction_is_refused(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            with pytest.raises(RuntimeError, match="Nested"):
                async with any_storage.transaction():
                    pass

    async def test_concurrent_transactions_are_serialized(
        self, any_storage: SyncStorage
    ) -> None:
        async def write(list_id: str) -> None:
            async with any_storage.transaction():
                await any_storage.upsert_if_newer(_list(list_id))
                await asyncio.sleep(0)

        await asyncio.gather(*(write(f"l{i}") for i in range(5)))

        stats = await any_storage.get_stats()
        assert stats["list_count"] == 5

    async def test_pending_writes_are_hidden_from_other_tasks(
        self, any_storage: SyncStorage
    ) -> None:
        written = asyncio.Event()
        release = asyncio.Event()

        async def write() -> None:
            async with any_storage.transaction():
                await any_storage.upsert_if_newer(_list())
                await any_storage.set_cursor("dev", at(0))
                written.set()
                await release.wait()

        writer = asyncio.create_task(write())
        await written.wait()

        assert await any_storage.get_record(RecordKind.LIST, "l1") is None
        assert await any_storage.changed_since(RecordKind.LIST, None) == []
        assert await any_storage.get_device("dev") is None
        assert (await any_storage.get_stats())["list_count"] == 0

        release.set()
        await writer

        assert await any_storage.get_record(RecordKind.LIST, "l1") == _list()
        assert await any_storage.get_device("dev") is not None


# ── Records ───────────────────────────────────────────────────


class TestRecords:
    async def test_full_task_round_trip(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.upsert_if_newer(_task())
            await any_storage.upsert_if_newer(TaskTagLink("t1", "g1", at(100)))
            await any_storage.upsert_if_newer(TaskTagLink("t1", "g2", at(100)))

        assert await any_storage.get_record(RecordKind.TASK, "t1") == _task()

    async def test_task_tag_ids_follow_visible_links(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.upsert_if_newer(_task())
            await any_storage.upsert_if_newer(TaskTagLink("t1", "g1", at(100)))
            await any_storage.upsert_if_newer(TaskTagLink("t1", "g3", at(120)))
            await any_storage.put_tombstone(_tombstone(RecordKind.TASK_TAG, "t1:g3", 130))

        stored = await any_storage.get_record(RecordKind.TASK, "t1")
        assert isinstance(stored, Task)
        assert stored.tag_ids == {"g1"}
        [changed] = await any_storage.changed_since(RecordKind.TASK, None)
        assert isinstance(changed, Task)
        assert changed.tag_ids == {"g1"}

    async def test_upsert_if_newer(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            assert await any_storage.upsert_if_newer(_task(updated=100)) == UpsertOutcome.APPLIED
            assert (
                await any_storage.upsert_if_newer(_task(updated=50, title="old"))
                == UpsertOutcome.SKIPPED
            )
            assert await any_storage.upsert_if_newer(_task(updated=100)) == UpsertOutcome.SKIPPED
            assert (
                await any_storage.upsert_if_newer(_task(updated=200, title="new"))
                == UpsertOutcome.APPLIED
            )

        stored = await any_storage.get_record(RecordKind.TASK, "t1")
        assert isinstance(stored, Task)
        assert stored.title == "new"

    async def test_changed_since_is_ordered_and_exclusive(
        self, any_storage: SyncStorage
    ) -> None:
        async with any_storage.transaction():
            await any_storage.upsert_if_newer(_task("b", updated=200))
            await any_storage.upsert_if_newer(_task("a", updated=200))
            await any_storage.upsert_if_newer(_task("c", updated=100))

        everything = await any_storage.changed_since(RecordKind.TASK, None)
        newer = await any_storage.changed_since(RecordKind.TASK, at(100))

        assert [r.id for r in everything] == ["c", "a", "b"]
        assert [r.id for r in newer] == ["a", "b"]

    async def test_links(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.upsert_if_newer(TaskTagLink("t1", "g2", at(5)))
            await any_storage.upsert_if_newer(TaskTagLink("t1", "g1", at(6)))
            await any_storage.upsert_if_newer(TaskTagLink("t2", "g1", at(7)))

        links = await any_storage.links_for_task("t1")
        assert [link.tag_id for link in links] == ["g1", "g2"]
        assert await any_storage.get_record(RecordKind.TASK_TAG, "t2:g1") == TaskTagLink(
            "t2", "g1", at(7)
        )

    async def test_find_inbox(self, any_storage: SyncStorage) -> None:
        assert await any_storage.find_inbox() is None
        async with any_storage.transaction():
            await any_storage.upsert_if_newer(_list("l1"))
            await any_storage.upsert_if_newer(_list("inbox", is_inbox=True))

        inbox = await any_storage.find_inbox()
        assert inbox is not None
        assert inbox.id == "inbox"

    async def test_kinds_do_not_collide(self, any_storage: SyncStorage) -> None:
        tag = Tag(id="x", name="x", color="#000", created_at=at(0), updated_at=at(1))
        async with any_storage.transaction():
            await any_storage.upsert_if_newer(tag)

        assert await any_storage.get_record(RecordKind.TAG, "x") == tag
        assert await any_storage.get_record(RecordKind.LIST, "x") is None
        assert not await any_storage.record_known(RecordKind.LIST, "x")


# ── Tombstones ────────────────────────────────────────────────


class TestTombstones:
    async def test_tombstone_hides_older_row(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.upsert_if_newer(_task(updated=100))
            await any_storage.put_tombstone(_tombstone(RecordKind.TASK, "t1", 100))

        assert await any_storage.get_record(RecordKind.TASK, "t1") is None
        assert await any_storage.changed_since(RecordKind.TASK, None) == []
        assert await any_storage.record_known(RecordKind.TASK, "t1")

    async def test_newer_row_shows_through(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.put_tombstone(_tombstone(RecordKind.TASK, "t1", 100))
            await any_storage.upsert_if_newer(_task(updated=101))

        assert await any_storage.get_record(RecordKind.TASK, "t1") is not None

    async def test_link_tombstone(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.upsert_if_newer(TaskTagLink("t1", "g1", at(5)))
            await any_storage.put_tombstone(_tombstone(RecordKind.TASK_TAG, "t1:g1", 10))

        assert await any_storage.links_for_task("t1") == []
        assert await any_storage.get_record(RecordKind.TASK_TAG, "t1:g1") is None

    async def test_tombstone_for_unknown_record_is_known(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.put_tombstone(_tombstone(RecordKind.LIST, "gone", 10))

        assert await any_storage.record_known(RecordKind.LIST, "gone")
        assert not await any_storage.record_known(RecordKind.TASK, "gone")

    async def test_only_later_deletion_replaces(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            first = await any_storage.put_tombstone(_tombstone(RecordKind.TAG, "g1", 100))
            same = await any_storage.put_tombstone(_tombstone(RecordKind.TAG, "g1", 100))
            older = await any_storage.put_tombstone(_tombstone(RecordKind.TAG, "g1", 50))
            newer = await any_storage.put_tombstone(_tombstone(RecordKind.TAG, "g1", 150))

        assert (first, same, older, newer) == (
            UpsertOutcome.APPLIED,
            UpsertOutcome.SKIPPED,
            UpsertOutcome.SKIPPED,
            UpsertOutcome.APPLIED,
        )
        stored = await any_storage.get_tombstone(RecordKind.TAG, "g1")
        assert stored is not None
        assert stored.deleted_at == at(150)

    async def test_tombstones_since(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.put_tombstone(_tombstone(RecordKind.TASK, "t2", 300))
            await any_storage.put_tombstone(_tombstone(RecordKind.TASK, "t1", 100))
            await any_storage.put_tombstone(_tombstone(RecordKind.LIST, "l1", 200))

        assert [t.id for t in await any_storage.tombstones_since(None)] == ["t1", "l1", "t2"]
        assert [t.id for t in await any_storage.tombstones_since(at(200))] == ["t2"]


# ── Devices ───────────────────────────────────────────────────


class TestDevices:
    async def test_register_and_advance(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            created = await any_storage.set_cursor("dev-1", at(100), "Phone")
        async with any_storage.transaction():
            advanced = await any_storage.set_cursor("dev-1", at(200))

        assert created.device_name == "Phone"
        assert advanced.last_sync == at(200)
        assert advanced.device_name == "Phone"
        assert advanced.registered_at == created.registered_at

        stored = await any_storage.get_device("dev-1")
        assert stored is not None
        assert stored.last_sync == at(200)
        assert stored.device_name == "Phone"

    async def test_equal_cursor_is_allowed(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.set_cursor("dev-1", at(100))
            await any_storage.set_cursor("dev-1", at(100))

    async def test_regression_raises(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.set_cursor("dev-1", at(100))

        with pytest.raises(CursorRegressionError) as exc_info:
            async with any_storage.transaction():
                await any_storage.set_cursor("dev-1", at(99))

        assert exc_info.value.device_id == "dev-1"

    async def test_list_devices_most_recent_first(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.set_cursor("old", at(100))
            await any_storage.set_cursor("new", at(300))
            await any_storage.set_cursor("mid", at(200))

        assert [d.device_id for d in await any_storage.list_devices()] == ["new", "mid", "old"]


# ── Stats ─────────────────────────────────────────────────────


class TestStats:
    async def test_empty(self, any_storage: SyncStorage) -> None:
        assert await any_storage.get_stats() == {
            "task_count": 0,
            "list_count": 0,
            "tag_count": 0,
            "task_tag_count": 0,
            "tombstone_count": 0,
            "device_count": 0,
        }

    async def test_counts_visible_records_only(self, any_storage: SyncStorage) -> None:
        async with any_storage.transaction():
            await any_storage.upsert_if_newer(_list())
            await any_storage.upsert_if_newer(_task("t1"))
            await any_storage.upsert_if_newer(_task("t2"))
            await any_storage.put_tombstone(_tombstone(RecordKind.TASK, "t2", 500))
            await any_storage.set_cursor("dev", at(0))

        stats = await any_storage.get_stats()
        assert stats["list_count"] == 1
        assert stats["task_count"] == 1
        assert stats["tombstone_count"] == 1
        assert stats["device_count"] == 1
