"""SQLite storage backend for persistent sync state."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from pathlib import Path

import aiosqlite

from tickit_sync.core.errors import StorageError
from tickit_sync.core.records import RecordKind
from tickit_sync.storage.base import SyncStorage
from tickit_sync.storage.read_pool import DEFAULT_POOL_SIZE, ReadPool
from tickit_sync.storage.sqlite_devices import SQLiteDevicesMixin
from tickit_sync.storage.sqlite_records import SQLiteRecordsMixin, visible_select
from tickit_sync.storage.sqlite_schema import SCHEMA, SCHEMA_VERSION, run_migrations
from tickit_sync.storage.sqlite_tombstones import SQLiteTombstonesMixin

logger = logging.getLogger(__name__)


class SQLiteStorage(
    SQLiteRecordsMixin,
    SQLiteTombstonesMixin,
    SQLiteDevicesMixin,
    SyncStorage,
):
    """SQLite-based storage for a single server instance.

    All writes go through one writer connection. ``transaction()`` takes an
    asyncio lock and opens ``BEGIN IMMEDIATE`` on it, so sync batches are
    applied one at a time. The connection owning the open transaction is
    tracked per task in a context variable; reads made by that task see its
    uncommitted writes, every other read goes to the reader pool.
    """

    def __init__(self, db_path: str | Path, read_pool_size: int = DEFAULT_POOL_SIZE) -> None:
        self._db_path = Path(db_path).resolve()
        self._conn: aiosqlite.Connection | None = None
        self._read_pool: ReadPool | None = None
        self._read_pool_size = read_pool_size
        self._write_lock = asyncio.Lock()
        self._tx_conn: ContextVar[aiosqlite.Connection | None] = ContextVar(
            f"tickit_sqlite_tx_{id(self)}", default=None
        )

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Initialize database connections and schema.

        Existing databases run pending migrations before the full schema
        (CREATE ... IF NOT EXISTS) is applied.
        """
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        # Referential checks happen in the sync engine: a task may point at a
        # list that only exists as a tombstone.
        await self._conn.execute("PRAGMA foreign_keys = OFF")
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA synchronous=NORMAL")
        await self._conn.execute("PRAGMA busy_timeout = 5000")

        await self._conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)"
        )
        await self._conn.commit()

        async with self._conn.execute("SELECT version FROM schema_version") as cursor:
            row = await cursor.fetchone()

        if row is not None and row["version"] < SCHEMA_VERSION:
            await run_migrations(self._conn, row["version"])

        await self._conn.executescript(SCHEMA)

        async with self._conn.execute("SELECT version FROM schema_version") as cursor:
            row = await cursor.fetchone()
            if row is None:
                await self._conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
                )
                await self._conn.commit()

        self._read_pool = ReadPool(self._db_path, self._read_pool_size)
        await self._read_pool.initialize()
        logger.info("Opened sync database %s (schema v%d)", self._db_path, SCHEMA_VERSION)

    async def close(self) -> None:
        """Close database connection and reader pool."""
        if self._read_pool:
            await self._read_pool.close()
            self._read_pool = None
        if self._conn:
            await self._conn.close()
            self._conn = None

    # ========== Transactions ==========

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._tx_conn.get() is not None:
            raise RuntimeError("Nested transactions are not supported")
        conn = self._ensure_conn()

        async with self._write_lock:
            try:
                await conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Could not begin transaction: {e}") from e

            token = self._tx_conn.set(conn)
            try:
                yield
            except sqlite3.Error as e:
                await self._rollback(conn)
                raise StorageError(f"Transaction failed: {e}") from e
            except BaseException:
                await self._rollback(conn)
                raise
            else:
                try:
                    await conn.commit()
                except sqlite3.Error as e:
                    await self._rollback(conn)
                    raise StorageError(f"Commit failed: {e}") from e
            finally:
                self._tx_conn.reset(token)

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except sqlite3.Error:
            logger.error("Rollback failed", exc_info=True)

    # ========== Connections ==========

    def _ensure_conn(self) -> aiosqlite.Connection:
        """Ensure writer connection is available."""
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    def _write_conn(self) -> aiosqlite.Connection:
        """Connection of the transaction owned by the current task."""
        conn = self._tx_conn.get()
        if conn is None:
            raise RuntimeError("Writes require an open transaction")
        return conn

    def _read_conn(self) -> aiosqlite.Connection:
        """Transaction connection inside a transaction, a pooled reader otherwise."""
        conn = self._tx_conn.get()
        if conn is not None:
            return conn
        if self._read_pool is not None:
            return self._read_pool.acquire()
        return self._ensure_conn()

    # ========== Statistics ==========

    async def get_stats(self) -> dict[str, int]:
        conn = self._read_conn()
        stats: dict[str, int] = {}

        for kind in RecordKind:
            async with conn.execute(
                f"SELECT COUNT(*) AS cnt FROM ({visible_select(kind)})", (kind.value,)
            ) as cursor:
                row = await cursor.fetchone()
                stats[f"{kind.value}_count"] = row["cnt"] if row else 0

        async with conn.execute(
            """SELECT
                (SELECT COUNT(*) FROM tombstones) AS tombstone_count,
                (SELECT COUNT(*) FROM devices) AS device_count
            """
        ) as cursor:
            row = await cursor.fetchone()
            stats["tombstone_count"] = row["tombstone_count"] if row else 0
            stats["device_count"] = row["device_count"] if row else 0

        return stats
