"""SQLite schema definition for sync storage."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# SQL run to move a database from one schema version to the next, keyed by
# (old, new). Version 1 is the first released layout.
MIGRATIONS: dict[tuple[int, int], list[str]] = {}


async def run_migrations(conn: aiosqlite.Connection, current_version: int) -> int:
    """Upgrade a sync database one version at a time up to SCHEMA_VERSION.

    Returns the version the database ends at.
    """
    version = current_version

    while version < SCHEMA_VERSION:
        next_version = version + 1
        statements = MIGRATIONS.get((version, next_version), [])

        for sql in statements:
            try:
                await conn.execute(sql)
            except sqlite3.OperationalError as e:
                # Tolerate a step that an interrupted upgrade already applied
                message = str(e).lower()
                if "duplicate column" in message or "already exists" in message:
                    logger.debug("Migration already applied: %s", e)
                else:
                    raise

        logger.info("Migrated sync schema %d -> %d", version, next_version)
        version = next_version

    await conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
    await conn.commit()

    return version


# Timestamps are stored as fixed-width ISO-8601 UTC strings
# (see utils.timeutils.format_timestamp) so they compare lexicographically.
SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Lists (projects) that contain tasks
CREATE TABLE IF NOT EXISTS lists (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    icon TEXT NOT NULL DEFAULT '📋',
    color TEXT,
    is_inbox INTEGER NOT NULL DEFAULT 0,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_lists_updated ON lists(updated_at);

-- Tags
CREATE TABLE IF NOT EXISTS tags (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    color TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tags_updated ON tags(updated_at);

-- Tasks; tag_ids is the JSON array carried by this task version. Reads
-- report the tag ids of the task's visible task_tags rows instead.
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    url TEXT,
    priority TEXT NOT NULL DEFAULT 'medium',
    completed INTEGER NOT NULL DEFAULT 0,
    list_id TEXT NOT NULL,
    tag_ids TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT,
    due_date TEXT,
    FOREIGN KEY (list_id) REFERENCES lists(id)
);
CREATE INDEX IF NOT EXISTS idx_tasks_list ON tasks(list_id);
CREATE INDEX IF NOT EXISTS idx_tasks_updated ON tasks(updated_at);

-- Task/tag links
CREATE TABLE IF NOT EXISTS task_tags (
    task_id TEXT NOT NULL,
    tag_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (task_id, tag_id),
    FOREIGN KEY (task_id) REFERENCES tasks(id),
    FOREIGN KEY (tag_id) REFERENCES tags(id)
);
CREATE INDEX IF NOT EXISTS idx_task_tags_created ON task_tags(created_at);

-- Deletion markers, permanent
CREATE TABLE IF NOT EXISTS tombstones (
    record_type TEXT NOT NULL,
    id TEXT NOT NULL,
    deleted_at TEXT NOT NULL,
    PRIMARY KEY (record_type, id)
);
CREATE INDEX IF NOT EXISTS idx_tombstones_deleted ON tombstones(deleted_at);

-- Per-device sync cursors
CREATE TABLE IF NOT EXISTS devices (
    device_id TEXT PRIMARY KEY,
    device_name TEXT NOT NULL DEFAULT '',
    last_sync TEXT NOT NULL,
    registered_at TEXT NOT NULL
);
"""
