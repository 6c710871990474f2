"""Reader connections for sync state lookups made outside a sync batch.

``/status``, ``/devices`` and any ``get_record`` call that is not part of a
sync transaction read through these connections. Under WAL each one sees
the last committed batch only, so a device listing or record count taken
while another device's batch is half applied reports the state before it.
"""

from __future__ import annotations

import itertools
import logging
import sqlite3
from collections.abc import Iterator
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 2


class ReadPool:
    """Fixed set of ``query_only`` connections handed out in turn.

    The pool never writes and never takes the writer lock. A reader that
    hits the writer's checkpoint waits up to ``busy_timeout``.
    """

    def __init__(self, db_path: Path, pool_size: int = DEFAULT_POOL_SIZE) -> None:
        self._db_path = db_path
        self._pool_size = max(1, pool_size)
        self._readers: list[aiosqlite.Connection] = []
        self._turns: Iterator[aiosqlite.Connection] | None = None

    async def initialize(self) -> None:
        for _ in range(self._pool_size):
            conn = await aiosqlite.connect(self._db_path)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA busy_timeout = 5000")
            await conn.execute("PRAGMA query_only = ON")
            self._readers.append(conn)
        self._turns = itertools.cycle(self._readers)
        logger.debug("Opened %d sync readers on %s", self._pool_size, self._db_path)

    def acquire(self) -> aiosqlite.Connection:
        """Connection for one committed-state lookup.

        Raises:
            RuntimeError: If the readers are not open.
        """
        if self._turns is None:
            raise RuntimeError("Sync readers are not open. Call initialize() first.")
        return next(self._turns)

    async def close(self) -> None:
        self._turns = None
        for conn in self._readers:
            try:
                await conn.close()
            except sqlite3.Error:
                logger.debug("Failed to close a sync reader", exc_info=True)
        self._readers.clear()
