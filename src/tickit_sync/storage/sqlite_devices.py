"""SQLite device cursor operations mixin."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from tickit_sync.core.errors import CursorRegressionError
from tickit_sync.storage.base import DeviceCursor
from tickit_sync.storage.sqlite_row_mappers import row_to_device
from tickit_sync.utils.timeutils import format_timestamp, utcnow

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)


class SQLiteDevicesMixin:
    """Mixin providing per-device sync cursors."""

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

    async def get_device(self, device_id: str) -> DeviceCursor | None:
        """Get the cursor of a specific device."""
        conn = self._read_conn()
        async with conn.execute(
            "SELECT * FROM devices WHERE device_id = ?", (device_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return row_to_device(row) if row is not None else None

    async def set_cursor(
        self,
        device_id: str,
        timestamp: datetime,
        device_name: str = "",
    ) -> DeviceCursor:
        """Create or advance a device cursor; never moves it backward."""
        conn = self._write_conn()
        async with conn.execute(
            "SELECT * FROM devices WHERE device_id = ?", (device_id,)
        ) as cursor:
            row = await cursor.fetchone()

        new_sync = format_timestamp(timestamp)
        if row is None:
            registered_at = utcnow()
            await conn.execute(
                """INSERT INTO devices (device_id, device_name, last_sync, registered_at)
                   VALUES (?, ?, ?, ?)""",
                (device_id, device_name, new_sync, format_timestamp(registered_at)),
            )
            logger.info("Registered device %s (%s)", device_id, device_name or "unnamed")
            return DeviceCursor(
                device_id=device_id,
                device_name=device_name,
                last_sync=timestamp,
                registered_at=registered_at,
            )

        existing = row_to_device(row)
        if timestamp < existing.last_sync:
            raise CursorRegressionError(device_id, row["last_sync"], new_sync)

        name = device_name or existing.device_name
        await conn.execute(
            "UPDATE devices SET last_sync = ?, device_name = ? WHERE device_id = ?",
            (new_sync, name, device_id),
        )
        return DeviceCursor(
            device_id=device_id,
            device_name=name,
            last_sync=timestamp,
            registered_at=existing.registered_at,
        )

    async def list_devices(self) -> list[DeviceCursor]:
        """List all device cursors, most recently synced first."""
        conn = self._read_conn()
        async with conn.execute(
            "SELECT * FROM devices ORDER BY last_sync DESC, device_id DESC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [row_to_device(row) for row in rows]
