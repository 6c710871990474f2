"""Abstract base class for sync storage backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tickit_sync.core.records import Record, RecordKind, TaskList, TaskTagLink, Tombstone


class UpsertOutcome(StrEnum):
    """Result of a conditional write."""

    APPLIED = "applied"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class DeviceCursor:
    """Sync cursor of one client device.

    Attributes:
        device_id: Client-chosen device identifier
        device_name: Human readable name reported by the client
        last_sync: Server time of the device's last successful sync
        registered_at: When the server first saw the device
    """

    device_id: str
    device_name: str
    last_sync: datetime
    registered_at: datetime


class SyncStorage(ABC):
    """
    Abstract interface for durable sync state.

    Implementations hold current-state rows per record kind, the
    tombstone log and the device cursors. All mutating calls made by the
    sync engine happen inside ``transaction()``; reads outside a
    transaction never observe a partially applied batch.
    """

    async def initialize(self) -> None:  # noqa: B027
        """Open connections and create the schema. No-op by default."""

    async def close(self) -> None:  # noqa: B027
        """Release resources. No-op by default."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """
        Run a block of operations atomically.

        Writers are serialized: a second transaction waits until the first
        one commits or rolls back. Leaving the block normally commits;
        leaving it with an exception rolls everything back and re-raises.

        Raises:
            StorageError: If the backend fails to begin or commit
        """
        ...

    # ========== Record Operations ==========

    @abstractmethod
    async def upsert_if_newer(self, record: Record) -> UpsertOutcome:
        """
        Write a record if it wins the last-write-wins rule.

        The incoming version is compared against the stored row of the same
        kind and id (hidden rows included). Tombstones are not consulted;
        the caller checks deletion precedence first.

        Args:
            record: Incoming version

        Returns:
            APPLIED if the row now holds ``record``, SKIPPED otherwise
        """
        ...

    @abstractmethod
    async def get_record(self, kind: RecordKind, record_id: str) -> Record | None:
        """
        Get the visible version of a record.

        Args:
            kind: Record kind
            record_id: Record id (``task_id:tag_id`` for links)

        Returns:
            The record, or None if absent or hidden by a tombstone
        """
        ...

    @abstractmethod
    async def changed_since(self, kind: RecordKind, since: datetime | None) -> list[Record]:
        """
        Get visible records of one kind with ``updated_at > since``.

        Args:
            kind: Record kind
            since: Lower bound (exclusive); None returns every visible record

        Returns:
            Records ordered by (updated_at, id)
        """
        ...

    @abstractmethod
    async def record_known(self, kind: RecordKind, record_id: str) -> bool:
        """True if the id exists as a row (visible or hidden) or as a tombstone."""
        ...

    @abstractmethod
    async def links_for_task(self, task_id: str) -> list[TaskTagLink]:
        """Visible tag links of a task."""
        ...

    @abstractmethod
    async def find_inbox(self) -> TaskList | None:
        """The visible list flagged as inbox, if any."""
        ...

    # ========== Tombstone Operations ==========

    @abstractmethod
    async def get_tombstone(self, kind: RecordKind, record_id: str) -> Tombstone | None:
        """Get the tombstone for (kind, id), if any."""
        ...

    @abstractmethod
    async def put_tombstone(self, tombstone: Tombstone) -> UpsertOutcome:
        """
        Record a deletion.

        An existing tombstone is replaced only by a strictly later
        ``deleted_at``. The deleted row, if any, is kept so that references
        to it stay valid; it is hidden from reads instead.

        Returns:
            APPLIED if the tombstone was written, SKIPPED otherwise
        """
        ...

    @abstractmethod
    async def tombstones_since(self, since: datetime | None) -> list[Tombstone]:
        """Tombstones with ``deleted_at > since`` (all of them when None)."""
        ...

    # ========== Device Operations ==========

    @abstractmethod
    async def get_device(self, device_id: str) -> DeviceCursor | None:
        """Get the cursor of a device."""
        ...

    @abstractmethod
    async def set_cursor(
        self,
        device_id: str,
        timestamp: datetime,
        device_name: str = "",
    ) -> DeviceCursor:
        """
        Create or advance a device cursor.

        An empty ``device_name`` keeps the stored name.

        Raises:
            CursorRegressionError: If ``timestamp`` is earlier than the
                stored cursor
        """
        ...

    @abstractmethod
    async def list_devices(self) -> list[DeviceCursor]:
        """All device cursors, most recently synced first."""
        ...

    # ========== Statistics ==========

    @abstractmethod
    async def get_stats(self) -> dict[str, int]:
        """Visible record counts per kind plus tombstone and device counts."""
        ...
