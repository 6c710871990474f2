"""Exception hierarchy for the sync server."""

from __future__ import annotations


class TickitSyncError(Exception):
    """Base class for server errors."""


class StorageError(TickitSyncError):
    """Storage failed (I/O error, transaction conflict). Safe to retry."""


class InvariantViolation(TickitSyncError):
    """A server-side invariant was broken. Indicates a defect, never user input."""


class CursorRegressionError(InvariantViolation):
    """A device cursor was about to move backward."""

    def __init__(self, device_id: str, current: str, proposed: str) -> None:
        super().__init__(
            f"Cursor for device {device_id} would move backward: {current} -> {proposed}"
        )
        self.device_id = device_id
        self.current = current
        self.proposed = proposed
