"""Last-write-wins synchronization for tickit clients."""

from tickit_sync.sync.protocol import RejectedChange, RejectReason, SyncResult
from tickit_sync.sync.sync_engine import SyncEngine

__all__ = [
    "RejectReason",
    "RejectedChange",
    "SyncEngine",
    "SyncResult",
]
