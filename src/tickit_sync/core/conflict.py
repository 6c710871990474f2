"""Last-write-wins conflict rule shared by every record kind.

The rule is a pure function of the two versions involved, so every replica
that sees the same pair converges on the same winner regardless of arrival
order or of the device that submitted it.
"""

from __future__ import annotations

from datetime import datetime

from tickit_sync.core.records import Record, Tombstone, canonical_payload


def incoming_wins(incoming: Record, stored: Record | None) -> bool:
    """Decide whether ``incoming`` replaces ``stored``.

    Later ``updated_at`` wins. On equal timestamps the version with the
    greater canonical payload wins; identical payloads are a no-op.
    """
    if stored is None:
        return True
    if incoming.updated_at != stored.updated_at:
        return incoming.updated_at > stored.updated_at
    return canonical_payload(incoming) > canonical_payload(stored)


def deletion_blocks(tombstone: Tombstone | None, updated_at: datetime) -> bool:
    """True when a deletion at or after ``updated_at`` hides that version."""
    return tombstone is not None and tombstone.deleted_at >= updated_at


def tombstone_supersedes(incoming: Tombstone, stored: Tombstone | None) -> bool:
    """A tombstone is rewritten only by a strictly later deletion."""
    return stored is None or incoming.deleted_at > stored.deleted_at
