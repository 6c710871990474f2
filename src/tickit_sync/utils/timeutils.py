"""Timestamp helpers.

All timestamps handled by the server are timezone-aware UTC datetimes.
They are persisted as fixed-width ISO strings so that SQLite can compare
them lexicographically.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Serialize to the fixed-width storage format (microsecond precision)."""
    return ensure_utc(value).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 / RFC 3339 string into an aware UTC datetime.

    Accepts a trailing ``Z`` as well as explicit offsets.
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def format_optional(value: datetime | None) -> str | None:
    return format_timestamp(value) if value is not None else None


def parse_optional(value: str | None) -> datetime | None:
    return parse_timestamp(value) if value else None
