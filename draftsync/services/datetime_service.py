"""Datetime helpers: everything stored and compared in UTC."""

from __future__ import annotations

from datetime import UTC, datetime


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime, or convert an aware one to UTC.

    SQLite returns naive datetimes for ``DateTime(timezone=True)`` columns;
    the ledger only ever writes UTC, so naive values are UTC by construction.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for JSON serialization."""
    return as_utc(dt).isoformat()


def parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 string written by ``format_iso``. Raises ValueError."""
    return as_utc(datetime.fromisoformat(value.strip()))


def millis_to_seconds(value: int) -> float:
    """Convert a millisecond interval to seconds."""
    return value / 1000
