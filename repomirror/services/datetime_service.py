"""Datetime helpers: everything stored and served in UTC."""

from __future__ import annotations

from datetime import UTC, datetime


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes.

    SQLite drops timezone information, so values read back from the store are
    naive even though they were written as UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def epoch_seconds(dt: datetime) -> int:
    """Unix timestamp in whole seconds, as served to API clients."""
    return int(ensure_utc(dt).timestamp())
