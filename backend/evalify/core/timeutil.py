from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.utcnow()


def naive_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime to naive UTC.

    PostgreSQL returns aware values for timestamptz columns while SQLite returns
    naive ones; all comparisons in the app are done on naive UTC.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
