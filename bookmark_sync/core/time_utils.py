from __future__ import annotations

import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def monotonic() -> float:
    return time.monotonic()


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes, leave aware ones untouched."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
