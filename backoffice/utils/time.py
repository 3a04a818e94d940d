"""Time helpers shared by the scheduler and job records."""

from __future__ import annotations

from datetime import UTC, datetime
import time as _time

__all__ = ["ensure_aware", "monotonic_ms", "now_utc"]


def now_utc() -> datetime:
    """Return the current UTC time with timezone information."""

    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC so they compare with engine instants."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def monotonic_ms() -> int:
    """Return a monotonic timestamp in milliseconds."""

    return _time.monotonic_ns() // 1_000_000
