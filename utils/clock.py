"""UTC-everywhere time handling with an injectable clock.

Services never call datetime.now() directly. They take a Clock so that due-date
comparisons and date stamping are deterministic under test.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Protocol


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


class Clock(Protocol):
    """Current time source."""

    def now(self) -> datetime: ...

    def today(self) -> date: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return now_utc()

    def today(self) -> date:
        return now_utc().date()


class FixedClock:
    """
    Clock pinned to a given instant. Advances only when told to.

    Example:
        clock = FixedClock(datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc))
        clock.advance(days=30)
    """

    def __init__(self, current: datetime):
        self._current = to_utc(current)

    def now(self) -> datetime:
        return self._current

    def today(self) -> date:
        return self._current.date()

    def advance(self, **delta) -> datetime:
        """Move the clock forward by timedelta keyword arguments."""
        self._current = self._current + timedelta(**delta)
        return self._current

    def set(self, current: datetime) -> None:
        self._current = to_utc(current)
