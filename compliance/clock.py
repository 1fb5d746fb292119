"""Time sources for due-date and expiry comparisons.

All timestamps are naive UTC, matching what the database columns store.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock(ABC):
    """Supplies the current time to the engine."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return utcnow()


class FixedClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, at: Optional[datetime] = None):
        self._now = at or utcnow()

    def now(self) -> datetime:
        return self._now

    def set(self, at: datetime) -> None:
        self._now = at

    def advance(self, delta: timedelta) -> None:
        self._now = self._now + delta
