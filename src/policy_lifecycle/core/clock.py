"""Injectable time source.

Services receive a Clock through their constructor so every pass can be
replayed against a fixed instant in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

from beartype import beartype


class Clock(ABC):
    """Abstract clock returning timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    @beartype
    def now(self) -> datetime:
        """Get current system time in UTC."""
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant, advanced explicitly."""

    @beartype
    def __init__(self, instant: datetime) -> None:
        """Initialize at an aware instant."""
        if instant.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._instant = instant

    @beartype
    def now(self) -> datetime:
        """Get the frozen instant."""
        return self._instant

    @beartype
    def advance(self, delta: timedelta) -> None:
        """Move the clock forward."""
        self._instant = self._instant + delta

    @beartype
    def set(self, instant: datetime) -> None:
        """Jump to a new aware instant."""
        if instant.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._instant = instant
