"""
Clock -- injectable time source.

Step history timestamps, audit records and second-factor expiry all take
"now" from a ``Clock`` handed to the service, never from
``datetime.now()`` directly.  ``SystemClock`` is the one place wall-clock
time enters the system.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``now()`` returns the same value until ``advance()`` moves it.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta | int = 1) -> datetime:
        """Move forward by ``delta`` (a timedelta or a number of seconds)."""
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        self._now += delta
        return self._now
