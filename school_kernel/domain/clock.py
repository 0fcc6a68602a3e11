"""
Clock -- injectable time source.

Scheduling, billing periods and reminder windows all ask a Clock for "now";
nothing in the engine calls ``datetime.now()`` or ``date.today()`` itself.
SystemClock is the only place wall time enters the process.
"""

import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

_DEFAULT_START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """
    Source of the current instant.

    Implementations return timezone-aware datetimes; ``today()`` is the
    calendar date of ``now()`` in that timezone.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Manually driven clock for tests and replays.

    Time only moves through ``set_time()`` and ``advance()``.  Safe to read
    from scheduler and worker threads while a test moves it.

    Raises:
        ValueError: A naive datetime is supplied.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._lock = threading.Lock()
        self._current = self._aware(fixed_time or _DEFAULT_START)

    @staticmethod
    def _aware(value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError(f"DeterministicClock needs an aware datetime, got {value!r}")
        return value

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def set_time(self, time: datetime) -> None:
        aware = self._aware(time)
        with self._lock:
            self._current = aware

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move forward and return the new instant."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        with self._lock:
            self._current += step
            return self._current
