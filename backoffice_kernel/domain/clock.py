"""
Clock -- injectable source of the current time.

Responsibility:
    Every timestamp the system writes (approved_at, settled_at, an audit
    entry's occurred_at), the year inside document codes and invoice due
    dates are read from a Clock handed in by the caller.  Nothing in the
    kernel, services or modules calls ``datetime.now()`` itself.

Architecture position:
    Kernel > Domain.  SystemClock is the only place that reads the host
    clock.
"""

from abc import ABC, abstractmethod
from datetime import UTC, date, datetime, timedelta

DEFAULT_TEST_TIME = datetime(2025, 3, 3, 9, 0, 0, tzinfo=UTC)


class Clock(ABC):
    """``now()`` is timezone-aware UTC; ``today()`` and ``year`` derive from it."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        return self.now().date()

    @property
    def year(self) -> int:
        return self.now().year


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Starts at ``DEFAULT_TEST_TIME`` (Monday 3 March 2025, 09:00 UTC) unless
    a start time is given.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)
