"""
Clock -- injectable time source.

Responsibility:
    Services, repositories and the job worker read "now" from a Clock
    passed to their constructor, never from ``datetime.now()``.  Audit
    timestamps, due dates, lock staleness and cron evaluation all derive
    from it, which keeps tests deterministic.

Invariants enforced:
    - Every instant returned is timezone-aware UTC.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta


class Clock(ABC):
    """Abstract clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware UTC."""
        ...


class SystemClock(Clock):
    """Production clock returning wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value on repeated calls until ``advance()``
    or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._time = _as_utc(fixed_time or datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC))

    def now(self) -> datetime:
        return self._time

    def set_time(self, time: datetime) -> None:
        self._time = _as_utc(time)

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move the clock forward and return the new instant."""
        delta = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        self._time = self._time + delta
        return self._time

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        return self.advance(1)


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes are taken to already be UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
