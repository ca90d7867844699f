"""
Time sources for the Digital Library.

Repositories never call ``datetime.now()`` directly; they ask a clock. The
process-wide clock is a ``SystemClock`` and tests install a ``FixedClock``
that only moves when told to.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Anything that can tell the current time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time as naive UTC, matching the stored columns."""

    def now(self) -> datetime:
        return datetime.now(UTC).replace(tzinfo=None)


class FixedClock:
    """
    A clock frozen at a given instant.

    ``advance`` moves it forward; it never moves on its own, so timestamps
    produced in a test are exact.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 15, 10, 0, 0)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by ``timedelta(**kwargs)`` and return the new time."""
        delta = timedelta(**kwargs)
        if delta < timedelta(0):
            raise ValueError("FixedClock cannot move backwards")
        self._now = self._now + delta
        return self._now

    def set(self, moment: datetime) -> None:
        """Jump to an explicit instant."""
        self._now = moment


class _ClockStore:
    """Internal storage for the clock singleton."""

    _instance: Clock | None = None


def get_clock() -> Clock:
    """Get the process-wide clock (a ``SystemClock`` unless one was installed)."""
    if _ClockStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ClockStore._instance = SystemClock()  # type: ignore[reportPrivateUsage]
    return _ClockStore._instance  # type: ignore[reportPrivateUsage]


def set_clock(clock: Clock) -> None:
    """Install a clock for every repository created afterwards."""
    _ClockStore._instance = clock  # type: ignore[reportPrivateUsage]


def reset_clock() -> None:
    """Go back to the system clock."""
    _ClockStore._instance = None  # type: ignore[reportPrivateUsage]
