"""Tests for the clock abstraction."""

from datetime import UTC, datetime

import pytest

from digital_library.clock import FixedClock, SystemClock, get_clock, reset_clock, set_clock


def test_fixed_clock_only_moves_when_told():
    clock = FixedClock(datetime(2024, 3, 1, 9, 0))
    assert clock.now() == clock.now() == datetime(2024, 3, 1, 9, 0)

    assert clock.advance(days=2, hours=1) == datetime(2024, 3, 3, 10, 0)
    clock.set(datetime(2025, 1, 1))
    assert clock.now() == datetime(2025, 1, 1)


def test_fixed_clock_cannot_go_backwards():
    with pytest.raises(ValueError, match="cannot move backwards"):
        FixedClock().advance(seconds=-1)


def test_installed_clock_is_shared(fixed_clock):
    assert get_clock() is fixed_clock

    reset_clock()
    assert isinstance(get_clock(), SystemClock)

    set_clock(fixed_clock)
    assert get_clock() is fixed_clock


def test_system_clock_is_naive_utc():
    before = datetime.now(UTC).replace(tzinfo=None)
    now = SystemClock().now()
    after = datetime.now(UTC).replace(tzinfo=None)

    assert now.tzinfo is None
    assert before <= now <= after
