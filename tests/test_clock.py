"""
Clock Tests

Manual time only moves forward and only when told to.
"""

from datetime import datetime, timedelta, timezone

import pytest

from simtelemetry.temporal.clock import ManualClock, SystemClock

from .fixtures import T0


class TestManualClock:

    def test_reads_do_not_move_time(self):
        clock = ManualClock(T0)

        assert clock.now() == T0
        assert clock.now() == T0
        assert clock.read_count() == 2

    def test_advance(self):
        clock = ManualClock(T0)

        assert clock.advance(1.5) == T0 + timedelta(seconds=1.5)
        assert clock.advance(delta=timedelta(minutes=1)) == T0 + timedelta(seconds=61.5)

    def test_cannot_move_backwards(self):
        clock = ManualClock(T0)

        with pytest.raises(ValueError):
            clock.advance(-1)
        with pytest.raises(ValueError):
            clock.set(T0 - timedelta(seconds=1))

    def test_naive_times_are_utc(self):
        clock = ManualClock(datetime(2026, 1, 1, 10, 0, 0))

        assert clock.now() == T0

    def test_many_reads_keep_constant_state(self):
        clock = ManualClock(T0)
        for _ in range(10_000):
            clock.now()

        assert clock.read_count() == 10_000
        assert not any(isinstance(value, list) for value in vars(clock).values())


def test_system_clock_is_utc():
    assert SystemClock().now().tzinfo == timezone.utc
