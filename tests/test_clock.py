"""Tests for clocks and schedulers."""

import asyncio

import pytest

from crewsim.clock import AsyncioScheduler, ManualClock, VirtualScheduler


class TestManualClock:
    """Test the manual clock."""

    def test_advance(self):
        """Advancing moves time forward."""
        clock = ManualClock(100.0)

        assert clock.advance(5.0) == 105.0
        assert clock.now() == 105.0

    def test_cannot_go_backwards(self):
        """Negative advances are rejected."""
        with pytest.raises(ValueError):
            ManualClock().advance(-1.0)


class TestVirtualScheduler:
    """Test virtual timers."""

    def test_fires_in_due_order(self, scheduler):
        """Callbacks fire by due time, then by scheduling order."""
        fired = []
        scheduler.call_later(2.0, lambda: fired.append("late"))
        scheduler.call_later(1.0, lambda: fired.append("first"))
        scheduler.call_later(1.0, lambda: fired.append("second"))

        assert scheduler.advance(1.5) == 2
        assert fired == ["first", "second"]
        assert scheduler.pending == 1

    def test_clock_moves_with_timers(self, scheduler, clock):
        """The clock reads each timer's due time while it fires."""
        start = clock.now()
        seen = []
        scheduler.call_later(3.0, lambda: seen.append(clock.now() - start))

        scheduler.run_all()

        assert seen == [3.0]

    def test_cancelled_timers_skipped(self, scheduler):
        """Cancelled timers never fire."""
        fired = []
        handle = scheduler.call_later(1.0, lambda: fired.append(1))
        handle.cancel()

        assert scheduler.run_all() == 0
        assert fired == []

    def test_run_all_includes_new_timers(self, scheduler):
        """Timers scheduled while running also fire."""
        fired = []
        scheduler.call_later(1.0, lambda: scheduler.call_later(1.0, lambda: fired.append("chained")))

        scheduler.run_all()

        assert fired == ["chained"]


class TestAsyncioScheduler:
    """Test the event loop scheduler."""

    def test_call_later_on_running_loop(self):
        """Callbacks run on the running loop."""
        fired = []

        async def run():
            AsyncioScheduler().call_later(0.0, lambda: fired.append(True))
            await asyncio.sleep(0.01)

        asyncio.run(run())

        assert fired == [True]

    def test_available_only_with_a_loop(self):
        """The scheduler reports whether it can schedule right now."""
        scheduler = AsyncioScheduler()
        seen = []

        async def run():
            seen.append(scheduler.available)

        asyncio.run(run())

        assert scheduler.available is False
        assert seen == [True]
