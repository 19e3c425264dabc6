"""Clocks and schedulers so time can be faked in tests.

Everything in crewsim reads time through a ``Clock`` and defers work through a
``Scheduler``. Production code uses wall time and the asyncio event loop; tests
use ``ManualClock`` and ``VirtualScheduler`` to fast-forward without sleeping.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol


class Clock(Protocol):
    """Source of the current time in epoch seconds."""

    def now(self) -> float: ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        """Move time forward and return the new time."""
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: float) -> None:
        self._now = timestamp


class ScheduledHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs callbacks after a delay."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledHandle: ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    @property
    def available(self) -> bool:
        """Whether a loop is bound or running in the current thread."""
        if self._loop is not None:
            return True
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), callback)


@dataclass(order=True)
class _VirtualTimer:
    due: float
    seq: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """Scheduler over a ManualClock; time only passes via ``advance``."""

    def __init__(self, clock: ManualClock | None = None):
        self.clock = clock or ManualClock()
        self._timers: list[_VirtualTimer] = []
        self._counter = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> _VirtualTimer:
        timer = _VirtualTimer(
            due=self.clock.now() + max(0.0, delay),
            seq=next(self._counter),
            callback=callback,
        )
        heapq.heappush(self._timers, timer)
        return timer

    @property
    def pending(self) -> int:
        """Number of timers that have not fired or been cancelled."""
        return sum(1 for t in self._timers if not t.cancelled)

    def advance(self, seconds: float) -> int:
        """Advance virtual time, firing due callbacks in order.

        Returns:
            Number of callbacks fired
        """
        target = self.clock.now() + seconds
        fired = 0
        while self._timers and self._timers[0].due <= target:
            timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self.clock.set(max(self.clock.now(), timer.due))
            timer.callback()
            fired += 1
        self.clock.set(target)
        return fired

    def run_all(self) -> int:
        """Fire every pending timer, including ones scheduled while running."""
        fired = 0
        while self._timers:
            timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self.clock.set(max(self.clock.now(), timer.due))
            timer.callback()
            fired += 1
        return fired
