"""
Clock sources for debounce bookkeeping.

The coalescer and orchestrator read time, and wait for debounce windows to
close, through one of these objects so tests can drive debounce windows
deterministically.
"""

import asyncio
import time
from typing import List, Tuple


class MonotonicClock:
    """Wall-independent clock returning seconds as a float."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float):
        await asyncio.sleep(max(seconds, 0))


class ManualClock:
    """Clock that only moves when told to.

    ``sleep`` returns once ``advance`` has moved the clock past the deadline.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._sleepers: List[Tuple[float, asyncio.Future]] = []

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float):
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        waiter = asyncio.get_running_loop().create_future()
        self._sleepers.append((self._now + seconds, waiter))
        await waiter

    def advance(self, seconds: float) -> float:
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        self._now += seconds

        still_waiting = []
        for deadline, waiter in self._sleepers:
            if waiter.done():
                continue
            if deadline <= self._now:
                waiter.set_result(None)
            else:
                still_waiting.append((deadline, waiter))
        self._sleepers = still_waiting
        return self._now

    def advance_ms(self, milliseconds: float) -> float:
        return self.advance(milliseconds / 1000)
