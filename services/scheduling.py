"""
Scheduling primitives - horloge et minuterie de debounce.

Every time-dependent service receives a Clock so that tests can drive
virtual time with ManualClock instead of sleeping for real.
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from typing import Awaitable, Callable, List, Optional, Set, Tuple

AsyncCallback = Callable[[], Awaitable[None]]


class Clock:
    """Source of wall-clock seconds and awaitable sleeps."""

    def now(self) -> float:
        raise NotImplementedError

    async def sleep(self, seconds: float) -> None:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock(Clock):
    """
    Virtual clock for tests.

    ``sleep()`` parks the caller until ``advance()`` moves time past its
    deadline. Sleepers are woken in deadline order, and the event loop is
    given a chance to run between wake-ups.
    """

    SETTLE_ITERATIONS = 25

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._sleepers: List[Tuple[float, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._seq), future))
        await future

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, fut in self._sleepers if not fut.done())

    async def settle(self) -> None:
        """Let ready tasks run until they block again."""
        for _ in range(self.SETTLE_ITERATIONS):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            if not future.done():
                future.set_result(None)
                await self.settle()
        self._now = target
        await self.settle()


class DebounceTimer:
    """
    Fire ``callback`` once ``delay`` seconds after the last ``reset()``.

    Each reset restarts the full delay; delays never accumulate.
    """

    def __init__(self, delay: float, callback: AsyncCallback, clock: Clock):
        self.delay = delay
        self.callback = callback
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._live: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def reset(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._wait())
        self._live.add(self._task)
        self._task.add_done_callback(self._live.discard)

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _wait(self) -> None:
        await self._clock.sleep(self.delay)
        # detach first so a reset() from inside the callback arms a new timer
        self._task = None
        await self.callback()
