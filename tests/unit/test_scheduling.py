"""Tests unitaires pour services/scheduling.py - horloge virtuelle, debounce."""
import asyncio

import pytest

from services.scheduling import DebounceTimer, ManualClock, SystemClock


class TestManualClock:
    @pytest.mark.asyncio
    async def test_now_moves_only_on_advance(self):
        clock = ManualClock(start=100.0)
        assert clock.now() == 100.0
        await clock.advance(5)
        assert clock.now() == 105.0

    @pytest.mark.asyncio
    async def test_sleepers_woken_in_deadline_order(self):
        clock = ManualClock()
        woke = []

        async def sleeper(name, delay):
            await clock.sleep(delay)
            woke.append((name, clock.now() - 1_700_000_000.0))

        tasks = [asyncio.create_task(sleeper("b", 2)), asyncio.create_task(sleeper("a", 1))]
        await clock.settle()
        assert clock.pending_sleepers == 2
        await clock.advance(1.5)
        assert woke == [("a", 1.0)]
        await clock.advance(1)
        assert woke == [("a", 1.0), ("b", 2.0)]
        await asyncio.gather(*tasks)

    @pytest.mark.asyncio
    async def test_zero_sleep_returns(self):
        clock = ManualClock()
        await clock.sleep(0)
        assert clock.pending_sleepers == 0

    @pytest.mark.asyncio
    async def test_system_clock(self):
        clock = SystemClock()
        before = clock.now()
        await clock.sleep(0)
        assert clock.now() >= before


class TestDebounceTimer:
    @pytest.mark.asyncio
    async def test_fires_once_after_last_reset(self):
        clock = ManualClock(start=0.0)
        fired = []

        async def callback():
            fired.append(clock.now())

        timer = DebounceTimer(1.0, callback, clock)
        timer.reset()
        await clock.advance(0.5)
        timer.reset()
        await clock.advance(0.75)
        assert fired == []
        assert timer.pending
        await clock.advance(0.25)
        assert fired == [1.5]
        assert not timer.pending

    @pytest.mark.asyncio
    async def test_cancel(self):
        clock = ManualClock()
        fired = []

        async def callback():
            fired.append(1)

        timer = DebounceTimer(1, callback, clock)
        timer.reset()
        timer.cancel()
        await clock.advance(2)
        assert fired == []

    @pytest.mark.asyncio
    async def test_reset_from_callback_rearms(self):
        clock = ManualClock()
        fired = []
        timer = None

        async def callback():
            fired.append(1)
            if len(fired) == 1:
                timer.reset()

        timer = DebounceTimer(1, callback, clock)
        timer.reset()
        await clock.advance(1)
        await clock.advance(1)
        assert fired == [1, 1]
