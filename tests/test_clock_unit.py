"""Tests for the loop-backed clock and timer groups."""

import asyncio

from travelbook_auth.service.clock import LoopClock, TimerGroup


class TestLoopClock:
    """Tests for timers scheduled on the running loop."""

    async def test_fired_timer_reports_done(self):
        clock = LoopClock()
        fired = []

        handle = clock.call_later(0, lambda: fired.append(True))
        await asyncio.sleep(0.01)

        assert fired == [True]
        assert handle.cancelled()
        await clock.aclose()

    async def test_cancelled_timer_never_runs(self):
        clock = LoopClock()
        fired = []

        handle = clock.call_later(0, lambda: fired.append(True))
        handle.cancel()
        await asyncio.sleep(0.01)

        assert fired == []
        await clock.aclose()

    async def test_group_drops_fired_handles(self):
        clock = LoopClock()
        group = TimerGroup(clock)
        for _ in range(3):
            group.call_later(0, lambda: None)
            await asyncio.sleep(0.01)

        assert len(group) == 0
        group.call_later(60, lambda: None)

        assert len(group._handles) == 1
        group.cancel_all()
        await clock.aclose()

    async def test_coroutine_callback_runs_as_task(self):
        clock = LoopClock()
        fired = []

        async def callback():
            fired.append(True)

        clock.call_later(0, callback)
        await asyncio.sleep(0.01)

        assert fired == [True]
        await clock.aclose()
