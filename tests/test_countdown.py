"""
Tests for the countdown scheduler.
"""

import asyncio

from draft_auction.auction.countdown import CountdownScheduler

from helpers import wait_until


class Counter:
    """Tick callback counting down from a start value."""

    def __init__(self, start: int):
        self.remaining = start
        self.calls = 0

    async def __call__(self) -> int:
        self.calls += 1
        self.remaining -= 1
        return self.remaining


class TestCountdownScheduler:
    """One owned countdown task at a time."""

    def test_runs_until_zero(self):
        async def scenario():
            counter = Counter(3)
            scheduler = CountdownScheduler(counter, interval=0.005)

            await scheduler.arm(3)
            assert scheduler.is_armed()
            await wait_until(lambda: not scheduler.is_armed())

            assert counter.calls == 3
            assert scheduler.ticks_fired == 3

        asyncio.run(scenario())

    def test_arm_with_no_time_does_nothing(self):
        async def scenario():
            counter = Counter(3)
            scheduler = CountdownScheduler(counter, interval=0.005)

            await scheduler.arm(0)
            await asyncio.sleep(0.03)

            assert not scheduler.is_armed()
            assert counter.calls == 0

        asyncio.run(scenario())

    def test_cancel_stops_ticks(self):
        async def scenario():
            counter = Counter(1000)
            scheduler = CountdownScheduler(counter, interval=0.005)

            await scheduler.arm(1000)
            await wait_until(lambda: counter.calls >= 2)
            await scheduler.cancel()
            calls = counter.calls
            await asyncio.sleep(0.03)

            assert counter.calls == calls
            assert not scheduler.is_armed()
            # Idempotent
            await scheduler.cancel()
            await scheduler.shutdown()

        asyncio.run(scenario())

    def test_rearm_replaces_previous_countdown(self):
        async def scenario():
            counter = Counter(1000)
            scheduler = CountdownScheduler(counter, interval=0.01)

            await scheduler.arm(1000)
            first = scheduler._task
            await scheduler.arm(1000)

            assert first.done()
            assert scheduler._task is not first
            assert len([t for t in asyncio.all_tasks() if t.get_name() == 'auction-countdown']) == 1
            await scheduler.shutdown()

        asyncio.run(scenario())

    def test_failing_tick_does_not_stop_countdown(self):
        async def scenario():
            calls = []

            async def flaky():
                calls.append(1)
                if len(calls) == 1:
                    raise RuntimeError("boom")
                return 0

            scheduler = CountdownScheduler(flaky, interval=0.005)
            await scheduler.arm(2)
            await wait_until(lambda: not scheduler.is_armed())

            assert len(calls) == 2
            assert scheduler.ticks_fired == 1

        asyncio.run(scenario())

    def test_cancel_from_inside_tick_is_safe(self):
        async def scenario():
            holder = {}

            async def settle_now():
                await holder['scheduler'].cancel()
                return 0

            scheduler = CountdownScheduler(settle_now, interval=0.005)
            holder['scheduler'] = scheduler
            await scheduler.arm(5)
            await wait_until(lambda: scheduler.ticks_fired == 1)

            assert not scheduler.is_armed()

        asyncio.run(scenario())
