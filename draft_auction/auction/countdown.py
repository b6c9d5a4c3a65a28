"""
Countdown scheduler for the active lot.

One asyncio task per armed countdown. Each tick is scheduled only after the
previous tick's callback (including its ledger write) has completed, so a
slow ledger delays the countdown instead of stacking overlapping ticks.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .. import config

logger = logging.getLogger(__name__)

# Called once per tick; returns the seconds still remaining (0 stops the countdown)
TickCallback = Callable[[], Awaitable[int]]


class CountdownScheduler:
    """Owns the single countdown task. Only the state machine drives it."""

    def __init__(
        self,
        on_tick: TickCallback,
        interval: float = config.TICK_INTERVAL_SECONDS
    ):
        """
        Initialize the scheduler.

        Args:
            on_tick: Coroutine run once per interval while armed
            interval: Seconds between ticks
        """
        self._on_tick = on_tick
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self.ticks_fired = 0

    def is_armed(self) -> bool:
        return self._task is not None and not self._task.done()

    async def arm(self, seconds: int) -> None:
        """
        Start counting down, replacing any countdown already running.

        The previous task is cancelled and awaited before the new one is
        created, so two countdowns never run at once.

        Args:
            seconds: Remaining time the countdown starts from
        """
        await self.cancel()

        if seconds <= 0:
            logger.warning(f"Refusing to arm countdown with {seconds}s remaining")
            return

        self._task = asyncio.create_task(self._run(), name='auction-countdown')
        logger.debug(f"Countdown armed at {seconds}s")

    async def cancel(self) -> None:
        """
        Cancel the pending tick, if any. Safe to call repeatedly.

        When called from inside a tick callback (settlement at zero), the
        running task is detached and left to finish on its own.
        """
        task = self._task
        self._task = None

        if task is None or task.done():
            return

        if task is asyncio.current_task():
            return

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.debug("Countdown cancelled")

    async def shutdown(self) -> None:
        """Cancel any pending tick on process shutdown."""
        await self.cancel()
        logger.info("Countdown scheduler stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)

            try:
                remaining = await self._on_tick()
            except Exception as e:
                # The tick callback handles its own storage failures; this
                # only keeps an unexpected bug from killing the countdown.
                logger.exception(f"Countdown tick failed: {e}")
                continue

            self.ticks_fired += 1
            if remaining <= 0:
                break

        if self._task is asyncio.current_task():
            self._task = None
