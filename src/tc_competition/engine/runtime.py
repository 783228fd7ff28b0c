"""CompetitionRuntime — the periodic cadences that drive the scheduler.

Three independent asyncio tasks share one scheduler:
  - tick loop:     next price; stop-level checks while the market is open
  - candle loop:   close the forming candle every timeframe
  - schedule loop: room lifecycle pass

A closure's grace delay only suspends the schedule loop; ticks keep flowing.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from src.tc_competition.engine.scheduler import CompetitionScheduler

logger = logging.getLogger(__name__)


class CompetitionRuntime:
    def __init__(
        self,
        scheduler: CompetitionScheduler,
        tick_interval: float,
        candle_timeframe: int,
        schedule_interval: float,
    ) -> None:
        self._scheduler = scheduler
        self._tick_interval = tick_interval
        self._candle_timeframe = candle_timeframe
        self._schedule_interval = schedule_interval
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(
                self._every(self._tick_interval, self._tick, "tick"), name="tc-tick"
            ),
            asyncio.create_task(
                self._every(self._candle_timeframe, self._candle, "candle"), name="tc-candle"
            ),
            asyncio.create_task(
                self._every(self._schedule_interval, self._schedule, "schedule"),
                name="tc-schedule",
            ),
        ]
        logger.info(
            "Competition runtime started (tick=%ss candle=%ss schedule=%ss)",
            self._tick_interval,
            self._candle_timeframe,
            self._schedule_interval,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Competition runtime stopped")

    async def _tick(self) -> None:
        price = self._scheduler.next_tick()
        if self._scheduler.market_open:
            await self._scheduler.check_stop_levels(price)

    async def _candle(self) -> None:
        await self._scheduler.finalize_candle(self._candle_timeframe)

    async def _schedule(self) -> None:
        result = await self._scheduler.check_competition_times()
        if result.error:
            logger.error("Schedule check failed: %s", result.error)

    async def _every(
        self, interval: float, step: Callable[[], Awaitable[None]], label: str
    ) -> None:
        while True:
            try:
                await step()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s loop iteration failed", label)
            await asyncio.sleep(interval)
