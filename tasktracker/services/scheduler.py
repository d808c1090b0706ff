"""
Sweep scheduler.

Owns the periodic timer that triggers the daily maintenance sweep:
- waits until the next run time (by default local midnight, then every 24h),
- runs the job as its own asyncio task so the timer keeps its rhythm,
- skips a tick while the previous run is still in progress,
- bounds every run with a timeout,
- logs and swallows job failures so the host process keeps serving.

Clock and sleep are injected so tests can move time without waiting.
"""
import asyncio
import logging
from datetime import datetime, time, timedelta, tzinfo
from typing import Any, Awaitable, Callable, Optional, Set

from tasktracker.core.clock import Clock, system_clock

logger = logging.getLogger(__name__)

SweepJob = Callable[[], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]


class SweepScheduler:
    def __init__(
        self,
        job: SweepJob,
        *,
        clock: Clock = system_clock,
        interval: timedelta = timedelta(hours=24),
        run_at: Optional[time] = time(0, 0),
        tz: Optional[tzinfo] = None,
        timeout: Optional[float] = 600.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        self._job = job
        self._clock = clock
        self._interval = interval
        self._run_at = run_at
        self._tz = tz  # None → local time of the host
        self._timeout = timeout
        self._sleep = sleep

        self._lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None
        self._runs: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _localize(self, wall: datetime) -> datetime:
        # Offset is looked up for that date, so DST changes are honoured
        if self._tz is None:
            return wall.astimezone()
        return wall.replace(tzinfo=self._tz)

    def next_run_after(self, now: datetime) -> datetime:
        if self._run_at is None:
            return now + self._interval
        # Step in wall-clock time so "midnight" stays midnight across DST
        wall = datetime.combine(now.astimezone(self._tz).date(), self._run_at.replace(tzinfo=None))
        candidate = self._localize(wall)
        while candidate <= now:
            wall += self._interval
            candidate = self._localize(wall)
        return candidate

    def seconds_until_next_run(self) -> float:
        now = self._clock.now()
        return max(0.0, (self.next_run_after(now) - now).total_seconds())

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run_forever(), name="sweep-scheduler")
        logger.info("Sweep scheduler started; first run in %.0f s", self.seconds_until_next_run())

    async def stop(self) -> None:
        tasks = list(self._runs)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._loop_task = None
        self._runs.clear()
        logger.info("Sweep scheduler stopped")

    async def tick(self) -> bool:
        """
        Run the job once unless a run is already in progress.

        Returns True if the job ran to completion, False if the tick was
        skipped, timed out or the job raised.
        """
        if self._lock.locked():
            logger.warning("Previous sweep still running; skipping this tick")
            return False

        async with self._lock:
            try:
                if self._timeout is None:
                    await self._job()
                else:
                    await asyncio.wait_for(self._job(), timeout=self._timeout)
            except asyncio.TimeoutError:
                logger.error("Sweep aborted after %.0f s timeout", self._timeout)
                return False
            except Exception:
                logger.exception("Sweep failed")
                return False
        return True

    async def _run_forever(self) -> None:
        while True:
            await self._sleep(self.seconds_until_next_run())
            run = asyncio.create_task(self.tick(), name="sweep-run")
            self._runs.add(run)
            run.add_done_callback(self._runs.discard)
