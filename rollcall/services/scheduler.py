"""Daily alert scan runner."""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from rollcall.services.alerts import AlertEngine, ScanResult

logger = logging.getLogger(__name__)


def seconds_until(now: datetime, hour: int, minute: int) -> float:
    """Seconds from `now` to the next occurrence of hour:minute."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class AlertScanScheduler:
    """Runs `AlertEngine.scan` once a day at a fixed local time.

    `run_once` is single-flight: a call made while a scan is in progress
    returns None without scanning. The manual scan endpoint goes through
    the same guard, so a scheduled and a manual scan never race on dedup.
    """

    def __init__(
        self,
        engine: AlertEngine,
        *,
        hour: int = 6,
        minute: int = 0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._engine = engine
        self._hour = hour
        self._minute = minute
        self._clock = clock
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def scanning(self) -> bool:
        return self._lock.locked()

    def seconds_until_next_run(self, now: Optional[datetime] = None) -> float:
        return seconds_until(now or self._clock(), self._hour, self._minute)

    async def run_once(self) -> Optional[ScanResult]:
        if self._lock.locked():
            logger.warning("Alert scan already in progress; skipping")
            return None
        async with self._lock:
            logger.info("Running alert scan")
            return await self._engine.scan()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.seconds_until_next_run())
            try:
                await self.run_once()
            except Exception:
                logger.exception("Scheduled alert scan failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Alert scan scheduled daily at {self._hour:02d}:{self._minute:02d}")

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
