import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from croniter import croniter

from src.core.errors import ValidationError

logger = logging.getLogger(__name__)


class CronTrigger:
    """
    Fires a callback on a cron schedule (evaluated in UTC) until stopped.

    The callback only enqueues work; overlapping fires are rejected by the
    refresh service's single-flight guard, not here.
    """

    def __init__(self, expression: str, fire: Callable[[], bool]):
        if not croniter.is_valid(expression):
            raise ValidationError(f"Invalid cron expression: {expression}")
        self.expression = expression
        self.fire = fire
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def next_fire_time(self, now: Optional[datetime] = None) -> datetime:
        base = now or datetime.now(timezone.utc)
        return croniter(self.expression, base).get_next(datetime)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="cron-trigger")
        logger.info(f"Scheduled leaderboard refresh with cron '{self.expression}'")

    async def _loop(self) -> None:
        while not self._stop.is_set():
            now = datetime.now(timezone.utc)
            next_run = self.next_fire_time(now)
            delay = max(0.0, (next_run - now).total_seconds())
            logger.info(f"Next scheduled refresh at {next_run.isoformat()}")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass

            logger.info("Scheduled refresh triggered")
            try:
                if not self.fire():
                    logger.warning("Scheduled refresh skipped: a run is already in progress")
            except Exception as e:
                logger.error(f"Scheduled refresh could not be started: {e}", exc_info=True)

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
