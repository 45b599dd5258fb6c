import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from src.core.entities.leaderboard import LeaderboardRow
from src.core.entities.refresh import RefreshStatus, RunSummary
from src.core.errors import RefreshInProgressError, RefreshRunError
from src.core.interfaces.persistence import IPersistenceGateway, SortBy
from src.core.use_cases.batch_scheduler import BatchScheduler
from src.core.use_cases.reconciliation import ReconciliationEngine
from src.infrastructure.cache.redis_service import RedisService

logger = logging.getLogger(__name__)

SORT_ORDERS = ("entry_order", "pnl")
LEADERBOARD_CACHE_TTL = 60  # seconds
REFRESH_LEASE_KEY = "leaderboard:refresh:lease"
DEFAULT_LEASE_TTL = 3600  # seconds


# --- Business Logic Services ---

class LeaderboardService:
    """Read side: serves the leaderboard cache table, with a short-lived Redis response cache in front."""

    def __init__(self, repo: IPersistenceGateway, cache: Optional[RedisService] = None):
        self.repo = repo
        self.cache = cache

    @staticmethod
    def _cache_key(sort_by: str) -> str:
        return f"leaderboard:{sort_by}"

    async def get_leaderboard(self, sort_by: SortBy = "entry_order") -> List[LeaderboardRow]:
        if sort_by not in SORT_ORDERS:
            raise ValueError(f"Unsupported sort order: {sort_by}")

        key = self._cache_key(sort_by)
        if self.cache:
            cached = self.cache.get(key)
            if cached is not None:
                return [LeaderboardRow(**row) for row in cached]

        entries = await self.repo.get_leaderboard(sort_by)
        rows = [LeaderboardRow.from_entry(e) for e in entries]

        if self.cache:
            self.cache.set(key, rows, ttl_seconds=LEADERBOARD_CACHE_TTL)
        return rows

    def invalidate(self) -> None:
        if self.cache:
            self.cache.delete(*(self._cache_key(s) for s in SORT_ORDERS))


class RefreshService:
    """
    Run-level supervision of leaderboard refreshes.

    At most one run is active at a time. The guard is an in-process flag, set
    and checked without an await in between so it is atomic on the event loop,
    plus an optional Redis lease so that several API processes sharing a
    database do not refresh concurrently.
    """

    def __init__(
        self,
        repo: IPersistenceGateway,
        engine: ReconciliationEngine,
        scheduler: BatchScheduler,
        leaderboard: Optional[LeaderboardService] = None,
        cache: Optional[RedisService] = None,
        lease_ttl: int = DEFAULT_LEASE_TTL,
        lease_renew_interval: Optional[float] = None,
    ):
        self.repo = repo
        self.engine = engine
        self.scheduler = scheduler
        self.leaderboard = leaderboard
        self.cache = cache
        self.lease_ttl = lease_ttl
        # renew well before expiry so a long run keeps the cross-process guard
        self.lease_renew_interval = lease_renew_interval or lease_ttl / 3

        self._running = False
        self._lease_owner: Optional[str] = None
        self._current_trigger: Optional[str] = None
        self._current_started_at: Optional[datetime] = None
        self._cancel_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._last_run: Optional[RunSummary] = None
        self._last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._running

    def _acquire(self, trigger: str) -> None:
        if self._running:
            raise RefreshInProgressError(f"Refresh already running (trigger={self._current_trigger})")

        owner = uuid.uuid4().hex
        if self.cache and not self.cache.acquire_lease(REFRESH_LEASE_KEY, owner, self.lease_ttl):
            raise RefreshInProgressError("Refresh already running in another process")

        self._running = True
        self._lease_owner = owner
        self._current_trigger = trigger
        self._current_started_at = datetime.now(timezone.utc)
        self._cancel_event = asyncio.Event()

    def _release(self) -> None:
        if self.cache and self._lease_owner:
            self.cache.release_lease(REFRESH_LEASE_KEY, self._lease_owner)
        self._running = False
        self._lease_owner = None
        self._current_trigger = None
        self._current_started_at = None

    async def run_refresh(self, trigger: str = "manual") -> RunSummary:
        """Run one refresh to completion. Raises RefreshInProgressError if a run is active."""
        self._acquire(trigger)
        try:
            return await self._run(trigger)
        finally:
            self._release()

    def start_refresh(self, trigger: str = "manual") -> bool:
        """
        Enqueue a refresh as a background task. Returns False if a run is already
        active. True acknowledges the enqueue only, not completion.
        """
        try:
            self._acquire(trigger)
        except RefreshInProgressError as e:
            logger.warning(f"Refresh trigger '{trigger}' rejected: {e}")
            return False

        self._task = asyncio.create_task(self._run_and_release(trigger), name=f"refresh-{trigger}")
        self._task.add_done_callback(self._on_task_done)
        return True

    async def _run_and_release(self, trigger: str) -> RunSummary:
        try:
            return await self._run(trigger)
        finally:
            self._release()

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("Refresh task was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Refresh task failed: {error}", exc_info=error)

    async def _keep_lease(self, owner: str) -> None:
        while True:
            await asyncio.sleep(self.lease_renew_interval)
            if not self.cache.extend_lease(REFRESH_LEASE_KEY, owner, self.lease_ttl):
                logger.warning("Refresh lease lost to another process; continuing without the cross-process guard")
                return

    async def _run(self, trigger: str) -> RunSummary:
        keeper = None
        if self.cache and self._lease_owner:
            keeper = asyncio.create_task(self._keep_lease(self._lease_owner), name="refresh-lease")
        try:
            return await self._run_batches(trigger)
        finally:
            if keeper is not None:
                keeper.cancel()

    async def _run_batches(self, trigger: str) -> RunSummary:
        logger.info(f"Starting leaderboard refresh (trigger={trigger})", extra={"trigger": trigger})

        try:
            participants = await self.repo.find_all_participants()
        except Exception as e:
            self._last_error = f"Could not load participants: {e}"
            logger.error(self._last_error, exc_info=True)
            raise RefreshRunError(self._last_error) from e

        if not participants:
            logger.warning("No participants found. Nothing to refresh.")

        summary = await self.scheduler.run(
            participants,
            self.engine.process,
            cancel_event=self._cancel_event,
            trigger=trigger,
        )
        self._last_run = summary
        self._last_error = None

        if self.leaderboard:
            self.leaderboard.invalidate()

        logger.info(
            f"Leaderboard refresh complete: {len(summary.succeeded)} succeeded, "
            f"{len(summary.failed)} failed, {len(summary.fallback_valuations)} fallback valuations "
            f"in {summary.duration_seconds:.1f}s",
            extra={
                "trigger": trigger,
                "succeeded": len(summary.succeeded),
                "failed": len(summary.failed),
                "cancelled": summary.cancelled,
            },
        )
        return summary

    def cancel(self) -> bool:
        """Request cancellation of the active run. Returns False if nothing is running."""
        if not self._running:
            return False
        logger.info("Cancellation requested for active refresh")
        self._cancel_event.set()
        return True

    async def wait(self) -> Optional[RunSummary]:
        """Wait for the background run (if any) to finish and return the last summary."""
        if self._task is not None and not self._task.done():
            await asyncio.gather(self._task, return_exceptions=True)
        return self._last_run

    def status(self) -> RefreshStatus:
        return RefreshStatus(
            running=self._running,
            current_trigger=self._current_trigger,
            current_started_at=self._current_started_at,
            last_run=self._last_run,
            last_error=self._last_error,
        )

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Cancel the active run cooperatively, then hard-cancel it if it does not stop in time."""
        if self._task is None or self._task.done():
            return
        self.cancel()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Refresh did not stop in time, cancelling task")
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        except Exception as e:
            logger.warning(f"Refresh ended with error during shutdown: {e}")
