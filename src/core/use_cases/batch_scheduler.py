import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from src.core.entities.participant import Participant
from src.core.entities.refresh import ParticipantOutcome, RunSummary
from src.core.entities.snapshot import ValuationSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 25
DEFAULT_BATCH_PAUSE = 2.0  # seconds


def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class BatchScheduler:
    """
    Runs participants through a handler in fixed-size batches.

    Batches are strictly sequential with a pause between them to bound load on
    the ledger and valuation services. Inside a batch participants run one at a
    time unless max_concurrency > 1, in which case at most that many run at once.
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_pause: float = DEFAULT_BATCH_PAUSE,
        max_concurrency: int = 1,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self.max_concurrency = max_concurrency

    async def run(
        self,
        participants: Sequence[Participant],
        handler: Callable[[Participant], Awaitable[ParticipantOutcome]],
        cancel_event: Optional[asyncio.Event] = None,
        trigger: str = "manual",
    ) -> RunSummary:
        cancel_event = cancel_event or asyncio.Event()
        batches = chunk(participants, self.batch_size)
        summary = RunSummary(
            trigger=trigger,
            started_at=datetime.now(timezone.utc),
            participants=len(participants),
            batches=len(batches),
        )

        for index, batch in enumerate(batches):
            if cancel_event.is_set():
                summary.cancelled = True
                break

            logger.info(
                f"Processing batch {index + 1}/{len(batches)} ({len(batch)} participants)",
                extra={"batch_index": index, "batch_size": len(batch)},
            )
            outcomes = await self._run_batch(batch, handler, cancel_event)
            for outcome in outcomes:
                self._record(summary, outcome)

            if cancel_event.is_set():
                summary.cancelled = True
                break

            if index < len(batches) - 1 and self.batch_pause > 0:
                logger.info(f"Waiting {self.batch_pause}s before next batch...")
                if await self._pause(cancel_event):
                    summary.cancelled = True
                    break

        summary.finished_at = datetime.now(timezone.utc)
        if summary.cancelled:
            logger.warning(
                f"Run cancelled after {len(summary.succeeded) + len(summary.failed)}"
                f"/{summary.participants} participants"
            )
        return summary

    async def _run_batch(self, batch, handler, cancel_event) -> list[ParticipantOutcome]:
        if self.max_concurrency == 1:
            outcomes = []
            for participant in batch:
                if cancel_event.is_set():
                    break
                outcomes.append(await handler(participant))
            return outcomes

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _guarded(participant: Participant) -> Optional[ParticipantOutcome]:
            async with semaphore:
                if cancel_event.is_set():
                    return None
                return await handler(participant)

        results = await asyncio.gather(*(_guarded(p) for p in batch))
        return [r for r in results if r is not None]

    async def _pause(self, cancel_event: asyncio.Event) -> bool:
        """Sleep between batches. Returns True if cancelled during the pause."""
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.batch_pause)
            return True
        except asyncio.TimeoutError:
            return False

    @staticmethod
    def _record(summary: RunSummary, outcome: ParticipantOutcome) -> None:
        if outcome.succeeded:
            summary.succeeded.append(outcome.participant_id)
            if outcome.snapshot and outcome.snapshot.valuation_source == ValuationSource.FALLBACK:
                summary.fallback_valuations.append(outcome.participant_id)
        else:
            summary.failed.append(outcome.participant_id)
