"""
Tests for batching, pacing, bounded concurrency and cancellation.
"""
import asyncio

import pytest

from src.core.entities.participant import Participant
from src.core.entities.refresh import ParticipantOutcome, ReconciliationStage
from src.core.use_cases.batch_scheduler import BatchScheduler, chunk


def make_participants(n: int) -> list[Participant]:
    return [
        Participant(id=i, entry_order=i, nickname=f"p{i}", wallet="0x" + f"{i:040x}")
        for i in range(1, n + 1)
    ]


class RecordingHandler:
    def __init__(self, fail_ids=(), delay: float = 0):
        self.fail_ids = set(fail_ids)
        self.delay = delay
        self.seen: list[int] = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, participant: Participant) -> ParticipantOutcome:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.seen.append(participant.id)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if participant.id in self.fail_ids:
                return ParticipantOutcome(
                    participant_id=participant.id,
                    stage=ReconciliationStage.FAILED,
                    failed_stage=ReconciliationStage.FETCH_DEPOSITS,
                    error="boom",
                )
            return ParticipantOutcome(participant_id=participant.id, stage=ReconciliationStage.DONE)
        finally:
            self.active -= 1


def test_chunk_sizes():
    assert [len(c) for c in chunk(list(range(60)), 25)] == [25, 25, 10]
    assert chunk([], 25) == []
    with pytest.raises(ValueError):
        chunk([1], 0)


@pytest.mark.asyncio
async def test_runs_sequentially_in_order_and_records_outcomes():
    handler = RecordingHandler(fail_ids={2})
    scheduler = BatchScheduler(batch_size=2, batch_pause=0)

    summary = await scheduler.run(make_participants(5), handler, trigger="manual")

    assert handler.seen == [1, 2, 3, 4, 5]
    assert handler.max_active == 1
    assert summary.batches == 3
    assert summary.succeeded == [1, 3, 4, 5]
    assert summary.failed == [2]
    assert not summary.cancelled
    assert summary.finished_at is not None


@pytest.mark.asyncio
async def test_pauses_between_batches_but_not_after_last(monkeypatch):
    waits = []
    real_wait_for = asyncio.wait_for

    async def recording_wait_for(awaitable, timeout):
        waits.append(timeout)
        return await real_wait_for(awaitable, timeout=0)

    monkeypatch.setattr(asyncio, "wait_for", recording_wait_for)
    scheduler = BatchScheduler(batch_size=25, batch_pause=2.0)

    await scheduler.run(make_participants(60), RecordingHandler())

    assert waits == [2.0, 2.0]


@pytest.mark.asyncio
async def test_cancel_before_start_processes_nothing():
    cancel = asyncio.Event()
    cancel.set()
    handler = RecordingHandler()

    summary = await BatchScheduler(batch_size=2, batch_pause=0).run(make_participants(4), handler, cancel_event=cancel)

    assert handler.seen == []
    assert summary.cancelled


@pytest.mark.asyncio
async def test_cancel_mid_batch_stops_before_next_participant():
    cancel = asyncio.Event()
    handler = RecordingHandler()

    async def cancelling_handler(participant):
        outcome = await handler(participant)
        if participant.id == 2:
            cancel.set()
        return outcome

    summary = await BatchScheduler(batch_size=10, batch_pause=0).run(
        make_participants(6), cancelling_handler, cancel_event=cancel
    )

    assert handler.seen == [1, 2]
    assert summary.succeeded == [1, 2]
    assert summary.cancelled


@pytest.mark.asyncio
async def test_cancel_interrupts_pause():
    cancel = asyncio.Event()
    scheduler = BatchScheduler(batch_size=1, batch_pause=30)
    handler = RecordingHandler()

    run = asyncio.create_task(scheduler.run(make_participants(3), handler, cancel_event=cancel))
    await asyncio.sleep(0.05)
    cancel.set()
    summary = await asyncio.wait_for(run, timeout=1)

    assert handler.seen == [1]
    assert summary.cancelled


@pytest.mark.asyncio
async def test_bounded_concurrency_within_batch():
    handler = RecordingHandler(delay=0.01)
    scheduler = BatchScheduler(batch_size=10, batch_pause=0, max_concurrency=3)

    summary = await scheduler.run(make_participants(10), handler)

    assert handler.max_active == 3
    assert sorted(summary.succeeded) == list(range(1, 11))


def test_rejects_invalid_settings():
    with pytest.raises(ValueError):
        BatchScheduler(batch_size=0)
    with pytest.raises(ValueError):
        BatchScheduler(max_concurrency=0)
