"""
Tests for run-level supervision: single-flight, background runs, cancellation and status.
"""
import asyncio
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from src.core.errors import RefreshInProgressError, RefreshRunError
from src.core.services import REFRESH_LEASE_KEY, LeaderboardService, RefreshService
from src.core.use_cases.batch_scheduler import BatchScheduler
from src.infrastructure.cache.redis_service import RedisService

from tests.fakes import ALICE, BOB


@pytest.fixture
def leaderboard(repo):
    return LeaderboardService(repo)


@pytest.fixture
def refresh(repo, engine, scheduler, leaderboard):
    return RefreshService(repo, engine, scheduler, leaderboard=leaderboard)


@pytest.mark.asyncio
async def test_run_refresh_processes_everyone(refresh, seeded, repo, ledger):
    ledger.add_transfer(ALICE, "0xa1", 100, 100_000_000)

    summary = await refresh.run_refresh("manual")

    assert summary.succeeded == [p.id for p in seeded]
    assert summary.failed == []
    assert repo.leaderboard[seeded[0].id].deposit_sum == Decimal("100")
    assert not refresh.running
    assert refresh.status().last_run == summary


@pytest.mark.asyncio
async def test_concurrent_trigger_is_rejected(refresh, seeded):
    gate = asyncio.Event()
    original = refresh.engine.process

    async def slow_process(participant):
        await gate.wait()
        return await original(participant)

    refresh.engine.process = slow_process

    assert refresh.start_refresh("manual") is True
    assert refresh.running
    assert refresh.start_refresh("scheduled") is False
    with pytest.raises(RefreshInProgressError):
        await refresh.run_refresh("manual")

    gate.set()
    summary = await refresh.wait()
    assert len(summary.succeeded) == 3
    assert not refresh.running
    # guard is released, a new run can start
    assert refresh.start_refresh("manual") is True
    await refresh.wait()


@pytest.mark.asyncio
async def test_participant_load_failure_is_a_run_level_error(refresh, repo):
    async def broken():
        raise RuntimeError("connection refused")

    repo.find_all_participants = broken

    with pytest.raises(RefreshRunError):
        await refresh.run_refresh("manual")

    status = refresh.status()
    assert not status.running
    assert "connection refused" in status.last_error


@pytest.mark.asyncio
async def test_background_failure_is_logged_not_raised(refresh, repo, caplog):
    async def broken():
        raise RuntimeError("connection refused")

    repo.find_all_participants = broken

    assert refresh.start_refresh("scheduled") is True
    await refresh.wait()

    assert not refresh.running
    assert "Refresh task failed" in caplog.text


@pytest.mark.asyncio
async def test_cancel_stops_active_run(repo, engine, seeded, leaderboard):
    refresh = RefreshService(repo, engine, BatchScheduler(batch_size=1, batch_pause=30), leaderboard=leaderboard)

    assert refresh.cancel() is False
    refresh.start_refresh("manual")
    await asyncio.sleep(0.05)
    assert refresh.cancel() is True

    summary = await asyncio.wait_for(refresh.wait(), timeout=1)
    assert summary.cancelled
    assert len(summary.succeeded) == 1


@pytest.mark.asyncio
async def test_shutdown_stops_background_run(repo, engine, seeded, leaderboard):
    refresh = RefreshService(repo, engine, BatchScheduler(batch_size=1, batch_pause=30), leaderboard=leaderboard)
    refresh.start_refresh("manual")
    await asyncio.sleep(0.05)

    await refresh.shutdown(timeout=1)

    assert not refresh.running
    assert refresh.status().last_run.cancelled


@pytest.mark.asyncio
async def test_redis_lease_held_elsewhere_rejects(repo, engine, scheduler, seeded):
    client = MagicMock()
    client.set.return_value = None
    refresh = RefreshService(repo, engine, scheduler, cache=RedisService(client=client))

    assert refresh.start_refresh("scheduled") is False
    client.set.assert_called_once()
    assert client.set.call_args.args[0] == REFRESH_LEASE_KEY
    assert client.set.call_args.kwargs["nx"] is True


@pytest.mark.asyncio
async def test_redis_lease_released_after_run(repo, engine, scheduler, seeded):
    client = MagicMock()
    client.set.return_value = True
    client.get.return_value = None
    refresh = RefreshService(repo, engine, scheduler, cache=RedisService(client=client))

    await refresh.run_refresh("manual")

    owner = client.set.call_args.args[1]
    client.eval.assert_called_once()
    assert client.eval.call_args.args[2:] == (REFRESH_LEASE_KEY, owner)


@pytest.mark.asyncio
async def test_redis_lease_renewed_during_long_run(repo, engine, scheduler, seeded):
    client = MagicMock()
    client.set.return_value = True
    client.eval.return_value = 1
    refresh = RefreshService(
        repo, engine, scheduler, cache=RedisService(client=client), lease_ttl=30, lease_renew_interval=0.01
    )
    gate = asyncio.Event()
    original = refresh.engine.process

    async def held(participant):
        await gate.wait()
        return await original(participant)

    refresh.engine.process = held
    assert refresh.start_refresh("scheduled") is True
    await asyncio.sleep(0.05)

    owner = client.set.call_args.args[1]
    renewals = [c for c in client.eval.call_args_list if len(c.args) == 5]
    assert renewals
    assert renewals[0].args[2:] == (REFRESH_LEASE_KEY, owner, 30)

    gate.set()
    await refresh.wait()
    # renewal stops with the run
    calls_after_run = client.eval.call_count
    await asyncio.sleep(0.03)
    assert client.eval.call_count == calls_after_run


@pytest.mark.asyncio
async def test_leaderboard_cache_invalidated_after_run(repo, engine, scheduler, seeded):
    client = MagicMock()
    client.set.return_value = True
    cache = RedisService(client=client)
    leaderboard = LeaderboardService(repo, cache)
    refresh = RefreshService(repo, engine, scheduler, leaderboard=leaderboard, cache=cache)

    await refresh.run_refresh("manual")

    client.delete.assert_called_once_with("leaderboard:entry_order", "leaderboard:pnl")


@pytest.mark.asyncio
async def test_leaderboard_service_reads_through_cache(repo, engine, seeded):
    await engine.process(seeded[1])
    client = MagicMock()
    client.get.return_value = None
    leaderboard = LeaderboardService(repo, RedisService(client=client))

    rows = await leaderboard.get_leaderboard("pnl")

    assert [r.wallet for r in rows] == [BOB]
    key, ttl, payload = client.setex.call_args.args
    assert key == "leaderboard:pnl"
    assert ttl == 60

    # a later read is served from the stored payload
    client.get.return_value = payload
    cached = await leaderboard.get_leaderboard("pnl")
    assert cached == rows
