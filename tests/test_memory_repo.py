"""
Tests for InMemoryRepo uniqueness and ordering rules.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.core.entities.deposit import Deposit
from src.core.entities.participant import ParticipantSeed
from src.core.entities.snapshot import Snapshot

from tests.fakes import ALICE, BOB

NOW = datetime(2025, 12, 20, tzinfo=timezone.utc)


def deposit(participant_id: int, wallet: str, tx_hash: str, amount: str) -> Deposit:
    return Deposit(
        participant_id=participant_id,
        wallet=wallet,
        tx_hash=tx_hash,
        block_number=1,
        amount=Decimal(amount),
        timestamp=NOW,
    )


@pytest.mark.asyncio
async def test_seed_skips_known_wallets(repo):
    seeds = [ParticipantSeed(entry_order=2, nickname="Bob", wallet=BOB)]
    assert await repo.seed_participants(seeds) == 1
    assert await repo.seed_participants(seeds + [ParticipantSeed(entry_order=1, nickname="Alice", wallet=ALICE)]) == 1

    participants = await repo.find_all_participants()
    assert [p.nickname for p in participants] == ["Alice", "Bob"]
    assert await repo.count_participants() == 2


@pytest.mark.asyncio
async def test_deposits_unique_per_tx_and_wallet(repo):
    assert await repo.insert_deposit(deposit(1, ALICE, "0xa", "10")) is True
    assert await repo.insert_deposit(deposit(1, ALICE, "0xa", "10")) is False
    # same transaction can credit a different wallet
    assert await repo.insert_deposit(deposit(2, BOB, "0xa", "5")) is True

    assert await repo.insert_deposits([deposit(1, ALICE, "0xa", "10"), deposit(1, ALICE, "0xb", "2.5")]) == 1
    assert await repo.sum_deposits(1) == Decimal("12.5")
    assert await repo.sum_deposits(3) == Decimal("0")


@pytest.mark.asyncio
async def test_latest_snapshot(repo):
    def snap(pnl: str, at: datetime) -> Snapshot:
        return Snapshot(
            participant_id=1,
            portfolio_value=Decimal("100") + Decimal(pnl),
            deposit_sum=Decimal("100"),
            pnl=Decimal(pnl),
            is_low_dep=False,
            is_high_dep=False,
            is_old=False,
            snapshot_time=at,
        )

    assert await repo.get_latest_snapshot(1) is None
    await repo.insert_snapshot(snap("1", NOW))
    await repo.insert_snapshot(snap("3", NOW + timedelta(hours=12)))
    await repo.insert_snapshot(snap("2", NOW))

    latest = await repo.get_latest_snapshot(1)
    assert latest.pnl == Decimal("3")
