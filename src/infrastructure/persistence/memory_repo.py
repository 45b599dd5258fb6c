import logging
from decimal import Decimal
from typing import List, Optional

from src.core.entities.deposit import Deposit
from src.core.entities.leaderboard import LeaderboardEntry
from src.core.entities.participant import Participant, ParticipantSeed
from src.core.entities.snapshot import Snapshot
from src.core.interfaces.persistence import IPersistenceGateway, SortBy

logger = logging.getLogger(__name__)


class InMemoryRepo(IPersistenceGateway):
    """
    Process-local persistence gateway for local runs without DATABASE_URL and for tests.
    Mirrors the Postgres uniqueness rules: wallet for participants, (tx_hash, wallet) for deposits.
    """

    def __init__(self):
        self.participants: dict[int, Participant] = {}
        self.deposits: dict[tuple[str, str], Deposit] = {}
        self.snapshots: list[Snapshot] = []
        self.leaderboard: dict[int, LeaderboardEntry] = {}
        self._next_id = 1

    async def find_all_participants(self) -> List[Participant]:
        return sorted(self.participants.values(), key=lambda p: (p.entry_order, p.id))

    async def count_participants(self) -> int:
        return len(self.participants)

    async def seed_participants(self, seeds: List[ParticipantSeed]) -> int:
        known = {p.wallet for p in self.participants.values()}
        inserted = 0
        for seed in seeds:
            wallet = seed.wallet.lower()
            if wallet in known:
                continue
            participant = Participant(
                id=self._next_id,
                entry_order=seed.entry_order,
                nickname=seed.nickname,
                wallet=wallet,
            )
            self.participants[participant.id] = participant
            known.add(wallet)
            self._next_id += 1
            inserted += 1
        return inserted

    async def insert_deposit(self, deposit: Deposit) -> bool:
        key = (deposit.tx_hash, deposit.wallet.lower())
        if key in self.deposits:
            return False
        self.deposits[key] = deposit.model_copy(update={"wallet": deposit.wallet.lower()})
        return True

    async def insert_deposits(self, deposits: List[Deposit]) -> int:
        inserted = 0
        for deposit in deposits:
            if await self.insert_deposit(deposit):
                inserted += 1
        return inserted

    async def sum_deposits(self, participant_id: int) -> Decimal:
        return sum(
            (d.amount for d in self.deposits.values() if d.participant_id == participant_id),
            Decimal("0"),
        )

    async def insert_snapshot(self, snapshot: Snapshot) -> None:
        self.snapshots.append(snapshot)

    async def upsert_leaderboard_entry(self, entry: LeaderboardEntry) -> None:
        self.leaderboard[entry.participant_id] = entry

    async def commit_standing(self, snapshot: Snapshot, entry: LeaderboardEntry) -> None:
        self.snapshots.append(snapshot)
        self.leaderboard[entry.participant_id] = entry

    async def get_latest_snapshot(self, participant_id: int) -> Optional[Snapshot]:
        own = [s for s in self.snapshots if s.participant_id == participant_id]
        if not own:
            return None
        # max() keeps the first of equal keys; later appends win ties
        return max(reversed(own), key=lambda s: s.snapshot_time)

    async def get_leaderboard(self, sort_by: SortBy = "entry_order") -> List[LeaderboardEntry]:
        entries = list(self.leaderboard.values())
        if sort_by == "pnl":
            return sorted(entries, key=lambda e: (-e.pnl, e.entry_order))
        return sorted(entries, key=lambda e: e.entry_order)
