from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Literal, Optional

from src.core.entities.deposit import Deposit
from src.core.entities.leaderboard import LeaderboardEntry
from src.core.entities.participant import Participant, ParticipantSeed
from src.core.entities.snapshot import Snapshot

SortBy = Literal["entry_order", "pnl"]


class IPersistenceGateway(ABC):
    """
    Storage for participants, deposits, snapshots and the leaderboard cache.
    Implementations are constructed explicitly and closed by their owner.
    """

    @abstractmethod
    async def find_all_participants(self) -> list[Participant]:
        """All participants ordered by entry_order ascending."""
        pass

    @abstractmethod
    async def count_participants(self) -> int:
        pass

    @abstractmethod
    async def seed_participants(self, seeds: list[ParticipantSeed]) -> int:
        """Insert participants, skipping wallets that already exist. Returns rows inserted."""
        pass

    @abstractmethod
    async def insert_deposit(self, deposit: Deposit) -> bool:
        """No-op if (tx_hash, wallet) already exists. Returns True when a row was written."""
        pass

    @abstractmethod
    async def insert_deposits(self, deposits: list[Deposit]) -> int:
        """Idempotent bulk insert in one transaction. Returns rows written."""
        pass

    @abstractmethod
    async def sum_deposits(self, participant_id: int) -> Decimal:
        pass

    @abstractmethod
    async def insert_snapshot(self, snapshot: Snapshot) -> None:
        pass

    @abstractmethod
    async def upsert_leaderboard_entry(self, entry: LeaderboardEntry) -> None:
        pass

    @abstractmethod
    async def commit_standing(self, snapshot: Snapshot, entry: LeaderboardEntry) -> None:
        """
        Write the snapshot and upsert the leaderboard row atomically.
        Raises LeaderboardWriteError when the upsert is the step that failed.
        """
        pass

    @abstractmethod
    async def get_latest_snapshot(self, participant_id: int) -> Optional[Snapshot]:
        pass

    @abstractmethod
    async def get_leaderboard(self, sort_by: SortBy = "entry_order") -> list[LeaderboardEntry]:
        pass

    async def close(self) -> None:
        pass
