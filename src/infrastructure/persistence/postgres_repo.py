import asyncio
import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import List, Optional

import psycopg2
import psycopg2.extras
from psycopg2 import pool as pg_pool
from psycopg2.extras import execute_values

from src.core.entities.deposit import Deposit
from src.core.entities.leaderboard import LeaderboardEntry
from src.core.entities.participant import Participant, ParticipantSeed
from src.core.entities.snapshot import Snapshot, ValuationSource
from src.core.errors import LeaderboardWriteError
from src.core.interfaces.persistence import IPersistenceGateway, SortBy

logger = logging.getLogger(__name__)

_SNAPSHOT_COLUMNS = """
    participant_id, portfolio_value, deposit_sum, pnl,
    is_low_dep, is_high_dep, is_old, first_trade_date, valuation_source, snapshot_time
"""

_INSERT_SNAPSHOT = f"""
    INSERT INTO snapshots ({_SNAPSHOT_COLUMNS})
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
"""

_UPSERT_LEADERBOARD = """
    INSERT INTO leaderboard_cache (
        participant_id, entry_order, nickname, wallet,
        portfolio_value, deposit_sum, pnl,
        is_low_dep, is_high_dep, is_old, valuation_source, last_updated
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (participant_id)
    DO UPDATE SET
        entry_order = EXCLUDED.entry_order,
        nickname = EXCLUDED.nickname,
        wallet = EXCLUDED.wallet,
        portfolio_value = EXCLUDED.portfolio_value,
        deposit_sum = EXCLUDED.deposit_sum,
        pnl = EXCLUDED.pnl,
        is_low_dep = EXCLUDED.is_low_dep,
        is_high_dep = EXCLUDED.is_high_dep,
        is_old = EXCLUDED.is_old,
        valuation_source = EXCLUDED.valuation_source,
        last_updated = EXCLUDED.last_updated
"""

_ORDER_CLAUSES = {
    "entry_order": "entry_order ASC",
    "pnl": "pnl DESC, entry_order ASC",
}


class PostgresRepo(IPersistenceGateway):
    """
    Postgres persistence gateway owning a threaded connection pool.

    psycopg2 is blocking, so every public method runs its query in a worker
    thread. Create once at startup and close() on shutdown.
    """

    def __init__(
        self,
        dsn: str,
        min_connections: int = 1,
        max_connections: int = 10,
        connect_timeout: int = 10,
        statement_timeout_ms: int = 30000,
    ):
        self.dsn = dsn
        self._pool = pg_pool.ThreadedConnectionPool(
            minconn=min_connections,
            maxconn=max_connections,
            dsn=dsn,
            connect_timeout=connect_timeout,
            options=f"-c statement_timeout={statement_timeout_ms}",
        )
        self._init_db()

    @contextmanager
    def _connection(self):
        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def _init_db(self):
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS participants (
                    id SERIAL PRIMARY KEY,
                    entry_order INTEGER NOT NULL,
                    nickname VARCHAR(255) NOT NULL,
                    wallet VARCHAR(42) NOT NULL UNIQUE,
                    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
                );
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS deposits (
                    id SERIAL PRIMARY KEY,
                    participant_id INTEGER NOT NULL REFERENCES participants(id),
                    wallet VARCHAR(42) NOT NULL,
                    tx_hash VARCHAR(66) NOT NULL,
                    block_number BIGINT NOT NULL,
                    amount NUMERIC NOT NULL,
                    timestamp TIMESTAMPTZ NOT NULL,
                    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (tx_hash, wallet)
                );
                CREATE INDEX IF NOT EXISTS idx_deposits_participant ON deposits (participant_id);
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    id SERIAL PRIMARY KEY,
                    participant_id INTEGER NOT NULL REFERENCES participants(id),
                    portfolio_value NUMERIC NOT NULL,
                    deposit_sum NUMERIC NOT NULL,
                    pnl NUMERIC NOT NULL,
                    is_low_dep BOOLEAN NOT NULL,
                    is_high_dep BOOLEAN NOT NULL,
                    is_old BOOLEAN NOT NULL,
                    first_trade_date TIMESTAMPTZ,
                    valuation_source VARCHAR(16) NOT NULL DEFAULT 'api',
                    snapshot_time TIMESTAMPTZ NOT NULL,
                    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
                );
                CREATE INDEX IF NOT EXISTS idx_snapshots_latest
                    ON snapshots (participant_id, snapshot_time DESC);
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS leaderboard_cache (
                    participant_id INTEGER PRIMARY KEY REFERENCES participants(id),
                    entry_order INTEGER NOT NULL,
                    nickname VARCHAR(255) NOT NULL,
                    wallet VARCHAR(42) NOT NULL,
                    portfolio_value NUMERIC NOT NULL,
                    deposit_sum NUMERIC NOT NULL,
                    pnl NUMERIC NOT NULL,
                    is_low_dep BOOLEAN NOT NULL,
                    is_high_dep BOOLEAN NOT NULL,
                    is_old BOOLEAN NOT NULL,
                    valuation_source VARCHAR(16) NOT NULL DEFAULT 'api',
                    last_updated TIMESTAMPTZ
                );
            """)

    # --- Participants ---

    def _find_all_participants(self) -> List[Participant]:
        with self._connection() as conn, conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute("SELECT id, entry_order, nickname, wallet FROM participants ORDER BY entry_order ASC, id ASC")
            return [Participant(**row) for row in cur.fetchall()]

    async def find_all_participants(self) -> List[Participant]:
        return await asyncio.to_thread(self._find_all_participants)

    def _count_participants(self) -> int:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM participants")
            return int(cur.fetchone()[0])

    async def count_participants(self) -> int:
        return await asyncio.to_thread(self._count_participants)

    def _seed_participants(self, seeds: List[ParticipantSeed]) -> int:
        if not seeds:
            return 0
        data = [(s.entry_order, s.nickname, s.wallet.lower()) for s in seeds]
        with self._connection() as conn, conn.cursor() as cur:
            rows = execute_values(
                cur,
                """
                INSERT INTO participants (entry_order, nickname, wallet)
                VALUES %s
                ON CONFLICT (wallet) DO NOTHING
                RETURNING id
                """,
                data,
                fetch=True,
            )
            return len(rows)

    async def seed_participants(self, seeds: List[ParticipantSeed]) -> int:
        return await asyncio.to_thread(self._seed_participants, seeds)

    # --- Deposits ---

    def _insert_deposits(self, deposits: List[Deposit]) -> int:
        if not deposits:
            return 0
        data = [
            (d.participant_id, d.wallet.lower(), d.tx_hash, d.block_number, d.amount, d.timestamp)
            for d in deposits
        ]
        with self._connection() as conn, conn.cursor() as cur:
            rows = execute_values(
                cur,
                """
                INSERT INTO deposits (participant_id, wallet, tx_hash, block_number, amount, timestamp)
                VALUES %s
                ON CONFLICT (tx_hash, wallet) DO NOTHING
                RETURNING id
                """,
                data,
                fetch=True,
            )
            return len(rows)

    async def insert_deposit(self, deposit: Deposit) -> bool:
        return await asyncio.to_thread(self._insert_deposits, [deposit]) == 1

    async def insert_deposits(self, deposits: List[Deposit]) -> int:
        return await asyncio.to_thread(self._insert_deposits, deposits)

    def _sum_deposits(self, participant_id: int) -> Decimal:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(
                "SELECT COALESCE(SUM(amount), 0) FROM deposits WHERE participant_id = %s",
                (participant_id,),
            )
            return Decimal(cur.fetchone()[0])

    async def sum_deposits(self, participant_id: int) -> Decimal:
        return await asyncio.to_thread(self._sum_deposits, participant_id)

    # --- Snapshots & leaderboard ---

    @staticmethod
    def _snapshot_params(s: Snapshot) -> tuple:
        return (
            s.participant_id, s.portfolio_value, s.deposit_sum, s.pnl,
            s.is_low_dep, s.is_high_dep, s.is_old, s.first_trade_date,
            s.valuation_source.value, s.snapshot_time,
        )

    @staticmethod
    def _entry_params(e: LeaderboardEntry) -> tuple:
        return (
            e.participant_id, e.entry_order, e.nickname, e.wallet,
            e.portfolio_value, e.deposit_sum, e.pnl,
            e.is_low_dep, e.is_high_dep, e.is_old, e.valuation_source.value, e.last_updated,
        )

    def _insert_snapshot(self, snapshot: Snapshot):
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(_INSERT_SNAPSHOT, self._snapshot_params(snapshot))

    async def insert_snapshot(self, snapshot: Snapshot) -> None:
        await asyncio.to_thread(self._insert_snapshot, snapshot)

    def _upsert_leaderboard_entry(self, entry: LeaderboardEntry):
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(_UPSERT_LEADERBOARD, self._entry_params(entry))

    async def upsert_leaderboard_entry(self, entry: LeaderboardEntry) -> None:
        await asyncio.to_thread(self._upsert_leaderboard_entry, entry)

    def _commit_standing(self, snapshot: Snapshot, entry: LeaderboardEntry):
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(_INSERT_SNAPSHOT, self._snapshot_params(snapshot))
            try:
                cur.execute(_UPSERT_LEADERBOARD, self._entry_params(entry))
            except psycopg2.Error as e:
                raise LeaderboardWriteError(f"leaderboard upsert failed: {e}") from e

    async def commit_standing(self, snapshot: Snapshot, entry: LeaderboardEntry) -> None:
        await asyncio.to_thread(self._commit_standing, snapshot, entry)

    def _get_latest_snapshot(self, participant_id: int) -> Optional[Snapshot]:
        with self._connection() as conn, conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_SNAPSHOT_COLUMNS}
                FROM snapshots
                WHERE participant_id = %s
                ORDER BY snapshot_time DESC, id DESC
                LIMIT 1
                """,
                (participant_id,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        row["valuation_source"] = ValuationSource(row["valuation_source"])
        return Snapshot(**row)

    async def get_latest_snapshot(self, participant_id: int) -> Optional[Snapshot]:
        return await asyncio.to_thread(self._get_latest_snapshot, participant_id)

    def _get_leaderboard(self, sort_by: SortBy) -> List[LeaderboardEntry]:
        order_clause = _ORDER_CLAUSES[sort_by]
        with self._connection() as conn, conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(f"""
                SELECT
                    participant_id, entry_order, nickname, wallet, portfolio_value,
                    deposit_sum, pnl, is_low_dep, is_high_dep, is_old,
                    valuation_source, last_updated
                FROM leaderboard_cache
                ORDER BY {order_clause}
            """)
            rows = cur.fetchall()
        return [
            LeaderboardEntry(**{**row, "valuation_source": ValuationSource(row["valuation_source"])})
            for row in rows
        ]

    async def get_leaderboard(self, sort_by: SortBy = "entry_order") -> List[LeaderboardEntry]:
        return await asyncio.to_thread(self._get_leaderboard, sort_by)

    async def close(self) -> None:
        if self._pool is not None and not self._pool.closed:
            self._pool.closeall()
            logger.info("Closed Postgres connection pool")
