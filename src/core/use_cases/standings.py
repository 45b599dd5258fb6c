from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from src.core.entities.leaderboard import LeaderboardEntry
from src.core.entities.participant import Participant
from src.core.entities.snapshot import Snapshot, ValuationSource

LOW_DEPOSIT_THRESHOLD = Decimal("90")
HIGH_DEPOSIT_THRESHOLD = Decimal("110")
TOURNAMENT_START = datetime(2025, 12, 5, tzinfo=timezone.utc)


def calculate_pnl(portfolio_value: Decimal, deposit_sum: Decimal) -> Decimal:
    return portfolio_value - deposit_sum


def deposit_flags(deposit_sum: Decimal) -> tuple[bool, bool]:
    """(is_low_dep, is_high_dep). Both False inside [90, 110]."""
    return deposit_sum < LOW_DEPOSIT_THRESHOLD, deposit_sum > HIGH_DEPOSIT_THRESHOLD


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def is_old_account(first_trade_date: Optional[datetime], tournament_start: datetime = TOURNAMENT_START) -> bool:
    if first_trade_date is None:
        return False
    return _aware(first_trade_date) < _aware(tournament_start)


def build_snapshot(
    participant_id: int,
    portfolio_value: Decimal,
    deposit_sum: Decimal,
    first_trade_date: Optional[datetime],
    valuation_source: ValuationSource,
    snapshot_time: datetime,
    tournament_start: datetime = TOURNAMENT_START,
) -> Snapshot:
    is_low_dep, is_high_dep = deposit_flags(deposit_sum)
    return Snapshot(
        participant_id=participant_id,
        portfolio_value=portfolio_value,
        deposit_sum=deposit_sum,
        pnl=calculate_pnl(portfolio_value, deposit_sum),
        is_low_dep=is_low_dep,
        is_high_dep=is_high_dep,
        is_old=is_old_account(first_trade_date, tournament_start),
        first_trade_date=first_trade_date,
        valuation_source=valuation_source,
        snapshot_time=snapshot_time,
    )


def leaderboard_entry_for(participant: Participant, snapshot: Snapshot) -> LeaderboardEntry:
    return LeaderboardEntry(
        participant_id=participant.id,
        entry_order=participant.entry_order,
        nickname=participant.nickname,
        wallet=participant.wallet,
        portfolio_value=snapshot.portfolio_value,
        deposit_sum=snapshot.deposit_sum,
        pnl=snapshot.pnl,
        is_low_dep=snapshot.is_low_dep,
        is_high_dep=snapshot.is_high_dep,
        is_old=snapshot.is_old,
        valuation_source=snapshot.valuation_source,
        last_updated=snapshot.snapshot_time,
    )
