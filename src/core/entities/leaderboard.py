from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from pydantic import BaseModel

from src.core.entities.snapshot import ValuationSource

CENT = Decimal("0.01")


def to_display(value: Decimal) -> float:
    """Round a currency amount to cents for output. Only used at the API boundary."""
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


class LeaderboardEntry(BaseModel):
    """
    Last known good standing for a participant (one row each, upserted).
    """
    participant_id: int
    entry_order: int
    nickname: str
    wallet: str
    portfolio_value: Decimal
    deposit_sum: Decimal
    pnl: Decimal
    is_low_dep: bool
    is_high_dep: bool
    is_old: bool
    valuation_source: ValuationSource = ValuationSource.API
    last_updated: Optional[datetime] = None


class LeaderboardRow(BaseModel):
    """Display form of a LeaderboardEntry, amounts rounded to cents."""
    entry_order: int
    nickname: str
    wallet: str
    portfolio_value: float
    deposit_sum: float
    pnl: float
    is_low_dep: bool
    is_high_dep: bool
    is_old: bool
    valuation_source: ValuationSource
    last_updated: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: LeaderboardEntry) -> "LeaderboardRow":
        return cls(
            entry_order=entry.entry_order,
            nickname=entry.nickname,
            wallet=entry.wallet,
            portfolio_value=to_display(entry.portfolio_value),
            deposit_sum=to_display(entry.deposit_sum),
            pnl=to_display(entry.pnl),
            is_low_dep=entry.is_low_dep,
            is_high_dep=entry.is_high_dep,
            is_old=entry.is_old,
            valuation_source=entry.valuation_source,
            last_updated=entry.last_updated,
        )


class LeaderboardResponse(BaseModel):
    success: bool = True
    data: list[LeaderboardRow]
    sortBy: str
    count: int
    timestamp: datetime
