from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ValuationSource(str, Enum):
    """Where a snapshot's portfolio value came from."""
    API = "api"
    FALLBACK = "fallback"


class Snapshot(BaseModel):
    """
    One participant's computed standing at a point in time. Append-only;
    the most recent snapshot_time is the latest.
    """
    participant_id: int
    portfolio_value: Decimal
    deposit_sum: Decimal
    pnl: Decimal
    is_low_dep: bool
    is_high_dep: bool
    is_old: bool
    first_trade_date: Optional[datetime] = None
    valuation_source: ValuationSource = ValuationSource.API
    snapshot_time: datetime
