from decimal import Decimal

from pydantic import BaseModel, Field


class Position(BaseModel):
    """
    An open outcome-token position valued at the current market price.
    """
    market_id: str
    token_id: str = ""
    balance: Decimal
    price: Decimal = Decimal("0")
    value: Decimal = Decimal("0")


class PortfolioValue(BaseModel):
    """
    A wallet's current portfolio total as reported (or reconstructed) from the valuation API.
    """
    wallet: str
    total_value: Decimal
    positions: list[Position] = Field(default_factory=list)
