"""
Deposit Entities for the tournament leaderboard

Tracks verified on-chain USDC transfers into participant wallets.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class TransferEvent(BaseModel):
    """
    A decoded ERC-20 Transfer log addressed to a participant wallet.
    `timestamp` is the block time in epoch seconds, filled in after block lookup.
    """
    tx_hash: str
    block_number: int
    sender: str
    recipient: str
    raw_amount: int  # token base units (6 decimals for USDC)
    timestamp: Optional[int] = None


class Deposit(BaseModel):
    """
    One verified deposit. Unique on (tx_hash, wallet); never amended.
    """
    participant_id: int
    wallet: str
    tx_hash: str
    block_number: int
    amount: Decimal
    timestamp: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "participant_id": 1,
                "wallet": "0x2222222222222222222222222222222222222222",
                "tx_hash": "0xabc123...",
                "block_number": 12345,
                "amount": "50.00",
                "timestamp": "2021-12-01T00:00:00Z",
            }
        }
