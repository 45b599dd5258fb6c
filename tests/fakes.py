"""
In-memory stand-ins for the ledger and valuation API, plus shared test addresses.
"""
from typing import Any, Optional

from src.core.errors import TransientTransportError
from src.core.interfaces.datasource import ILedger, IValuationApi
from src.core.use_cases.chain_reader import TRANSFER_TOPIC, zero_pad_address

USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
ADMIN_KEY = "test-admin-key"
SENDER = "0x9999999999999999999999999999999999999999"

ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"


def transfer_log(recipient: str, tx_hash: str, block_number: int, raw_amount: int, sender: str = SENDER) -> dict:
    return {
        "topics": [TRANSFER_TOPIC, zero_pad_address(sender), zero_pad_address(recipient)],
        "data": hex(raw_amount),
        "transactionHash": tx_hash,
        "blockNumber": block_number,
    }


class FakeLedger(ILedger):
    """Serves canned Transfer logs keyed by recipient wallet."""

    def __init__(self):
        self.logs: dict[str, list[dict]] = {}
        self.block_timestamps: dict[int, int] = {}
        self.failing_wallets: set[str] = set()
        self.block_requests: list[int] = []
        self.log_requests: list[dict] = []

    def add_transfer(self, recipient: str, tx_hash: str, block_number: int, raw_amount: int, timestamp: int = 1733400000):
        self.logs.setdefault(recipient.lower(), []).append(transfer_log(recipient, tx_hash, block_number, raw_amount))
        self.block_timestamps.setdefault(block_number, timestamp)

    async def get_logs(self, log_filter: dict) -> list[dict]:
        self.log_requests.append(log_filter)
        recipient = "0x" + log_filter["topics"][2][-40:]
        if recipient in self.failing_wallets:
            raise TransientTransportError("connection reset by peer")
        return list(self.logs.get(recipient, []))

    async def get_block(self, number: int) -> Optional[dict]:
        self.block_requests.append(number)
        if number not in self.block_timestamps:
            return None
        return {"number": number, "timestamp": self.block_timestamps[number]}

    async def get_block_number(self) -> int:
        return max(self.block_timestamps, default=0)


class FakeValuationApi(IValuationApi):
    """Canned valuation API responses; None models a 404."""

    def __init__(self):
        self.portfolios: dict[str, Optional[dict]] = {}
        self.positions: dict[str, Optional[dict]] = {}
        self.markets: dict[str, dict] = {}
        # replaces the whole /markets body when set
        self.markets_body: Any = None
        self.trades: dict[str, Optional[dict]] = {}
        self.failing_wallets: set[str] = set()
        self.calls: list[tuple] = []

    def _check(self, wallet: str):
        if wallet in self.failing_wallets:
            raise TransientTransportError("valuation API unavailable", status_code=503)

    async def get_portfolio(self, wallet: str) -> Optional[dict]:
        self.calls.append(("portfolio", wallet))
        self._check(wallet)
        return self.portfolios.get(wallet)

    async def get_positions(self, wallet: str) -> Optional[dict]:
        self.calls.append(("positions", wallet))
        self._check(wallet)
        return self.positions.get(wallet)

    async def get_markets(self, market_ids: list[str]) -> Optional[dict]:
        self.calls.append(("markets", tuple(market_ids)))
        if self.markets_body is not None:
            return self.markets_body
        return {"markets": [self.markets[m] for m in market_ids if m in self.markets]}

    async def get_trades(self, wallet: str, limit: int = 1, order: str = "asc") -> Optional[dict]:
        self.calls.append(("trades", wallet))
        self._check(wallet)
        return self.trades.get(wallet)


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
