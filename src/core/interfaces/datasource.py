from abc import ABC, abstractmethod
from typing import Optional, Union

BlockTag = Union[int, str]


class ILedger(ABC):
    """
    Read access to an EVM ledger. Log records are normalised dicts:
    {"topics": [hex...], "data": hex, "transactionHash": hex, "blockNumber": int}.
    """

    @abstractmethod
    async def get_logs(self, log_filter: dict) -> list[dict]:
        """
        log_filter keys: address, topics, fromBlock, toBlock (int or "latest").
        """
        pass

    @abstractmethod
    async def get_block(self, number: int) -> Optional[dict]:
        """Returns at least {"timestamp": int} or None when the block is unknown."""
        pass

    @abstractmethod
    async def get_block_number(self) -> int:
        pass

    async def close(self) -> None:
        pass


class IValuationApi(ABC):
    """
    Raw endpoints of the portfolio valuation service.
    A None return means the resource does not exist (404), which is not an error.
    """

    @abstractmethod
    async def get_portfolio(self, wallet: str) -> Optional[dict]:
        pass

    @abstractmethod
    async def get_positions(self, wallet: str) -> Optional[dict]:
        pass

    @abstractmethod
    async def get_markets(self, market_ids: list[str]) -> Optional[dict]:
        pass

    @abstractmethod
    async def get_trades(self, wallet: str, limit: int = 1, order: str = "asc") -> Optional[dict]:
        pass

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass
