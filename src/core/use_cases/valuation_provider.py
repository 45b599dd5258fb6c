import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from src.core.entities.portfolio import PortfolioValue, Position
from src.core.interfaces.datasource import IValuationApi
from src.core.use_cases.retry import RetryExecutor

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        # str() first so floats keep their shortest repr instead of binary noise
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def _list_field(data: Any, key: str) -> list:
    """List under key in a JSON object body; anything else reads as empty."""
    if not isinstance(data, dict):
        return []
    items = data.get(key)
    return items if isinstance(items, list) else []


def parse_trade_time(value: Any) -> Optional[datetime]:
    """
    Trade timestamps arrive as epoch seconds, epoch milliseconds or ISO-8601.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 10_000_000_000 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return parse_trade_time(int(text))
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ValuationProvider:
    """
    Portfolio valuation with graceful degradation.

    Tries the direct portfolio endpoint first and reconstructs from positions
    and market prices when it reports absence. Every endpoint call is retried;
    only transport failure after retries escapes fetch_portfolio_value.
    """

    def __init__(
        self,
        api: IValuationApi,
        retry: Optional[RetryExecutor] = None,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
    ):
        self.api = api
        self.retry = retry or RetryExecutor()
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay

    async def _call(self, operation):
        return await self.retry.execute(
            operation, max_attempts=self.max_attempts, initial_delay=self.initial_delay
        )

    async def fetch_portfolio_value(self, wallet: str) -> PortfolioValue:
        portfolio = await self._try_fetch_direct_portfolio(wallet)
        if portfolio is not None:
            return portfolio
        return await self._reconstruct_portfolio(wallet)

    async def _try_fetch_direct_portfolio(self, wallet: str) -> Optional[PortfolioValue]:
        data = await self._call(lambda: self.api.get_portfolio(wallet))
        if not isinstance(data, dict) or not data:
            logger.info(f"Direct portfolio endpoint reported no data for {wallet}, reconstructing")
            return None

        total = data.get("totalValue")
        if isinstance(total, bool) or not isinstance(total, (int, float, str)):
            return None
        total_value = _to_decimal(total)
        if total_value is None:
            return None

        positions = []
        for raw in _list_field(data, "positions"):
            position = self._parse_position(raw)
            if position is not None:
                positions.append(position)

        return PortfolioValue(wallet=wallet, total_value=total_value, positions=positions)

    async def _reconstruct_portfolio(self, wallet: str) -> PortfolioValue:
        logger.info(f"Reconstructing portfolio for {wallet}...")

        positions = await self._fetch_user_positions(wallet)
        if not positions:
            return PortfolioValue(wallet=wallet, total_value=ZERO, positions=[])

        market_ids = list(dict.fromkeys(p.market_id for p in positions))
        prices = await self._fetch_market_prices(market_ids)

        valued = []
        total_value = ZERO
        for position in positions:
            price = prices.get(position.market_id, ZERO)
            value = position.balance * price
            valued.append(position.model_copy(update={"price": price, "value": value}))
            total_value += value

        return PortfolioValue(wallet=wallet, total_value=total_value, positions=valued)

    async def _fetch_user_positions(self, wallet: str) -> list[Position]:
        data = await self._call(lambda: self.api.get_positions(wallet))
        positions = []
        for raw in _list_field(data, "positions"):
            position = self._parse_position(raw)
            if position is not None:
                positions.append(position)
        return positions

    def _parse_position(self, raw: Any) -> Optional[Position]:
        if not isinstance(raw, dict):
            return None
        market_id = raw.get("market_id") or raw.get("marketId")
        if not market_id:
            logger.warning(f"Skipping position without market id: {raw}")
            return None
        return Position(
            market_id=str(market_id),
            token_id=str(raw.get("token_id") or raw.get("tokenId") or ""),
            balance=_to_decimal(raw.get("balance")) or ZERO,
            price=_to_decimal(raw.get("price")) or ZERO,
            value=_to_decimal(raw.get("value")) or ZERO,
        )

    async def _fetch_market_prices(self, market_ids: list[str]) -> dict[str, Decimal]:
        data = await self._call(lambda: self.api.get_markets(market_ids))
        prices: dict[str, Decimal] = {}

        for market in _list_field(data, "markets"):
            if not isinstance(market, dict):
                continue
            market_id = market.get("id") or market.get("market_id")
            if not market_id:
                continue
            price = _to_decimal(market.get("price"))
            if price is None:
                price = _to_decimal(market.get("last_price"))
            prices[str(market_id)] = price or ZERO

        missing = [m for m in market_ids if m not in prices]
        if missing:
            logger.warning(f"No price for markets {missing}, valuing at 0")
        return prices

    async def get_first_trade_date(self, wallet: str) -> Optional[datetime]:
        """
        Earliest trade time for the wallet, or None when unknown.
        Never raises: an unknown date only means the account is not flagged as old.
        """
        try:
            data = await self._call(lambda: self.api.get_trades(wallet, limit=1, order="asc"))
            trades = _list_field(data, "trades")
            if not trades:
                return None
            first = trades[0]
            if not isinstance(first, dict):
                return None
            return parse_trade_time(first.get("timestamp") or first.get("created_at"))
        except Exception as e:
            logger.error(f"Error fetching first trade for {wallet}: {e}")
            return None


def estimate_portfolio_from_deposits(deposit_sum: Decimal) -> Decimal:
    """
    Fallback when the valuation API is unavailable: assume zero PnL.
    """
    logger.warning("Using fallback portfolio estimation from deposits")
    return deposit_sum
