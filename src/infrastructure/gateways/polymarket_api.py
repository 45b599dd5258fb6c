import logging
from typing import Optional

import httpx

from src.core.errors import TransientTransportError, ValidationError
from src.core.interfaces.datasource import IValuationApi

logger = logging.getLogger(__name__)

POLYMARKET_API_URL = "https://clob.polymarket.com"
REQUEST_TIMEOUT = 30.0


class PolymarketApiClient(IValuationApi):
    """
    Implementation of IValuationApi for the Polymarket HTTP API.

    404 is reported as None (absence). 429, 5xx, timeouts and connection
    failures raise TransientTransportError; other 4xx raise ValidationError.
    """

    def __init__(
        self,
        api_url: str = POLYMARKET_API_URL,
        api_key: Optional[str] = None,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def _get(self, path: str, params: Optional[dict] = None) -> Optional[dict]:
        client = await self._get_client()
        try:
            response = await client.get(path, params=params, timeout=self.timeout)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()
        except httpx.TimeoutException as e:
            raise TransientTransportError(f"GET {path} timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 or status >= 500:
                raise TransientTransportError(f"GET {path} HTTP {status}", status_code=status) from e
            raise ValidationError(f"GET {path} rejected with HTTP {status}") from e
        except httpx.HTTPError as e:
            raise TransientTransportError(f"GET {path} transport error: {e}") from e
        except ValueError as e:
            raise TransientTransportError(f"GET {path} returned invalid JSON: {e}") from e

    async def get_portfolio(self, wallet: str) -> Optional[dict]:
        return await self._get(f"/portfolio/{wallet}")

    async def get_positions(self, wallet: str) -> Optional[dict]:
        return await self._get("/positions", params={"wallet": wallet})

    async def get_markets(self, market_ids: list[str]) -> Optional[dict]:
        if not market_ids:
            return {"markets": []}
        return await self._get("/markets", params={"ids": ",".join(market_ids)})

    async def get_trades(self, wallet: str, limit: int = 1, order: str = "asc") -> Optional[dict]:
        return await self._get("/trades", params={"wallet": wallet, "limit": limit, "order": order})

    async def health_check(self) -> bool:
        try:
            client = await self._get_client()
            response = await client.get("/health", timeout=self.timeout)
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning(f"Valuation API health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
