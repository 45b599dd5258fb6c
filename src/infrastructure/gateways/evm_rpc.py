import itertools
import logging
from typing import Optional

import httpx

from src.core.errors import TransientTransportError, ValidationError
from src.core.interfaces.datasource import BlockTag, ILedger

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30.0

# JSON-RPC error codes that mean the request itself is wrong
_INVALID_REQUEST_CODES = {-32600, -32602}


def _to_hex_block(tag: BlockTag) -> str:
    if isinstance(tag, int):
        if tag < 0:
            raise ValidationError(f"Invalid block number: {tag}")
        return hex(tag)
    if tag in ("latest", "earliest", "pending", "safe", "finalized"):
        return tag
    raise ValidationError(f"Invalid block tag: {tag}")


def _from_hex(value) -> int:
    return value if isinstance(value, int) else int(value, 16)


class EvmRpcClient(ILedger):
    """
    ILedger over Ethereum JSON-RPC (eth_getLogs, eth_getBlockByNumber, eth_blockNumber).

    No retries here: callers wrap ledger reads in RetryExecutor. Transport and
    node-side failures surface as TransientTransportError, malformed requests
    as ValidationError.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def _call(self, method: str, params: list):
        client = await self._get_client()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        try:
            response = await client.post(self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            raise TransientTransportError(f"{method} timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 or status >= 500:
                raise TransientTransportError(f"{method} HTTP {status}", status_code=status) from e
            raise ValidationError(f"{method} rejected with HTTP {status}") from e
        except httpx.HTTPError as e:
            raise TransientTransportError(f"{method} transport error: {e}") from e
        except ValueError as e:
            raise TransientTransportError(f"{method} returned invalid JSON: {e}") from e

        error = body.get("error")
        if error:
            code = error.get("code")
            message = f"{method} RPC error {code}: {error.get('message')}"
            if code in _INVALID_REQUEST_CODES:
                raise ValidationError(message)
            raise TransientTransportError(message)

        return body.get("result")

    async def get_logs(self, log_filter: dict) -> list[dict]:
        params = {
            "address": log_filter["address"],
            "topics": log_filter.get("topics", []),
            "fromBlock": _to_hex_block(log_filter.get("fromBlock", 0)),
            "toBlock": _to_hex_block(log_filter.get("toBlock", "latest")),
        }
        result = await self._call("eth_getLogs", [params]) or []

        logs = []
        for raw in result:
            if raw.get("removed"):
                # reorged out of the canonical chain
                continue
            logs.append({
                "topics": raw.get("topics", []),
                "data": raw.get("data", "0x0"),
                "transactionHash": raw.get("transactionHash"),
                "blockNumber": _from_hex(raw.get("blockNumber", "0x0")),
            })
        return logs

    async def get_block(self, number: int) -> Optional[dict]:
        block = await self._call("eth_getBlockByNumber", [_to_hex_block(number), False])
        if not block:
            return None
        return {
            "number": _from_hex(block.get("number", hex(number))),
            "timestamp": _from_hex(block["timestamp"]),
        }

    async def get_block_number(self) -> int:
        return _from_hex(await self._call("eth_blockNumber", []))

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
