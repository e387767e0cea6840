"""
JSON-RPC chain client over httpx.

Read-only calls go through the retry strategy; sendRawTransaction is issued
exactly once per call so the broadcaster sees the node's verdict unchanged.
"""

import itertools
import logging
from typing import Any, List, Optional

import httpx

from ..config import settings
from ..core.execution.models import Receipt
from ..core.recovery.errors import RpcError, TransientNetworkError
from ..core.recovery.strategies import ExponentialBackoffStrategy, RetryStrategy
from .base import ChainClient


logger = logging.getLogger(__name__)


class JsonRpcChainClient(ChainClient):
    """Ethereum-style JSON-RPC client"""

    name = "jsonrpc"

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        retry: Optional[RetryStrategy] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url or settings.rpc_url
        self.timeout_s = timeout_s or settings.rpc_timeout_seconds
        self._retry = retry or ExponentialBackoffStrategy(max_attempts=settings.rpc_max_attempts)
        self._client = client or httpx.AsyncClient(timeout=self.timeout_s)
        self._ids = itertools.count(1)

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make a single RPC call."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        try:
            response = await self._client.post(
                self.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method}: {e}") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code >= 500 or e.response.status_code == 429:
                raise TransientNetworkError(f"{method}: HTTP {e.response.status_code}") from e
            raise RpcError(f"{method}: HTTP {e.response.status_code}", method=method) from e

        result = response.json()
        if "error" in result and result["error"]:
            error = result["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise RpcError(message, code=code, method=method)

        return result.get("result")

    async def _read(self, method: str, params: List[Any]) -> Any:
        return await self._retry.execute(
            lambda: self._rpc_call(method, params),
            context={"operation": method},
        )

    async def get_chain_id(self) -> int:
        return int(await self._read("eth_chainId", []), 16)

    async def get_pending_nonce(self, address: str) -> int:
        return int(await self._read("eth_getTransactionCount", [address, "pending"]), 16)

    async def suggest_gas_price(self) -> int:
        return int(await self._read("eth_gasPrice", []), 16)

    async def get_balance(self, address: str) -> int:
        return int(await self._read("eth_getBalance", [address, "latest"]), 16)

    async def send_raw_transaction(self, raw: str) -> str:
        tx_hash = await self._rpc_call("eth_sendRawTransaction", [raw])
        logger.debug(f"Transaction submitted: {tx_hash}")
        return tx_hash

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        receipt = await self._rpc_call("eth_getTransactionReceipt", [tx_hash])
        if not receipt or receipt.get("blockNumber") is None:
            return None
        return Receipt.from_rpc(receipt)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
