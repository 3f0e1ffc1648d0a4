"""Solana RPC client wrapper."""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..exceptions import RPCUnavailableError

logger = logging.getLogger(__name__)

FINAL_COMMITMENTS = ("confirmed", "finalized")


class SolanaClient:
    """Async Solana JSON-RPC client.

    Uses raw httpx instead of solana-py to minimize dependencies.
    All Solana RPC methods are called via JSON-RPC 2.0.
    """

    def __init__(
        self,
        rpc_url: str,
        chain: str = "solana",
        commitment: str = "confirmed",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.chain = chain
        self.commitment = commitment
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    async def _rpc(self, method: str, params: list[Any] | None = None) -> Any:
        """Make a JSON-RPC call to Solana."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }
        try:
            resp = await self._client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RPCUnavailableError(
                f"Solana RPC {method} failed: {e}",
                chain=self.chain,
                method=method,
            ) from e
        if "error" in data:
            error = data["error"]
            raise RPCUnavailableError(
                f"Solana RPC {method} error: {error.get('message', 'Unknown RPC error')}",
                chain=self.chain,
                method=method,
                rpc_error=error,
            )
        logger.debug("Solana RPC %s ok (id=%d)", method, self._request_id)
        return data.get("result")

    async def get_account_info(self, pubkey: str) -> Optional[dict[str, Any]]:
        """Account data, or None when the account does not exist."""
        result = await self._rpc(
            "getAccountInfo",
            [pubkey, {"encoding": "base64", "commitment": self.commitment}],
        )
        return (result or {}).get("value")

    async def account_exists(self, pubkey: str) -> bool:
        return await self.get_account_info(pubkey) is not None

    async def get_latest_blockhash(self) -> str:
        """Get latest blockhash for transaction building."""
        result = await self._rpc(
            "getLatestBlockhash", [{"commitment": self.commitment}]
        )
        return result["value"]["blockhash"]

    async def get_signature_status(self, signature: str) -> Optional[dict[str, Any]]:
        """Status entry for one signature, or None if the node has not seen it."""
        result = await self._rpc(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
        )
        statuses = (result or {}).get("value") or []
        if not statuses:
            return None
        return statuses[0]

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SolanaClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
