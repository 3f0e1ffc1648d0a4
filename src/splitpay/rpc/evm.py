"""JSON-RPC client for EVM chains."""
from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx

from ..exceptions import RPCUnavailableError

logger = logging.getLogger(__name__)


class EvmRPCClient:
    """Read-only JSON-RPC client for blockchain interaction.

    Writes never go through here: the external wallet broadcasts.
    """

    def __init__(
        self,
        rpc_url: str,
        chain: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._rpc_url = rpc_url
        self._chain = chain
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    @property
    def chain(self) -> str:
        return self._chain

    async def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make JSON-RPC call."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            response = await self._http_client.post(
                self._rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RPCUnavailableError(
                f"RPC {method} failed on {self._chain}: {e}",
                chain=self._chain,
                method=method,
            ) from e

        if "error" in result:
            raise RPCUnavailableError(
                f"RPC error on {self._chain}: {result['error']}",
                chain=self._chain,
                method=method,
                rpc_error=result["error"],
            )

        return result.get("result")

    async def call(self, to: str, data: bytes, block: str = "latest") -> bytes:
        """eth_call returning raw return data."""
        result = await self._call(
            "eth_call",
            [{"to": to, "data": "0x" + data.hex()}, block],
        )
        if not result or result == "0x":
            return b""
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)

    async def get_chain_id(self) -> int:
        result = await self._call("eth_chainId")
        return int(result, 16)

    async def close(self) -> None:
        """Close HTTP client if this instance created it."""
        if self._owns_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> "EvmRPCClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
