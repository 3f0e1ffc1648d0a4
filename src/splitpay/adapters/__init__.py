"""Chain adapters: turn a payment intent into an unsigned transaction plan.

One adapter per chain family. The family of the intent's chain picks the
adapter; the two cases share only the `ChainAdapter` protocol.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Protocol, runtime_checkable

import httpx

from ..chains import ChainFamily, resolve_rpc_url
from ..config import SplitpaySettings, load_settings
from ..exceptions import UnsupportedChainError
from ..models import FeeSplit, PaymentIntent, TransactionPlan
from ..rpc.evm import EvmRPCClient
from ..rpc.solana import SolanaClient
from .account_instruction import AccountInstructionAdapter, derive_ata
from .contract_call import ContractCallAdapter, encode_approve, encode_pay

logger = logging.getLogger(__name__)


@runtime_checkable
class ChainAdapter(Protocol):
    """Shared contract of the chain-family adapters."""

    family: ChainFamily

    async def build_plan(
        self,
        intent: PaymentIntent,
        split: Optional[FeeSplit],
        payer: str,
    ) -> TransactionPlan:
        ...

    async def close(self) -> None:
        ...


def _account_instruction_adapter(
    chain: str, settings: SplitpaySettings, http_client: Optional[httpx.AsyncClient]
) -> ChainAdapter:
    rpc = SolanaClient(
        resolve_rpc_url(chain, settings.rpc_urls),
        chain=chain,
        timeout=settings.http_timeout_seconds,
        http_client=http_client,
    )
    return AccountInstructionAdapter(rpc)


def _contract_call_adapter(
    chain: str, settings: SplitpaySettings, http_client: Optional[httpx.AsyncClient]
) -> ChainAdapter:
    rpc = EvmRPCClient(
        resolve_rpc_url(chain, settings.rpc_urls),
        chain=chain,
        timeout=settings.http_timeout_seconds,
        http_client=http_client,
    )
    return ContractCallAdapter(rpc, settlement_contract=settings.settlement_contract_for(chain))


AdapterFactory = Callable[
    [str, SplitpaySettings, Optional[httpx.AsyncClient]], ChainAdapter
]

ADAPTER_FACTORIES: Dict[ChainFamily, AdapterFactory] = {
    ChainFamily.ACCOUNT_INSTRUCTION: _account_instruction_adapter,
    ChainFamily.CONTRACT_CALL: _contract_call_adapter,
}


def select_adapter(
    intent: PaymentIntent,
    settings: Optional[SplitpaySettings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ChainAdapter:
    """Adapter for the intent's chain family, wired to that chain's RPC."""
    settings = settings or load_settings()
    factory = ADAPTER_FACTORIES.get(intent.family)
    if factory is None:
        raise UnsupportedChainError(intent.chain)
    logger.debug("Selected %s adapter for %s", intent.family.value, intent.chain)
    return factory(intent.chain, settings, http_client)


async def build_plan(
    intent: PaymentIntent,
    split: Optional[FeeSplit],
    payer: str,
    adapter: Optional[ChainAdapter] = None,
) -> TransactionPlan:
    """Build a plan with the given adapter, or the default one for the chain."""
    adapter = adapter or select_adapter(intent)
    if adapter.family != intent.family:
        raise UnsupportedChainError(
            intent.chain, supported=[adapter.family.value]
        )
    return await adapter.build_plan(intent, split, payer)


__all__ = [
    "ChainAdapter",
    "AccountInstructionAdapter",
    "ContractCallAdapter",
    "ADAPTER_FACTORIES",
    "select_adapter",
    "build_plan",
    "derive_ata",
    "encode_approve",
    "encode_pay",
]
