"""Plan builder for contract-call chains (Base, Base Sepolia, Celo)."""
from __future__ import annotations

import logging
from typing import List, Optional

from eth_abi import decode, encode
from web3 import Web3

from ..chains import ChainFamily
from ..config import ZERO_ADDRESS
from ..exceptions import (
    ConfigurationError,
    MissingMerchantAddressError,
    RPCUnavailableError,
    SettlementContractMissingError,
    SplitpayValidationError,
)
from ..fees import to_minor_units
from ..models import (
    EvmCall,
    FeeSplit,
    OperationKind,
    PaymentIntent,
    PlannedOperation,
    TransactionPlan,
)
from ..rpc.evm import EvmRPCClient

logger = logging.getLogger(__name__)

# Function selectors
_ALLOWANCE_SELECTOR = Web3.keccak(text="allowance(address,address)")[:4]
_APPROVE_SELECTOR = Web3.keccak(text="approve(address,uint256)")[:4]
_PAY_SELECTOR = Web3.keccak(text="pay(address,uint256,address,string)")[:4]


def checksum(address: str, field: str = "address") -> str:
    try:
        return Web3.to_checksum_address(address)
    except (ValueError, TypeError) as e:
        raise SplitpayValidationError(
            f"Invalid EVM address for {field}: {address!r}", field=field
        ) from e


def encode_allowance(owner: str, spender: str) -> bytes:
    """Encode ERC-20 allowance(owner, spender)."""
    return _ALLOWANCE_SELECTOR + encode(
        ["address", "address"],
        [Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)],
    )


def encode_approve(spender: str, amount: int) -> bytes:
    """Encode ERC-20 approve(spender, amount)."""
    return _APPROVE_SELECTOR + encode(
        ["address", "uint256"],
        [Web3.to_checksum_address(spender), amount],
    )


def encode_pay(token: str, amount: int, recipient: str, intent_id: str) -> bytes:
    """Encode settlement contract pay(token, amount, recipient, intentId)."""
    return _PAY_SELECTOR + encode(
        ["address", "uint256", "address", "string"],
        [
            Web3.to_checksum_address(token),
            amount,
            Web3.to_checksum_address(recipient),
            intent_id,
        ],
    )


class ContractCallAdapter:
    """Builds EVM settlement plans.

    Fungible tokens are paid through the settlement contract, which takes the
    platform fee on-chain; an approval is prepended when the current
    allowance does not cover the total. Native coins are split client-side
    into two value transfers.
    """

    family = ChainFamily.CONTRACT_CALL

    def __init__(self, rpc: EvmRPCClient, settlement_contract: Optional[str] = None):
        self._rpc = rpc
        self._settlement_contract = settlement_contract

    async def close(self) -> None:
        await self._rpc.close()

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        """Current ERC-20 allowance of `spender` over `owner`'s tokens."""
        data = await self._rpc.call(token, encode_allowance(owner, spender))
        if len(data) < 32:
            raise RPCUnavailableError(
                f"Empty allowance response from token {token}",
                chain=self._rpc.chain,
                method="eth_call",
                step="build_plan",
            )
        (allowance,) = decode(["uint256"], data[:32])
        return allowance

    async def build_plan(
        self,
        intent: PaymentIntent,
        split: Optional[FeeSplit],
        payer: str,
    ) -> TransactionPlan:
        if not intent.has_merchant_address:
            raise MissingMerchantAddressError(intent.id, intent.chain)

        payer_address = checksum(payer, "payer")
        merchant = checksum(intent.merchant_address, "merchant_address")

        if intent.is_native:
            if split is None:
                raise SplitpayValidationError(
                    "Native settlements need a fee split", field="split"
                )
            platform = checksum(intent.platform_address, "platform_address")
            if platform.lower() == ZERO_ADDRESS:
                raise ConfigurationError(
                    "Platform fee recipient is the zero address",
                    step="build_plan",
                    chain=intent.chain,
                )
            plan = TransactionPlan(
                intent_id=intent.id,
                chain=intent.chain,
                family=self.family,
                operations=self._native_operations(split, merchant, platform),
                fee_payer=payer_address,
                fee_split=split,
            )
        else:
            operations, approvals = await self._contract_operations(
                intent, payer_address, merchant
            )
            plan = TransactionPlan(
                intent_id=intent.id,
                chain=intent.chain,
                family=self.family,
                operations=operations,
                fee_payer=payer_address,
                required_approvals=approvals,
                fee_split=None,
            )

        logger.info(
            "Built %s plan %s for intent %s: %s",
            intent.chain, plan.plan_id, intent.id,
            ", ".join(kind.value for kind in plan.kinds),
        )
        return plan

    def _native_operations(
        self, split: FeeSplit, merchant: str, platform: str
    ) -> List[PlannedOperation]:
        operations = [
            PlannedOperation(
                kind=OperationKind.NATIVE_TRANSFER,
                description="merchant share",
                payload=EvmCall(to=merchant, value=split.merchant_amount_minor),
                amount_minor=split.merchant_amount_minor,
                recipient=merchant,
            )
        ]
        if split.fee_amount_minor > 0:
            operations.append(PlannedOperation(
                kind=OperationKind.NATIVE_TRANSFER,
                description="platform fee",
                payload=EvmCall(to=platform, value=split.fee_amount_minor),
                amount_minor=split.fee_amount_minor,
                recipient=platform,
            ))
        return operations

    async def _contract_operations(
        self, intent: PaymentIntent, payer: str, merchant: str
    ) -> tuple[List[PlannedOperation], tuple[str, ...]]:
        if not self._settlement_contract:
            raise SettlementContractMissingError(intent.chain)
        contract = checksum(self._settlement_contract, "settlement_contract")
        token = checksum(intent.token_identifier, "token_identifier")
        total = to_minor_units(intent.total_amount, intent.decimals)

        allowance = await self.get_allowance(token, payer, contract)
        logger.debug(
            "Allowance of %s for %s on %s: %d (need %d)",
            contract, payer, token, allowance, total,
        )

        operations: List[PlannedOperation] = []
        approvals: tuple[str, ...] = ()
        if allowance < total:
            operations.append(PlannedOperation(
                kind=OperationKind.APPROVE,
                description=f"approve settlement contract for {intent.token_symbol}",
                payload=EvmCall(to=token, data=encode_approve(contract, total)),
                amount_minor=total,
                recipient=contract,
            ))
            approvals = (f"approve {total} {intent.token_symbol} minor units to {contract}",)

        operations.append(PlannedOperation(
            kind=OperationKind.CONTRACT_CALL,
            description="settlement contract pay",
            payload=EvmCall(
                to=contract,
                data=encode_pay(token, total, merchant, intent.id),
            ),
            amount_minor=total,
            recipient=merchant,
        ))
        return operations, approvals
