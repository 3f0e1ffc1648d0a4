"""Settlement domain models.

PaymentIntent, FeeSplit, TransactionPlan and SettlementResult are frozen
dataclasses: every attempt builds its own instances and nothing is repaired
in place.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .chains import ChainFamily, family_of
from .exceptions import SplitpayValidationError
from .tokens import TokenKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SettlementStatus(str, Enum):
    """Outcome of a submitted plan."""
    CONFIRMED = "confirmed"
    # Ambiguous: the transaction may still land; never reported as paid
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class OperationKind(str, Enum):
    """Kinds of unsigned chain operations a plan can contain."""
    CREATE_ACCOUNT = "create_account"
    TOKEN_TRANSFER = "token_transfer"
    NATIVE_TRANSFER = "native_transfer"
    APPROVE = "approve"
    CONTRACT_CALL = "contract_call"


@dataclass(frozen=True)
class EvmCall:
    """An unsigned EVM call: target, calldata and attached value."""
    to: str
    data: bytes = b""
    value: int = 0

    def to_tx_dict(self, from_address: str) -> Dict[str, Any]:
        """Shape accepted by wallet `eth_sendTransaction` style signers."""
        return {
            "from": from_address,
            "to": self.to,
            "value": hex(self.value),
            "data": "0x" + self.data.hex() if self.data else "0x",
        }


@dataclass(frozen=True)
class PaymentIntent:
    """What is being paid, to whom, on which chain.

    `merchant_address` may be missing when the merchant never registered an
    address for the chain; the flow controller fails such intents before
    building anything.
    """
    id: str
    chain: str
    token_kind: TokenKind
    token_symbol: str
    total_amount: Decimal
    merchant_address: Optional[str]
    platform_address: str
    decimals: int
    token_identifier: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        try:
            amount = Decimal(str(self.total_amount))
        except (InvalidOperation, ValueError) as exc:
            raise SplitpayValidationError(
                f"Invalid amount: {self.total_amount!r}", field="total_amount"
            ) from exc
        if not amount.is_finite() or amount <= 0:
            raise SplitpayValidationError(
                f"Amount must be positive, got {self.total_amount}", field="total_amount"
            )
        object.__setattr__(self, "total_amount", amount)

        if self.decimals < 0:
            raise SplitpayValidationError("decimals must be >= 0", field="decimals")
        if self.token_kind == TokenKind.FUNGIBLE and not self.token_identifier:
            raise SplitpayValidationError(
                f"Fungible token {self.token_symbol} needs a contract address or mint",
                field="token_identifier",
            )
        if not self.platform_address:
            raise SplitpayValidationError("platform address is required", field="platform_address")
        # Unknown chains fail here rather than at plan time
        family_of(self.chain)

    @property
    def family(self) -> ChainFamily:
        return family_of(self.chain)

    @property
    def is_native(self) -> bool:
        return self.token_kind == TokenKind.NATIVE

    @property
    def has_merchant_address(self) -> bool:
        return bool(self.merchant_address and self.merchant_address.strip())


@dataclass(frozen=True)
class FeeSplit:
    """Platform fee carved out of a total, in integer minor units."""
    fee_percent: Decimal
    fee_amount_minor: int
    merchant_amount_minor: int
    total_minor: int
    decimals: int

    def __post_init__(self) -> None:
        if self.fee_amount_minor < 0 or self.merchant_amount_minor < 0:
            raise SplitpayValidationError("split amounts must be non-negative")
        if self.fee_amount_minor + self.merchant_amount_minor != self.total_minor:
            raise SplitpayValidationError(
                "fee and merchant amounts must add up to the total",
                details={
                    "fee": self.fee_amount_minor,
                    "merchant": self.merchant_amount_minor,
                    "total": self.total_minor,
                },
            )

    @property
    def display_percent(self) -> str:
        """"0.5%" or "1%"."""
        return f"{(self.fee_percent * 100).normalize():f}%"

    @property
    def fee_amount(self) -> Decimal:
        return Decimal(self.fee_amount_minor).scaleb(-self.decimals)

    @property
    def merchant_amount(self) -> Decimal:
        return Decimal(self.merchant_amount_minor).scaleb(-self.decimals)


@dataclass(frozen=True)
class PlannedOperation:
    """One unsigned operation inside a plan.

    `payload` is a solders Instruction for account-instruction chains and
    an EvmCall for contract-call chains.
    """
    kind: OperationKind
    description: str
    payload: Any
    amount_minor: Optional[int] = None
    recipient: Optional[str] = None


@dataclass(frozen=True)
class TransactionPlan:
    """Ordered, unsigned operations implementing one settlement."""
    intent_id: str
    chain: str
    family: ChainFamily
    operations: Tuple[PlannedOperation, ...]
    fee_payer: str
    required_approvals: Tuple[str, ...] = ()
    fee_split: Optional[FeeSplit] = None
    plan_id: str = field(default_factory=lambda: f"plan_{uuid.uuid4().hex[:16]}")
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "operations", tuple(self.operations))
        object.__setattr__(self, "required_approvals", tuple(self.required_approvals))
        if not self.operations:
            raise SplitpayValidationError("a plan needs at least one operation")

    @property
    def kinds(self) -> Tuple[OperationKind, ...]:
        return tuple(op.kind for op in self.operations)

    def count(self, kind: OperationKind) -> int:
        return sum(1 for op in self.operations if op.kind == kind)


@dataclass(frozen=True)
class SettlementResult:
    """What the chain said about a submitted plan."""
    status: SettlementStatus
    chain: str
    transaction_id: Optional[str]
    transaction_ids: Tuple[str, ...] = ()
    confirmed_at_logical_time: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None
    completed_at: datetime = field(default_factory=_utcnow)

    @property
    def is_confirmed(self) -> bool:
        return self.status == SettlementStatus.CONFIRMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "chain": self.chain,
            "transaction_id": self.transaction_id,
            "transaction_ids": list(self.transaction_ids),
            "confirmed_at_logical_time": self.confirmed_at_logical_time,
            "attempts": self.attempts,
            "error": self.error,
            "completed_at": self.completed_at.isoformat(),
        }
