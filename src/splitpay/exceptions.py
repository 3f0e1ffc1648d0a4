"""Unified exception hierarchy for splitpay.

All splitpay exceptions inherit from SplitpayException, enabling:
- Consistent handling across the fee, adapter, submission and reporting layers
- Structured error payloads with machine-readable codes
- A per-error category that tells the caller whether to retry the whole
  flow, retry only the reporting step, or stop

Usage:
    from splitpay.exceptions import SettlementError, ErrorCategory

    try:
        plan = await build_plan(intent, split, payer)
    except SettlementError as e:
        if e.retryable:
            ...

Settlement errors carry:
- category: one of ErrorCategory
- step: the flow step that failed (e.g. "build_plan", "submit", "report")
- chain: registry key of the chain involved
- retryable: whether a fresh attempt may succeed
- on_chain_state_changed: whether funds may already have moved
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional, Sequence

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Failure taxonomy for a payment attempt."""
    CONFIGURATION = "configuration"
    CHAIN_STATE = "chain_state"
    USER_REJECTION = "user_rejection"
    CONFIRMATION_AMBIGUOUS = "confirmation_ambiguous"
    REPORTING = "reporting"
    INTERNAL = "internal"


class SplitpayException(Exception):
    """Base exception for all splitpay errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
        details: Optional additional context
    """

    error_code: str = "SPLITPAY_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a serialisable payload."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class SplitpayValidationError(SplitpayException):
    """Invalid input data or parameters."""

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


# =============================================================================
# Settlement errors
# =============================================================================

class SettlementError(SplitpayException):
    """Base class for failures inside a payment attempt."""

    error_code = "SETTLEMENT_ERROR"
    category: ErrorCategory = ErrorCategory.INTERNAL
    retryable: bool = False
    on_chain_state_changed: bool = False

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        chain: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if step:
            details["step"] = step
        if chain:
            details["chain"] = chain
        super().__init__(message, details=details)
        self.step = step
        self.chain = chain
        self.transaction_ids: tuple[str, ...] = ()

    def with_transactions(self, transaction_ids: Sequence[str]) -> "SettlementError":
        """Record transactions of this attempt that were already mined."""
        if transaction_ids:
            self.transaction_ids = tuple(transaction_ids)
            self.details["transaction_ids"] = list(self.transaction_ids)
            self.on_chain_state_changed = True
            # Mined legs must not be sent again
            self.retryable = False
        return self

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["category"] = self.category.value
        result["retryable"] = self.retryable
        result["on_chain_state_changed"] = self.on_chain_state_changed
        return result


# -- Configuration (not retryable) --------------------------------------------

class ConfigurationError(SettlementError):
    """Static misconfiguration; a plan must not be built."""

    error_code = "CONFIGURATION_ERROR"
    category = ErrorCategory.CONFIGURATION


class MissingMerchantAddressError(ConfigurationError):
    """Merchant has no address registered for the selected chain."""

    error_code = "MERCHANT_ADDRESS_MISSING"

    def __init__(
        self,
        intent_id: str,
        chain: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["intent_id"] = intent_id
        super().__init__(
            f"Merchant has no {chain} address for intent '{intent_id}'",
            step="resolve_merchant",
            chain=chain,
            details=details,
        )


class UnsupportedChainError(ConfigurationError):
    """Chain key is not in the registry."""

    error_code = "UNSUPPORTED_CHAIN"

    def __init__(self, chain: str, supported: Optional[list[str]] = None) -> None:
        details: dict[str, Any] = {}
        if supported:
            details["supported"] = supported
        super().__init__(f"Unknown chain: {chain}", chain=chain, details=details)


class UnsupportedTokenError(ConfigurationError):
    """Token is not available on the selected chain."""

    error_code = "UNSUPPORTED_TOKEN"

    def __init__(self, token: str, chain: str) -> None:
        super().__init__(
            f"Token {token} not available on {chain}",
            chain=chain,
            details={"token": token},
        )


class SettlementContractMissingError(ConfigurationError):
    """No settlement contract is deployed/configured for the chain."""

    error_code = "SETTLEMENT_CONTRACT_MISSING"

    def __init__(self, chain: str) -> None:
        super().__init__(
            f"No settlement contract configured for {chain}",
            step="build_plan",
            chain=chain,
        )


class DocumentAlreadyPaidError(ConfigurationError):
    """The payable document is already marked paid."""

    error_code = "DOCUMENT_ALREADY_PAID"

    def __init__(self, document_id: str) -> None:
        super().__init__(
            f"Document '{document_id}' has already been paid",
            step="resolve_document",
            details={"document_id": document_id},
        )


class DocumentNotFoundError(ConfigurationError):
    """The document API does not know the requested id."""

    error_code = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str) -> None:
        super().__init__(
            f"Document '{document_id}' not found",
            step="resolve_document",
            details={"document_id": document_id},
        )


# -- Chain state (retryable after remediation) ---------------------------------

class ChainStateError(SettlementError):
    """Chain state prevents progress right now."""

    error_code = "CHAIN_STATE_ERROR"
    category = ErrorCategory.CHAIN_STATE
    retryable = True


class RPCUnavailableError(ChainStateError):
    """RPC node unreachable or returned a JSON-RPC error."""

    error_code = "RPC_UNAVAILABLE"

    def __init__(
        self,
        message: str,
        chain: Optional[str] = None,
        method: Optional[str] = None,
        rpc_error: Optional[Any] = None,
        step: Optional[str] = None,
    ) -> None:
        details: dict[str, Any] = {}
        if method:
            details["method"] = method
        if rpc_error is not None:
            details["rpc_error"] = rpc_error
        super().__init__(message, step=step, chain=chain, details=details)
        self.method = method



# -- Signer ---------------------------------------------------------------------

class UserRejectedError(SettlementError):
    """The user declined the signature request."""

    error_code = "USER_REJECTED"
    category = ErrorCategory.USER_REJECTION


class SignerError(SettlementError):
    """Wallet failed, was busy, or was cancelled externally."""

    error_code = "SIGNER_ERROR"
    category = ErrorCategory.USER_REJECTION


class TransactionFailedError(SettlementError):
    """A submitted transaction reverted on-chain."""

    error_code = "TRANSACTION_FAILED"
    category = ErrorCategory.CHAIN_STATE
    on_chain_state_changed = True

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        chain: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        details: dict[str, Any] = {}
        if tx_hash:
            details["tx_hash"] = tx_hash
        if reason:
            details["reason"] = reason
        super().__init__(message, step="submit", chain=chain, details=details)
        self.tx_hash = tx_hash


# -- Reporting --------------------------------------------------------------------

class ReportingError(SettlementError):
    """Backend could not record a settlement that already landed on-chain."""

    error_code = "REPORTING_ERROR"
    category = ErrorCategory.REPORTING
    retryable = True
    on_chain_state_changed = True

    def __init__(
        self,
        message: str,
        intent_id: str,
        transaction_id: str,
        status_code: Optional[int] = None,
        chain: Optional[str] = None,
    ) -> None:
        details: dict[str, Any] = {
            "intent_id": intent_id,
            "transaction_id": transaction_id,
        }
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, step="report", chain=chain, details=details)
        self.intent_id = intent_id
        self.transaction_id = transaction_id
        self.status_code = status_code


# -- Flow -------------------------------------------------------------------------

class InvalidStateTransition(SplitpayException):
    """Flow controller asked to move along an edge it does not have."""

    error_code = "INVALID_STATE_TRANSITION"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot transition from {current} to {target}",
            details={"from": current, "to": target},
        )


class AttemptInProgressError(SplitpayException):
    """Another attempt for the same intent has not reached a terminal state."""

    error_code = "ATTEMPT_IN_PROGRESS"

    def __init__(self, intent_id: str) -> None:
        super().__init__(
            f"A payment attempt for intent '{intent_id}' is already running",
            details={"intent_id": intent_id},
        )


def categorize(error: BaseException) -> ErrorCategory:
    """Map any exception raised inside an attempt to its category."""
    if isinstance(error, SettlementError):
        return error.category
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "SplitpayException",
    "SplitpayValidationError",
    "SettlementError",
    "ConfigurationError",
    "MissingMerchantAddressError",
    "UnsupportedChainError",
    "UnsupportedTokenError",
    "SettlementContractMissingError",
    "DocumentAlreadyPaidError",
    "DocumentNotFoundError",
    "ChainStateError",
    "RPCUnavailableError",
    "UserRejectedError",
    "SignerError",
    "TransactionFailedError",
    "ReportingError",
    "InvalidStateTransition",
    "AttemptInProgressError",
    "categorize",
]
