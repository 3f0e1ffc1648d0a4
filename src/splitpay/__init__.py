"""splitpay: cross-chain payment settlement with a platform fee split.

Computes the fee split, builds unsigned transactions for Solana
(account-instruction) and EVM (contract-call) chains, drives an external
wallet through signing and confirmation, and records the result with the
backend of record.
"""
from .adapters import (
    AccountInstructionAdapter,
    ChainAdapter,
    ContractCallAdapter,
    build_plan,
    select_adapter,
)
from .chains import ChainConfig, ChainFamily, explorer_tx_url, get_chain_config
from .config import SplitpaySettings, load_settings
from .documents import Document, DocumentClient, intent_from_document
from .exceptions import (
    AttemptInProgressError,
    ErrorCategory,
    InvalidStateTransition,
    MissingMerchantAddressError,
    ReportingError,
    RPCUnavailableError,
    SettlementContractMissingError,
    SettlementError,
    SignerError,
    SplitpayException,
    SplitpayValidationError,
    TransactionFailedError,
    UnsupportedChainError,
    UnsupportedTokenError,
    UserRejectedError,
)
from .fees import compute_fee_split, fee_display_text, fee_percent_for
from .flow import AttemptGuard, FlowOutcome, FlowState, PaymentFlowController
from .logging_config import LogContext, setup_logging
from .models import (
    EvmCall,
    FeeSplit,
    OperationKind,
    PaymentIntent,
    PlannedOperation,
    SettlementResult,
    SettlementStatus,
    TransactionPlan,
)
from .reconciliation import ReconciliationReporter, ReportAck
from .submission import SubmissionCoordinator
from .tokens import TokenKind, resolve_token

__version__ = "0.1.0"

__all__ = [
    # Fees
    "compute_fee_split",
    "fee_percent_for",
    "fee_display_text",
    # Models
    "PaymentIntent",
    "FeeSplit",
    "TransactionPlan",
    "PlannedOperation",
    "OperationKind",
    "EvmCall",
    "SettlementResult",
    "SettlementStatus",
    # Chains and tokens
    "ChainConfig",
    "ChainFamily",
    "get_chain_config",
    "explorer_tx_url",
    "TokenKind",
    "resolve_token",
    # Components
    "ChainAdapter",
    "AccountInstructionAdapter",
    "ContractCallAdapter",
    "select_adapter",
    "build_plan",
    "SubmissionCoordinator",
    "ReconciliationReporter",
    "ReportAck",
    "PaymentFlowController",
    "FlowState",
    "FlowOutcome",
    "AttemptGuard",
    # Documents
    "Document",
    "DocumentClient",
    "intent_from_document",
    # Config and logging
    "SplitpaySettings",
    "load_settings",
    "setup_logging",
    "LogContext",
    # Errors
    "SplitpayException",
    "SplitpayValidationError",
    "SettlementError",
    "ErrorCategory",
    "MissingMerchantAddressError",
    "UnsupportedChainError",
    "UnsupportedTokenError",
    "SettlementContractMissingError",
    "RPCUnavailableError",
    "UserRejectedError",
    "SignerError",
    "TransactionFailedError",
    "ReportingError",
    "InvalidStateTransition",
    "AttemptInProgressError",
]
