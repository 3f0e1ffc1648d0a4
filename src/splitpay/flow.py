"""Payment flow state machine.

One controller drives one attempt for one intent:

    idle -> building -> awaiting_signature -> submitted -> confirming
         -> confirmed | timed_out | failed
    confirmed -> reported

Only confirmed attempts are reported. A report that fails leaves the flow in
`confirmed` (funds moved, backend unaware) until `retry_report()` succeeds.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterator, List, Optional, Set, Tuple

import httpx

from .adapters import ChainAdapter, select_adapter
from .chains import ChainFamily, resolve_rpc_url
from .config import SplitpaySettings, load_settings
from .exceptions import (
    AttemptInProgressError,
    ErrorCategory,
    InvalidStateTransition,
    MissingMerchantAddressError,
    ReportingError,
    SettlementError,
    SplitpayException,
    TransactionFailedError,
    categorize,
)
from .fees import compute_fee_split
from .logging_config import LogContext, generate_attempt_id, log_payment
from .models import PaymentIntent, SettlementResult, SettlementStatus, TransactionPlan
from .reconciliation import ReconciliationReporter, ReportAck
from .rpc.solana import SolanaClient
from .submission import Signer, SubmissionCoordinator

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    AWAITING_SIGNATURE = "awaiting_signature"
    SUBMITTED = "submitted"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    REPORTED = "reported"


ALLOWED_TRANSITIONS: Dict[FlowState, Set[FlowState]] = {
    FlowState.IDLE: {FlowState.BUILDING, FlowState.FAILED},
    FlowState.BUILDING: {FlowState.AWAITING_SIGNATURE, FlowState.FAILED},
    FlowState.AWAITING_SIGNATURE: {FlowState.SUBMITTED, FlowState.FAILED},
    FlowState.SUBMITTED: {FlowState.CONFIRMING, FlowState.FAILED},
    FlowState.CONFIRMING: {FlowState.CONFIRMED, FlowState.TIMED_OUT, FlowState.FAILED},
    FlowState.CONFIRMED: {FlowState.REPORTED},
    FlowState.TIMED_OUT: set(),
    FlowState.FAILED: set(),
    FlowState.REPORTED: set(),
}

TERMINAL_STATES = frozenset({FlowState.TIMED_OUT, FlowState.FAILED, FlowState.REPORTED})


@dataclass(frozen=True)
class FlowTransition:
    from_state: FlowState
    to_state: FlowState
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    note: str = ""


@dataclass(frozen=True)
class FlowOutcome:
    """Where an attempt ended and what it produced."""
    intent_id: str
    attempt_id: str
    state: FlowState
    plan: Optional[TransactionPlan] = None
    result: Optional[SettlementResult] = None
    ack: Optional[ReportAck] = None
    error: Optional[Exception] = None
    error_category: Optional[ErrorCategory] = None

    @property
    def paid_unrecorded(self) -> bool:
        """Funds moved on-chain but the backend has no record yet."""
        return self.state == FlowState.CONFIRMED and self.ack is None

    @property
    def transaction_ids(self) -> Tuple[str, ...]:
        """Hashes or signatures this attempt put on-chain, in order."""
        return self.result.transaction_ids if self.result else ()


class AttemptGuard:
    """Rejects a second live attempt for the same intent."""

    def __init__(self) -> None:
        self._active: Set[str] = set()

    def acquire(self, intent_id: str) -> None:
        if intent_id in self._active:
            raise AttemptInProgressError(intent_id)
        self._active.add(intent_id)

    def release(self, intent_id: str) -> None:
        self._active.discard(intent_id)

    def is_active(self, intent_id: str) -> bool:
        return intent_id in self._active

    @contextmanager
    def hold(self, intent_id: str) -> Iterator[None]:
        self.acquire(intent_id)
        try:
            yield
        finally:
            self.release(intent_id)


_default_guard = AttemptGuard()


class PaymentFlowController:
    """Runs a single payment attempt end to end.

    Components not passed in are built from settings for the intent's chain
    and closed by `aclose()`.
    """

    def __init__(
        self,
        intent: PaymentIntent,
        adapter: Optional[ChainAdapter] = None,
        coordinator: Optional[SubmissionCoordinator] = None,
        reporter: Optional[ReconciliationReporter] = None,
        settings: Optional[SplitpaySettings] = None,
        guard: Optional[AttemptGuard] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.intent = intent
        self.attempt_id = generate_attempt_id()
        self._settings = settings or load_settings()
        self._http_client = http_client
        self._guard = guard or _default_guard
        self._adapter = adapter
        self._coordinator = coordinator
        self._reporter = reporter
        self._owned: List[object] = []

        self._state = FlowState.IDLE
        self.history: List[FlowTransition] = []
        self._started = False
        self._payer: Optional[str] = None
        self._plan: Optional[TransactionPlan] = None
        self._result: Optional[SettlementResult] = None
        self._ack: Optional[ReportAck] = None
        self._error: Optional[Exception] = None

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def outcome(self) -> FlowOutcome:
        category = None
        if self._error is not None:
            category = categorize(self._error)
        elif self._state == FlowState.TIMED_OUT:
            category = ErrorCategory.CONFIRMATION_AMBIGUOUS
        return FlowOutcome(
            intent_id=self.intent.id,
            attempt_id=self.attempt_id,
            state=self._state,
            plan=self._plan,
            result=self._result,
            ack=self._ack,
            error=self._error,
            error_category=category,
        )

    # -- components -------------------------------------------------------------

    def _get_adapter(self) -> ChainAdapter:
        if self._adapter is None:
            self._adapter = select_adapter(self.intent, self._settings, self._http_client)
            self._owned.append(self._adapter)
        return self._adapter

    def _get_coordinator(self) -> SubmissionCoordinator:
        if self._coordinator is None:
            solana_rpc = None
            if self.intent.family == ChainFamily.ACCOUNT_INSTRUCTION:
                solana_rpc = SolanaClient(
                    resolve_rpc_url(self.intent.chain, self._settings.rpc_urls),
                    chain=self.intent.chain,
                    timeout=self._settings.http_timeout_seconds,
                    http_client=self._http_client,
                )
                self._owned.append(solana_rpc)
            self._coordinator = SubmissionCoordinator.from_settings(self._settings, solana_rpc)
        return self._coordinator

    def _get_reporter(self) -> ReconciliationReporter:
        if self._reporter is None:
            self._reporter = ReconciliationReporter.from_settings(self._settings, self._http_client)
            self._owned.append(self._reporter)
        return self._reporter

    async def aclose(self) -> None:
        for component in reversed(self._owned):
            await component.close()  # type: ignore[attr-defined]
        self._owned.clear()

    async def __aenter__(self) -> "PaymentFlowController":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # -- state ------------------------------------------------------------------

    def _transition(self, target: FlowState, note: str = "") -> None:
        if target not in ALLOWED_TRANSITIONS[self._state]:
            raise InvalidStateTransition(self._state.value, target.value)
        self.history.append(FlowTransition(self._state, target, note=note))
        logger.info(
            "Intent %s: %s -> %s%s",
            self.intent.id, self._state.value, target.value, f" ({note})" if note else "",
        )
        self._state = target

    def _fail(self, error: Exception) -> FlowOutcome:
        self._error = error
        if isinstance(error, SettlementError) and error.transaction_ids and self._result is None:
            self._result = SettlementResult(
                status=SettlementStatus.FAILED,
                chain=self.intent.chain,
                transaction_id=error.transaction_ids[-1],
                transaction_ids=error.transaction_ids,
                attempts=len(error.transaction_ids),
                error=error.message,
            )
            logger.error(
                "Intent %s failed after %d transaction(s) reached the chain: %s",
                self.intent.id, len(error.transaction_ids), ", ".join(error.transaction_ids),
            )
        self._transition(FlowState.FAILED, note=type(error).__name__)
        return self.outcome

    def _on_submitted(self, transaction_id: str) -> None:
        self._transition(FlowState.SUBMITTED, note=transaction_id)
        self._transition(FlowState.CONFIRMING)

    # -- run --------------------------------------------------------------------

    async def run(self, signer: Signer) -> FlowOutcome:
        """Execute the attempt. Runs at most once per controller."""
        if self._started:
            raise InvalidStateTransition(self._state.value, FlowState.BUILDING.value)
        self._started = True

        with self._guard.hold(self.intent.id), LogContext(
            intent_id=self.intent.id, attempt_id=self.attempt_id, chain=self.intent.chain
        ):
            log_payment(
                logger, "info", "Payment attempt started",
                intent_id=self.intent.id,
                amount=str(self.intent.total_amount),
                chain=self.intent.chain,
                token=self.intent.token_symbol,
            )
            try:
                return await self._run(signer)
            except asyncio.CancelledError:
                logger.warning("Attempt %s cancelled in state %s", self.attempt_id, self._state.value)
                raise
            except SplitpayException as e:
                if FlowState.FAILED not in ALLOWED_TRANSITIONS[self._state]:
                    raise
                return self._fail(e)
            except Exception as e:
                if FlowState.FAILED in ALLOWED_TRANSITIONS[self._state]:
                    self._fail(e)
                raise

    async def _run(self, signer: Signer) -> FlowOutcome:
        intent = self.intent
        if not intent.has_merchant_address:
            return self._fail(MissingMerchantAddressError(intent.id, intent.chain))

        self._transition(FlowState.BUILDING)
        coordinator = self._get_coordinator()
        self._payer = await coordinator.connect(signer)
        split = compute_fee_split(intent.total_amount, intent.decimals)
        self._plan = await self._get_adapter().build_plan(intent, split, self._payer)

        self._transition(FlowState.AWAITING_SIGNATURE, note=self._plan.plan_id)
        result = await coordinator.submit(self._plan, signer, on_submitted=self._on_submitted)
        self._result = result

        # Coordinators that never signalled submission still land in confirming
        if self._state == FlowState.AWAITING_SIGNATURE:
            self._transition(FlowState.SUBMITTED, note=result.transaction_id or "")
        if self._state == FlowState.SUBMITTED:
            self._transition(FlowState.CONFIRMING)

        if result.status == SettlementStatus.TIMED_OUT:
            self._transition(FlowState.TIMED_OUT, note=result.transaction_id or "")
            return self.outcome
        if result.status == SettlementStatus.FAILED:
            return self._fail(TransactionFailedError(
                result.error or "Transaction failed",
                tx_hash=result.transaction_id,
                chain=intent.chain,
            ).with_transactions(result.transaction_ids))

        self._transition(FlowState.CONFIRMED, note=result.transaction_id or "")
        return await self._report()

    async def _report(self) -> FlowOutcome:
        assert self._result is not None and self._payer is not None
        try:
            self._ack = await self._get_reporter().report(
                self.intent.id,
                self._result,
                payer=self._payer,
                chain=self.intent.chain,
                token=self.intent.token_symbol,
                amount=self.intent.total_amount,
            )
        except ReportingError as e:
            self._error = e
            logger.error(
                "Intent %s paid on-chain (%s) but not recorded: %s",
                self.intent.id, self._result.transaction_id, e,
            )
            return self.outcome

        self._error = None
        self._transition(FlowState.REPORTED, note=self._ack.idempotency_key)
        return self.outcome

    async def retry_report(self) -> FlowOutcome:
        """Re-attempt reporting for a confirmed but unrecorded settlement."""
        if self._state != FlowState.CONFIRMED:
            raise InvalidStateTransition(self._state.value, FlowState.REPORTED.value)
        with LogContext(intent_id=self.intent.id, attempt_id=self.attempt_id, chain=self.intent.chain):
            return await self._report()
