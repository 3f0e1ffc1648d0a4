"""Drive a transaction plan through an external signer and wait for finality.

Account-instruction plans are compiled into one transaction and confirmed by
polling the signature status. Contract-call plans are sent one operation at
a time and each receipt is awaited before the next is sent. A wallet error
after an earlier operation was sent carries the hashes already on-chain.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from web3.exceptions import TimeExhausted

from .chains import ChainFamily
from .config import SplitpaySettings
from .exceptions import (
    ConfigurationError,
    RPCUnavailableError,
    SettlementError,
    SignerError,
    SplitpayException,
)
from .models import SettlementResult, SettlementStatus, TransactionPlan
from .rpc.solana import FINAL_COMMITMENTS, SolanaClient
from .signers import AccountInstructionSigner, ContractCallSigner

logger = logging.getLogger(__name__)

DEFAULT_RECEIPT_TIMEOUT_SECONDS = 120.0

Signer = Union[AccountInstructionSigner, ContractCallSigner]
SubmittedCallback = Callable[[str], None]


class SubmissionCoordinator:
    """Executes plans against a signer and a chain RPC node."""

    def __init__(
        self,
        solana_rpc: Optional[SolanaClient] = None,
        max_poll_attempts: int = 30,
        poll_interval: float = 1.0,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS,
    ):
        self._solana_rpc = solana_rpc
        self.max_poll_attempts = max_poll_attempts
        self.poll_interval = poll_interval
        self.receipt_timeout = receipt_timeout

    @classmethod
    def from_settings(
        cls, settings: SplitpaySettings, solana_rpc: Optional[SolanaClient] = None
    ) -> "SubmissionCoordinator":
        return cls(
            solana_rpc=solana_rpc,
            max_poll_attempts=settings.confirmation_poll_attempts,
            poll_interval=settings.confirmation_poll_interval_seconds,
        )

    async def connect(self, signer: Signer) -> str:
        """Ask the wallet for the paying account."""
        account = await _call_signer(signer.request_account(), step="connect")
        logger.info("Payer account %s", account)
        return account

    async def submit(
        self,
        plan: TransactionPlan,
        signer: Signer,
        on_submitted: Optional[SubmittedCallback] = None,
    ) -> SettlementResult:
        """Sign, send and confirm a plan.

        `on_submitted` fires once, with the first transaction id, as soon as
        the signer has accepted the plan.
        """
        logger.info(
            "Submitting plan %s (%d operations) on %s",
            plan.plan_id, len(plan.operations), plan.chain,
        )
        if plan.family == ChainFamily.ACCOUNT_INSTRUCTION:
            return await self._submit_account_instruction(plan, signer, on_submitted)
        return await self._submit_contract_call(plan, signer, on_submitted)

    # -- account-instruction --------------------------------------------------

    async def _submit_account_instruction(
        self,
        plan: TransactionPlan,
        signer: AccountInstructionSigner,
        on_submitted: Optional[SubmittedCallback],
    ) -> SettlementResult:
        if self._solana_rpc is None:
            raise ConfigurationError(
                f"No RPC client configured for {plan.chain}", step="submit", chain=plan.chain
            )
        blockhash = await self._solana_rpc.get_latest_blockhash()
        message = Message.new_with_blockhash(
            [op.payload for op in plan.operations],
            Pubkey.from_string(plan.fee_payer),
            Hash.from_string(blockhash),
        )
        transaction = Transaction.new_unsigned(message)

        signature = str(await _call_signer(
            signer.sign_and_send_transaction(transaction), step="submit", chain=plan.chain
        ))
        logger.info("Plan %s sent as %s", plan.plan_id, signature)
        if on_submitted:
            on_submitted(signature)
        return await self.wait_for_signature(plan.chain, signature)

    async def wait_for_signature(self, chain: str, signature: str) -> SettlementResult:
        """Poll a signature until confirmed, failed, or out of attempts."""
        if self._solana_rpc is None:
            raise ConfigurationError(
                f"No RPC client configured for {chain}", step="confirm", chain=chain
            )
        for attempt in range(1, self.max_poll_attempts + 1):
            try:
                status = await self._solana_rpc.get_signature_status(signature)
            except RPCUnavailableError as e:
                logger.warning(
                    "Status poll %d/%d for %s failed: %s",
                    attempt, self.max_poll_attempts, signature, e,
                )
                status = None

            if status:
                if status.get("err") is not None:
                    logger.error("Transaction %s failed on-chain: %s", signature, status["err"])
                    return SettlementResult(
                        status=SettlementStatus.FAILED,
                        chain=chain,
                        transaction_id=signature,
                        transaction_ids=(signature,),
                        attempts=attempt,
                        error=f"On-chain error: {status['err']}",
                    )
                if status.get("confirmationStatus") in FINAL_COMMITMENTS:
                    logger.info("Transaction %s confirmed at slot %s", signature, status.get("slot"))
                    return SettlementResult(
                        status=SettlementStatus.CONFIRMED,
                        chain=chain,
                        transaction_id=signature,
                        transaction_ids=(signature,),
                        confirmed_at_logical_time=status.get("slot"),
                        attempts=attempt,
                    )

            if attempt < self.max_poll_attempts:
                await asyncio.sleep(self.poll_interval)

        logger.warning(
            "Transaction %s not confirmed after %d polls", signature, self.max_poll_attempts
        )
        return SettlementResult(
            status=SettlementStatus.TIMED_OUT,
            chain=chain,
            transaction_id=signature,
            transaction_ids=(signature,),
            attempts=self.max_poll_attempts,
            error="Confirmation not observed; the transaction may still land",
        )

    # -- contract-call ----------------------------------------------------------

    async def _submit_contract_call(
        self,
        plan: TransactionPlan,
        signer: ContractCallSigner,
        on_submitted: Optional[SubmittedCallback],
    ) -> SettlementResult:
        tx_ids: List[str] = []
        block_number: Optional[int] = None

        for index, op in enumerate(plan.operations):
            try:
                tx_hash = str(await _call_signer(
                    signer.send_transaction(op.payload, plan.fee_payer),
                    step="submit",
                    chain=plan.chain,
                ))
            except SettlementError as e:
                if tx_ids:
                    logger.error(
                        "%s not sent after %d mined transaction(s) %s: %s",
                        op.kind.value, len(tx_ids), ", ".join(tx_ids), e,
                    )
                raise e.with_transactions(tx_ids)
            tx_ids.append(tx_hash)
            logger.info("Sent %s (%s) as %s", op.kind.value, op.description, tx_hash)
            if index == 0 and on_submitted:
                on_submitted(tx_hash)

            try:
                receipt = await signer.wait_for_receipt(tx_hash, timeout=self.receipt_timeout)
            except asyncio.CancelledError:
                raise
            except (asyncio.TimeoutError, TimeExhausted, RPCUnavailableError) as e:
                logger.warning("No receipt for %s: %s", tx_hash, e)
                return SettlementResult(
                    status=SettlementStatus.TIMED_OUT,
                    chain=plan.chain,
                    transaction_id=tx_hash,
                    transaction_ids=tuple(tx_ids),
                    attempts=index + 1,
                    error=f"No receipt for {op.kind.value} within {self.receipt_timeout}s",
                )
            except SettlementError as e:
                raise e.with_transactions(tx_ids)
            except Exception as e:
                raise SignerError(
                    f"Receipt lookup failed for {tx_hash}: {e}", step="confirm", chain=plan.chain
                ).with_transactions(tx_ids) from e

            if _receipt_status(receipt) != 1:
                logger.error("%s reverted: %s", op.kind.value, tx_hash)
                return SettlementResult(
                    status=SettlementStatus.FAILED,
                    chain=plan.chain,
                    transaction_id=tx_hash,
                    transaction_ids=tuple(tx_ids),
                    attempts=index + 1,
                    error=f"{op.kind.value} reverted",
                )
            block_number = _as_int(receipt.get("blockNumber"))

        logger.info("Plan %s confirmed at block %s", plan.plan_id, block_number)
        return SettlementResult(
            status=SettlementStatus.CONFIRMED,
            chain=plan.chain,
            transaction_id=tx_ids[-1],
            transaction_ids=tuple(tx_ids),
            confirmed_at_logical_time=block_number,
            attempts=len(tx_ids),
        )


async def _call_signer(
    call: Awaitable[Any], step: str, chain: Optional[str] = None
) -> Any:
    """Await a wallet call; anything unexpected becomes a SignerError."""
    try:
        return await call
    except asyncio.CancelledError:
        raise
    except SplitpayException:
        raise
    except Exception as e:
        raise SignerError(f"Signer failed during {step}: {e}", step=step, chain=chain) from e


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def _receipt_status(receipt: Dict[str, Any]) -> Optional[int]:
    return _as_int(receipt.get("status"))
