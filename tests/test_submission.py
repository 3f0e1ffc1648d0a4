"""
Tests for splitpay.submission signing and confirmation.
"""
from __future__ import annotations

import asyncio

import pytest
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from web3.exceptions import TimeExhausted

from conftest import FakeEvmRPC, FakeEvmSigner, FakeSolanaRPC, FakeSolanaSigner
from splitpay.adapters import AccountInstructionAdapter, ContractCallAdapter
from splitpay.exceptions import RPCUnavailableError, SignerError, UserRejectedError
from splitpay.fees import compute_fee_split
from splitpay.models import SettlementStatus
from splitpay.submission import SubmissionCoordinator

SETTLEMENT_CONTRACT = "0x1c0A0eFBb438cc7705b947644F6AB88698b2704F"


async def solana_plan(intent, payer):
    split = compute_fee_split(intent.total_amount, intent.decimals)
    return await AccountInstructionAdapter(FakeSolanaRPC()).build_plan(intent, split, payer)


async def evm_plan(intent, payer, allowance=0):
    adapter = ContractCallAdapter(FakeEvmRPC(allowance=allowance), settlement_contract=SETTLEMENT_CONTRACT)
    return await adapter.build_plan(intent, None, payer)


class TestAccountInstructionSubmission:

    @pytest.mark.asyncio
    async def test_confirmed_after_polling(self, make_solana_intent, solana_payer):
        rpc = FakeSolanaRPC(statuses=[
            None,
            {"confirmationStatus": "processed", "err": None, "slot": 5},
            {"confirmationStatus": "confirmed", "err": None, "slot": 7},
        ])
        signer = FakeSolanaSigner(solana_payer)
        coordinator = SubmissionCoordinator(solana_rpc=rpc, poll_interval=0)
        plan = await solana_plan(make_solana_intent(symbol="SOL"), solana_payer)
        submitted = []

        result = await coordinator.submit(plan, signer, on_submitted=submitted.append)

        assert result.status == SettlementStatus.CONFIRMED
        assert result.transaction_id == "sig1"
        assert result.confirmed_at_logical_time == 7
        assert result.attempts == 3
        assert submitted == ["sig1"]

    @pytest.mark.asyncio
    async def test_single_transaction_with_all_operations(self, make_solana_intent, solana_payer):
        rpc = FakeSolanaRPC(statuses=[{"confirmationStatus": "finalized", "err": None, "slot": 1}])
        signer = FakeSolanaSigner(solana_payer)
        plan = await solana_plan(make_solana_intent(), solana_payer)

        await SubmissionCoordinator(solana_rpc=rpc, poll_interval=0).submit(plan, signer)

        assert len(signer.sent) == 1
        tx = signer.sent[0]
        assert isinstance(tx, Transaction)
        assert len(tx.message.instructions) == len(plan.operations)
        assert tx.message.account_keys[0] == Pubkey.from_string(solana_payer)

    @pytest.mark.asyncio
    async def test_timed_out_after_poll_budget(self, make_solana_intent, solana_payer):
        """30 polls without confirmation -> timed_out, not failed."""
        rpc = FakeSolanaRPC()
        coordinator = SubmissionCoordinator(solana_rpc=rpc, max_poll_attempts=30, poll_interval=0)
        plan = await solana_plan(make_solana_intent(symbol="SOL"), solana_payer)

        result = await coordinator.submit(plan, FakeSolanaSigner(solana_payer))

        assert result.status == SettlementStatus.TIMED_OUT
        assert result.attempts == 30
        assert result.confirmed_at_logical_time is None
        polls = [c for c in rpc.calls if c[0] == "getSignatureStatuses"]
        assert len(polls) == 30

    @pytest.mark.asyncio
    async def test_on_chain_error_is_failure(self, make_solana_intent, solana_payer):
        rpc = FakeSolanaRPC(statuses=[
            {"confirmationStatus": "confirmed", "err": {"InstructionError": [1, "Custom"]}, "slot": 3},
        ])
        plan = await solana_plan(make_solana_intent(symbol="SOL"), solana_payer)

        result = await SubmissionCoordinator(solana_rpc=rpc, poll_interval=0).submit(
            plan, FakeSolanaSigner(solana_payer)
        )

        assert result.status == SettlementStatus.FAILED
        assert "InstructionError" in result.error

    @pytest.mark.asyncio
    async def test_transient_poll_errors_keep_polling(self, make_solana_intent, solana_payer):
        rpc = FakeSolanaRPC(statuses=[
            RPCUnavailableError("blip"),
            {"confirmationStatus": "confirmed", "err": None, "slot": 9},
        ])
        plan = await solana_plan(make_solana_intent(symbol="SOL"), solana_payer)

        result = await SubmissionCoordinator(solana_rpc=rpc, poll_interval=0).submit(
            plan, FakeSolanaSigner(solana_payer)
        )

        assert result.status == SettlementStatus.CONFIRMED
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_user_rejection_propagates(self, make_solana_intent, solana_payer):
        rpc = FakeSolanaRPC()
        signer = FakeSolanaSigner(solana_payer, error=UserRejectedError("nope"))
        plan = await solana_plan(make_solana_intent(symbol="SOL"), solana_payer)

        with pytest.raises(UserRejectedError):
            await SubmissionCoordinator(solana_rpc=rpc, poll_interval=0).submit(plan, signer)
        assert not [c for c in rpc.calls if c[0] == "getSignatureStatuses"]

    @pytest.mark.asyncio
    async def test_unexpected_wallet_error_becomes_signer_error(self, make_solana_intent, solana_payer):
        signer = FakeSolanaSigner(solana_payer, error=RuntimeError("wallet crashed"))
        plan = await solana_plan(make_solana_intent(symbol="SOL"), solana_payer)

        with pytest.raises(SignerError):
            await SubmissionCoordinator(solana_rpc=FakeSolanaRPC(), poll_interval=0).submit(plan, signer)

    @pytest.mark.asyncio
    async def test_cancellation_stops_polling(self, make_solana_intent, solana_payer, never_resolves):
        rpc = FakeSolanaRPC()
        rpc.get_signature_status = never_resolves
        plan = await solana_plan(make_solana_intent(symbol="SOL"), solana_payer)
        coordinator = SubmissionCoordinator(solana_rpc=rpc, poll_interval=0)

        task = asyncio.create_task(coordinator.submit(plan, FakeSolanaSigner(solana_payer)))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestContractCallSubmission:

    @pytest.mark.asyncio
    async def test_operations_sent_in_order(self, make_evm_intent, evm_payer):
        plan = await evm_plan(make_evm_intent(), evm_payer, allowance=0)
        signer = FakeEvmSigner(evm_payer, receipt_statuses=[1, 1])

        result = await SubmissionCoordinator().submit(plan, signer)

        assert result.status == SettlementStatus.CONFIRMED
        assert [call.to for call in signer.sent] == [op.payload.to for op in plan.operations]
        assert len(result.transaction_ids) == 2
        assert result.transaction_id == result.transaction_ids[-1]
        assert result.confirmed_at_logical_time == 102

    @pytest.mark.asyncio
    async def test_reverted_approval_aborts_before_pay(self, make_evm_intent, evm_payer):
        plan = await evm_plan(make_evm_intent(), evm_payer, allowance=0)
        signer = FakeEvmSigner(evm_payer, receipt_statuses=[0])

        result = await SubmissionCoordinator().submit(plan, signer)

        assert result.status == SettlementStatus.FAILED
        assert len(signer.sent) == 1
        assert "approve" in result.error

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout_error", [asyncio.TimeoutError(), TimeExhausted("slow")])
    async def test_receipt_timeout_is_ambiguous(self, make_evm_intent, evm_payer, timeout_error):
        plan = await evm_plan(make_evm_intent(), evm_payer, allowance=10**12)
        signer = FakeEvmSigner(evm_payer, receipt_statuses=[timeout_error])

        result = await SubmissionCoordinator().submit(plan, signer)

        assert result.status == SettlementStatus.TIMED_OUT
        assert result.transaction_ids == (result.transaction_id,)

    @pytest.mark.asyncio
    async def test_rejected_pay_after_mined_approval_keeps_hash(self, make_evm_intent, evm_payer):
        plan = await evm_plan(make_evm_intent(), evm_payer, allowance=0)
        signer = FakeEvmSigner(evm_payer, error=UserRejectedError("declined"), fail_on_send=2)

        with pytest.raises(UserRejectedError) as exc_info:
            await SubmissionCoordinator().submit(plan, signer)

        error = exc_info.value
        assert len(signer.sent) == 1
        assert error.transaction_ids == ("0x" + f"{1:064x}",)
        assert error.on_chain_state_changed
        assert not error.retryable
        assert error.to_dict()["details"]["transaction_ids"] == list(error.transaction_ids)

    @pytest.mark.asyncio
    async def test_rejected_fee_leg_after_mined_merchant_leg(self, make_evm_intent, evm_payer):
        intent = make_evm_intent(amount="1", symbol="ETH")
        split = compute_fee_split(intent.total_amount, intent.decimals)
        plan = await ContractCallAdapter(FakeEvmRPC()).build_plan(intent, split, evm_payer)
        signer = FakeEvmSigner(evm_payer, error=RuntimeError("wallet locked"), fail_on_send=2)

        with pytest.raises(SignerError) as exc_info:
            await SubmissionCoordinator().submit(plan, signer)

        assert signer.sent[0].value == split.merchant_amount_minor
        assert len(exc_info.value.transaction_ids) == 1
        assert exc_info.value.on_chain_state_changed

    @pytest.mark.asyncio
    async def test_receipt_lookup_error_keeps_sent_hash(self, make_evm_intent, evm_payer):
        plan = await evm_plan(make_evm_intent(), evm_payer, allowance=10**12)
        signer = FakeEvmSigner(evm_payer, receipt_statuses=[RuntimeError("provider crashed")])

        with pytest.raises(SignerError) as exc_info:
            await SubmissionCoordinator().submit(plan, signer)

        assert exc_info.value.transaction_ids == ("0x" + f"{1:064x}",)
        assert exc_info.value.step == "confirm"

    @pytest.mark.asyncio
    async def test_first_rejection_leaves_chain_untouched(self, make_evm_intent, evm_payer):
        plan = await evm_plan(make_evm_intent(), evm_payer, allowance=0)
        signer = FakeEvmSigner(evm_payer, error=UserRejectedError("declined"))

        with pytest.raises(UserRejectedError) as exc_info:
            await SubmissionCoordinator().submit(plan, signer)

        assert exc_info.value.transaction_ids == ()
        assert not exc_info.value.on_chain_state_changed

    @pytest.mark.asyncio
    async def test_connect_returns_wallet_account(self, evm_payer):
        account = await SubmissionCoordinator().connect(FakeEvmSigner(evm_payer))
        assert account == evm_payer
