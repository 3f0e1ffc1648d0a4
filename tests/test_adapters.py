"""
Tests for splitpay.adapters plan building.

Covers:
- SPL token plans with and without missing token accounts
- Native SOL and native EVM splits
- Settlement-contract plans with and without an approval
- Configuration and RPC failures
"""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest
from eth_abi import decode
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from conftest import FakeEvmRPC, FakeSolanaRPC
from splitpay.adapters import (
    AccountInstructionAdapter,
    ChainAdapter,
    ContractCallAdapter,
    build_plan,
    derive_ata,
)
from splitpay.adapters.account_instruction import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from splitpay.adapters.contract_call import encode_approve, encode_pay
from splitpay.chains import ChainFamily
from splitpay.config import ZERO_ADDRESS
from splitpay.exceptions import (
    ConfigurationError,
    MissingMerchantAddressError,
    RPCUnavailableError,
    SettlementContractMissingError,
    UnsupportedChainError,
)
from splitpay.fees import compute_fee_split
from splitpay.models import EvmCall, OperationKind

SETTLEMENT_CONTRACT = "0x1c0A0eFBb438cc7705b947644F6AB88698b2704F"


class TestAssociatedTokenAccounts:

    def test_derivation_is_deterministic_per_owner_and_mint(self):
        owner = Pubkey.new_unique()
        mint = Pubkey.new_unique()
        assert derive_ata(owner, mint) == derive_ata(owner, mint)
        assert derive_ata(owner, mint) != derive_ata(Pubkey.new_unique(), mint)
        assert derive_ata(owner, mint) != derive_ata(owner, Pubkey.new_unique())

    def test_derivation_matches_program_address(self):
        owner = Pubkey.new_unique()
        mint = Pubkey.new_unique()
        expected, _ = Pubkey.find_program_address(
            [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
            ASSOCIATED_TOKEN_PROGRAM_ID,
        )
        assert derive_ata(owner, mint) == expected


class TestAccountInstructionAdapter:

    def test_satisfies_protocol(self):
        assert isinstance(AccountInstructionAdapter(FakeSolanaRPC()), ChainAdapter)

    @pytest.mark.asyncio
    async def test_missing_merchant_token_account_is_created_first(
        self, make_solana_intent, solana_payer, solana_merchant
    ):
        """2000 USDC with no merchant ATA: create, then 1990 and 10."""
        intent = make_solana_intent(amount="2000")
        mint = Pubkey.from_string(intent.token_identifier)
        platform_ata = derive_ata(Pubkey.from_string(intent.platform_address), mint)
        rpc = FakeSolanaRPC(existing_accounts={str(platform_ata)})
        split = compute_fee_split(intent.total_amount, intent.decimals)

        plan = await AccountInstructionAdapter(rpc).build_plan(intent, split, solana_payer)

        assert plan.kinds == (
            OperationKind.CREATE_ACCOUNT,
            OperationKind.TOKEN_TRANSFER,
            OperationKind.TOKEN_TRANSFER,
        )
        create, merchant_transfer, fee_transfer = plan.operations
        assert create.recipient == solana_merchant
        assert merchant_transfer.amount_minor == 1_990_000_000
        assert merchant_transfer.recipient == solana_merchant
        assert fee_transfer.amount_minor == 10_000_000
        assert fee_transfer.recipient == intent.platform_address
        assert plan.fee_payer == solana_payer
        assert plan.fee_split == split
        assert plan.family == ChainFamily.ACCOUNT_INSTRUCTION

    @pytest.mark.asyncio
    async def test_spl_transfer_instruction_layout(self, make_solana_intent, solana_payer, solana_merchant):
        intent = make_solana_intent(amount="2000")
        mint = Pubkey.from_string(intent.token_identifier)
        merchant_ata = derive_ata(Pubkey.from_string(solana_merchant), mint)
        platform_ata = derive_ata(Pubkey.from_string(intent.platform_address), mint)
        rpc = FakeSolanaRPC(existing_accounts={str(merchant_ata), str(platform_ata)})
        split = compute_fee_split(intent.total_amount, intent.decimals)

        plan = await AccountInstructionAdapter(rpc).build_plan(intent, split, solana_payer)

        assert plan.count(OperationKind.CREATE_ACCOUNT) == 0
        instruction = plan.operations[0].payload
        assert instruction.program_id == TOKEN_PROGRAM_ID
        assert bytes(instruction.data) == bytes([3]) + (1_990_000_000).to_bytes(8, "little")
        source, dest, owner = instruction.accounts
        assert source.pubkey == derive_ata(Pubkey.from_string(solana_payer), mint)
        assert dest.pubkey == merchant_ata
        assert owner.pubkey == Pubkey.from_string(solana_payer)
        assert owner.is_signer

    @pytest.mark.asyncio
    async def test_create_account_instruction_layout(self, make_solana_intent, solana_payer, solana_merchant):
        intent = make_solana_intent(amount="100")
        rpc = FakeSolanaRPC()
        split = compute_fee_split(intent.total_amount, intent.decimals)

        plan = await AccountInstructionAdapter(rpc).build_plan(intent, split, solana_payer)

        # Both recipients lack token accounts
        assert plan.kinds[:2] == (OperationKind.CREATE_ACCOUNT, OperationKind.CREATE_ACCOUNT)
        instruction = plan.operations[0].payload
        mint = Pubkey.from_string(intent.token_identifier)
        merchant = Pubkey.from_string(solana_merchant)
        assert instruction.program_id == ASSOCIATED_TOKEN_PROGRAM_ID
        assert bytes(instruction.data) == b""
        assert [meta.pubkey for meta in instruction.accounts] == [
            Pubkey.from_string(solana_payer),
            derive_ata(merchant, mint),
            merchant,
            mint,
            SYSTEM_PROGRAM_ID,
            TOKEN_PROGRAM_ID,
        ]
        assert instruction.accounts[0].is_signer

    @pytest.mark.asyncio
    async def test_native_sol_uses_system_transfers(self, make_solana_intent, solana_payer):
        intent = make_solana_intent(amount="2", symbol="SOL")
        rpc = FakeSolanaRPC()
        split = compute_fee_split(intent.total_amount, intent.decimals)

        plan = await AccountInstructionAdapter(rpc).build_plan(intent, split, solana_payer)

        assert plan.kinds == (OperationKind.NATIVE_TRANSFER, OperationKind.NATIVE_TRANSFER)
        assert plan.operations[0].amount_minor == 1_980_000_000
        assert plan.operations[1].amount_minor == 20_000_000
        assert all(op.payload.program_id == SYSTEM_PROGRAM_ID for op in plan.operations)
        # No token accounts to look up
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_zero_fee_skips_platform_transfer(self, make_solana_intent, solana_payer):
        intent = make_solana_intent(amount="0.000099")
        rpc = FakeSolanaRPC()
        split = compute_fee_split(intent.total_amount, intent.decimals)
        assert split.fee_amount_minor == 0

        plan = await AccountInstructionAdapter(rpc).build_plan(intent, split, solana_payer)

        assert plan.count(OperationKind.TOKEN_TRANSFER) == 1
        assert plan.count(OperationKind.CREATE_ACCOUNT) == 1

    @pytest.mark.asyncio
    async def test_missing_merchant_address_before_any_rpc(self, make_solana_intent, solana_payer):
        intent = make_solana_intent(merchant=None)
        rpc = FakeSolanaRPC()
        split = compute_fee_split(intent.total_amount, intent.decimals)

        with pytest.raises(MissingMerchantAddressError):
            await AccountInstructionAdapter(rpc).build_plan(intent, split, solana_payer)
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_rpc_failure_returns_no_plan(self, make_solana_intent, solana_payer):
        intent = make_solana_intent()
        rpc = FakeSolanaRPC(fail_account_lookup=True)
        split = compute_fee_split(intent.total_amount, intent.decimals)

        with pytest.raises(RPCUnavailableError) as exc_info:
            await AccountInstructionAdapter(rpc).build_plan(intent, split, solana_payer)
        assert exc_info.value.retryable


class TestContractCallAdapter:

    def test_well_known_selectors(self):
        assert encode_approve(SETTLEMENT_CONTRACT, 1)[:4] == bytes.fromhex("095ea7b3")

    def test_pay_calldata_round_trips(self, evm_merchant):
        token = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
        data = encode_pay(token, 500_000_000, evm_merchant, "inv_1")
        decoded = decode(["address", "uint256", "address", "string"], data[4:])
        assert decoded[0].lower() == token.lower()
        assert decoded[1] == 500_000_000
        assert decoded[2].lower() == evm_merchant.lower()
        assert decoded[3] == "inv_1"

    @pytest.mark.asyncio
    async def test_insufficient_allowance_prepends_approval(self, make_evm_intent, evm_payer):
        intent = make_evm_intent(amount="100")
        rpc = FakeEvmRPC(allowance=0)
        adapter = ContractCallAdapter(rpc, settlement_contract=SETTLEMENT_CONTRACT)

        plan = await adapter.build_plan(intent, None, evm_payer)

        assert plan.kinds == (OperationKind.APPROVE, OperationKind.CONTRACT_CALL)
        approve, pay = plan.operations
        assert isinstance(approve.payload, EvmCall)
        assert approve.payload.to.lower() == intent.token_identifier.lower()
        assert approve.payload.data == encode_approve(SETTLEMENT_CONTRACT, 100_000_000)
        assert pay.payload.to == SETTLEMENT_CONTRACT
        assert pay.payload.data[:4] == encode_pay(
            intent.token_identifier, 100_000_000, intent.merchant_address, intent.id
        )[:4]
        assert plan.fee_split is None
        assert len(plan.required_approvals) == 1

    @pytest.mark.asyncio
    async def test_sufficient_allowance_pays_directly(self, make_evm_intent, evm_payer):
        intent = make_evm_intent(amount="100")
        rpc = FakeEvmRPC(allowance=100_000_000)
        adapter = ContractCallAdapter(rpc, settlement_contract=SETTLEMENT_CONTRACT)

        plan = await adapter.build_plan(intent, None, evm_payer)

        assert plan.kinds == (OperationKind.CONTRACT_CALL,)
        assert plan.required_approvals == ()

    @pytest.mark.asyncio
    async def test_missing_settlement_contract(self, make_evm_intent, evm_payer):
        rpc = FakeEvmRPC()
        adapter = ContractCallAdapter(rpc, settlement_contract=None)

        with pytest.raises(SettlementContractMissingError):
            await adapter.build_plan(make_evm_intent(), None, evm_payer)
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_allowance_rpc_failure(self, make_evm_intent, evm_payer):
        adapter = ContractCallAdapter(FakeEvmRPC(fail=True), settlement_contract=SETTLEMENT_CONTRACT)

        with pytest.raises(RPCUnavailableError):
            await adapter.build_plan(make_evm_intent(), None, evm_payer)

    @pytest.mark.asyncio
    async def test_native_coin_split_into_two_transfers(self, make_evm_intent, evm_payer, evm_merchant):
        intent = make_evm_intent(amount="1", symbol="ETH")
        split = compute_fee_split(intent.total_amount, intent.decimals)
        rpc = FakeEvmRPC()

        plan = await ContractCallAdapter(rpc).build_plan(intent, split, evm_payer)

        assert plan.kinds == (OperationKind.NATIVE_TRANSFER, OperationKind.NATIVE_TRANSFER)
        merchant_op, fee_op = plan.operations
        assert merchant_op.payload.value == 990_000_000_000_000_000
        assert fee_op.payload.value == 10_000_000_000_000_000
        assert merchant_op.recipient.lower() == evm_merchant.lower()
        assert plan.fee_split == split
        assert rpc.calls == []

    @pytest.mark.asyncio
    async def test_zero_address_fee_recipient_rejected(self, make_evm_intent, evm_payer):
        intent = replace(make_evm_intent(amount="1", symbol="ETH"), platform_address=ZERO_ADDRESS)
        split = compute_fee_split(intent.total_amount, intent.decimals)

        with pytest.raises(ConfigurationError) as exc_info:
            await ContractCallAdapter(FakeEvmRPC()).build_plan(intent, split, evm_payer)
        assert exc_info.value.step == "build_plan"

    @pytest.mark.asyncio
    async def test_missing_merchant_address(self, make_evm_intent, evm_payer):
        rpc = FakeEvmRPC()
        adapter = ContractCallAdapter(rpc, settlement_contract=SETTLEMENT_CONTRACT)

        with pytest.raises(MissingMerchantAddressError):
            await adapter.build_plan(make_evm_intent(merchant=""), None, evm_payer)
        assert rpc.calls == []


class TestDispatch:

    @pytest.mark.asyncio
    async def test_family_mismatch_rejected(self, make_evm_intent, evm_payer):
        with pytest.raises(UnsupportedChainError):
            await build_plan(make_evm_intent(), None, evm_payer, adapter=AccountInstructionAdapter(FakeSolanaRPC()))

    def test_select_adapter_by_family(self, make_solana_intent, make_evm_intent, settings):
        from splitpay.adapters import select_adapter

        assert isinstance(select_adapter(make_solana_intent(), settings), AccountInstructionAdapter)
        assert isinstance(select_adapter(make_evm_intent(), settings), ContractCallAdapter)
