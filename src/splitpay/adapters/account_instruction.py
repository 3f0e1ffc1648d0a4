"""Plan builder for account-instruction chains (Solana).

Fungible settlements move SPL tokens between associated token accounts
(ATAs). Missing recipient ATAs are created in the same transaction, funded
by the payer, so one signature covers the whole settlement.
"""
from __future__ import annotations

import logging
import struct
from typing import List, Optional, Set

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import TransferParams, transfer

from ..chains import ChainFamily
from ..exceptions import MissingMerchantAddressError, SplitpayValidationError
from ..models import (
    FeeSplit,
    OperationKind,
    PaymentIntent,
    PlannedOperation,
    TransactionPlan,
)
from ..rpc.solana import SolanaClient

logger = logging.getLogger(__name__)

# Solana program IDs
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

# SPL token instruction tags
SPL_TRANSFER = 3


def to_pubkey(address: str, field: str = "address") -> Pubkey:
    try:
        return Pubkey.from_string(address)
    except ValueError as e:
        raise SplitpayValidationError(
            f"Invalid Solana address for {field}: {address!r}", field=field
        ) from e


def derive_ata(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """Derive the Associated Token Account address for owner+mint."""
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def create_ata_instruction(payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    """Create the ATA of `owner` for `mint`, rent paid by `payer`."""
    ata = derive_ata(owner, mint)
    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(ata, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=False, is_writable=False),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(ASSOCIATED_TOKEN_PROGRAM_ID, b"", accounts)


def spl_transfer_instruction(
    source: Pubkey, dest: Pubkey, owner: Pubkey, amount: int
) -> Instruction:
    """SPL Transfer: u8 tag followed by a little-endian u64 amount."""
    data = struct.pack("<BQ", SPL_TRANSFER, amount)
    accounts = [
        AccountMeta(source, is_signer=False, is_writable=True),
        AccountMeta(dest, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=True, is_writable=False),
    ]
    return Instruction(TOKEN_PROGRAM_ID, data, accounts)


class AccountInstructionAdapter:
    """Builds Solana settlement plans.

    Native SOL goes out as two system transfers. SPL tokens go out as two
    token transfers, preceded by ATA creation for any recipient that does not
    have a token account yet.
    """

    family = ChainFamily.ACCOUNT_INSTRUCTION

    def __init__(self, rpc: SolanaClient):
        self._rpc = rpc

    async def close(self) -> None:
        await self._rpc.close()

    async def build_plan(
        self,
        intent: PaymentIntent,
        split: Optional[FeeSplit],
        payer: str,
    ) -> TransactionPlan:
        if not intent.has_merchant_address:
            raise MissingMerchantAddressError(intent.id, intent.chain)
        if split is None:
            raise SplitpayValidationError(
                "Solana settlements need a fee split", field="split"
            )

        payer_key = to_pubkey(payer, "payer")
        merchant_key = to_pubkey(intent.merchant_address, "merchant_address")
        platform_key = to_pubkey(intent.platform_address, "platform_address")

        if intent.is_native:
            operations = self._native_operations(split, payer_key, merchant_key, platform_key)
        else:
            operations = await self._token_operations(
                intent, split, payer_key, merchant_key, platform_key
            )

        plan = TransactionPlan(
            intent_id=intent.id,
            chain=intent.chain,
            family=self.family,
            operations=operations,
            fee_payer=str(payer_key),
            fee_split=split,
        )
        logger.info(
            "Built %s plan %s for intent %s: %s",
            intent.chain, plan.plan_id, intent.id,
            ", ".join(kind.value for kind in plan.kinds),
        )
        return plan

    def _native_operations(
        self,
        split: FeeSplit,
        payer: Pubkey,
        merchant: Pubkey,
        platform: Pubkey,
    ) -> List[PlannedOperation]:
        operations = [
            PlannedOperation(
                kind=OperationKind.NATIVE_TRANSFER,
                description="merchant share",
                payload=transfer(TransferParams(
                    from_pubkey=payer, to_pubkey=merchant, lamports=split.merchant_amount_minor,
                )),
                amount_minor=split.merchant_amount_minor,
                recipient=str(merchant),
            )
        ]
        if split.fee_amount_minor > 0:
            operations.append(PlannedOperation(
                kind=OperationKind.NATIVE_TRANSFER,
                description="platform fee",
                payload=transfer(TransferParams(
                    from_pubkey=payer, to_pubkey=platform, lamports=split.fee_amount_minor,
                )),
                amount_minor=split.fee_amount_minor,
                recipient=str(platform),
            ))
        return operations

    async def _token_operations(
        self,
        intent: PaymentIntent,
        split: FeeSplit,
        payer: Pubkey,
        merchant: Pubkey,
        platform: Pubkey,
    ) -> List[PlannedOperation]:
        mint = to_pubkey(intent.token_identifier, "token_identifier")
        sender_ata = derive_ata(payer, mint)

        recipients = [("merchant share", merchant, split.merchant_amount_minor)]
        if split.fee_amount_minor > 0:
            recipients.append(("platform fee", platform, split.fee_amount_minor))

        creates: List[PlannedOperation] = []
        transfers: List[PlannedOperation] = []
        seen: Set[Pubkey] = set()
        for label, owner, amount in recipients:
            ata = derive_ata(owner, mint)
            # Any RPC failure here aborts the whole plan
            if ata not in seen and not await self._rpc.account_exists(str(ata)):
                logger.debug("Token account %s for %s missing, will create", ata, owner)
                creates.append(PlannedOperation(
                    kind=OperationKind.CREATE_ACCOUNT,
                    description=f"create token account for {label}",
                    payload=create_ata_instruction(payer, owner, mint),
                    recipient=str(owner),
                ))
            seen.add(ata)
            transfers.append(PlannedOperation(
                kind=OperationKind.TOKEN_TRANSFER,
                description=label,
                payload=spl_transfer_instruction(sender_ata, ata, payer, amount),
                amount_minor=amount,
                recipient=str(owner),
            ))
        return creates + transfers
