"""
Pytest configuration and shared fakes for splitpay tests.
"""
from __future__ import annotations

import asyncio
import os
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from eth_abi import encode
from solders.pubkey import Pubkey

from splitpay.config import SplitpaySettings
from splitpay.exceptions import RPCUnavailableError
from splitpay.flow import AttemptGuard
from splitpay.models import EvmCall, PaymentIntent
from splitpay.tokens import resolve_token

os.environ.setdefault("SPLITPAY_ENVIRONMENT", "dev")

# 32 zero bytes, a valid base58 blockhash
ZERO_BLOCKHASH = "11111111111111111111111111111111"


class FakeSolanaRPC:
    """In-memory stand-in for SolanaClient."""

    def __init__(
        self,
        existing_accounts: Optional[set] = None,
        statuses: Optional[List[Any]] = None,
        fail_account_lookup: bool = False,
    ):
        self.chain = "solana_devnet"
        self.existing_accounts = set(existing_accounts or ())
        # Each entry is a status dict, None, or an exception to raise
        self.statuses = list(statuses or [])
        self.fail_account_lookup = fail_account_lookup
        self.calls: List[tuple] = []

    async def account_exists(self, pubkey: str) -> bool:
        self.calls.append(("getAccountInfo", pubkey))
        if self.fail_account_lookup:
            raise RPCUnavailableError("node down", chain=self.chain, method="getAccountInfo")
        return pubkey in self.existing_accounts

    async def get_latest_blockhash(self) -> str:
        self.calls.append(("getLatestBlockhash",))
        return ZERO_BLOCKHASH

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("getSignatureStatuses", signature))
        if not self.statuses:
            return None
        entry = self.statuses.pop(0)
        if isinstance(entry, Exception):
            raise entry
        return entry

    async def close(self) -> None:
        self.calls.append(("close",))


class FakeEvmRPC:
    """In-memory stand-in for EvmRPCClient answering allowance() calls."""

    def __init__(self, allowance: int = 0, fail: bool = False):
        self.chain = "base_sepolia"
        self.allowance = allowance
        self.fail = fail
        self.calls: List[tuple] = []

    async def call(self, to: str, data: bytes, block: str = "latest") -> bytes:
        self.calls.append(("eth_call", to, data))
        if self.fail:
            raise RPCUnavailableError("node down", chain=self.chain, method="eth_call")
        return encode(["uint256"], [self.allowance])

    async def close(self) -> None:
        self.calls.append(("close",))


class FakeSolanaSigner:
    """Wallet that signs anything, or rejects when told to."""

    def __init__(self, account: str, error: Optional[Exception] = None):
        self.account = account
        self.error = error
        self.sent: List[Any] = []

    async def request_account(self) -> str:
        return self.account

    async def sign_and_send_transaction(self, transaction) -> str:
        if self.error is not None:
            raise self.error
        self.sent.append(transaction)
        return f"sig{len(self.sent)}"


class FakeEvmSigner:
    """Wallet returning scripted receipts in send order."""

    def __init__(
        self,
        account: str,
        receipt_statuses: Optional[List[Any]] = None,
        error: Optional[Exception] = None,
        fail_on_send: Optional[int] = None,
    ):
        self.account = account
        # 1, 0, or an exception raised by wait_for_receipt
        self.receipt_statuses = list(receipt_statuses or [])
        self.error = error
        # 1-based send raising `error`; every send when None
        self.fail_on_send = fail_on_send
        self.sent: List[EvmCall] = []

    async def request_account(self) -> str:
        return self.account

    async def send_transaction(self, call: EvmCall, sender: str) -> str:
        if self.error is not None and self.fail_on_send in (None, len(self.sent) + 1):
            raise self.error
        self.sent.append(call)
        return "0x" + f"{len(self.sent):064x}"

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Dict[str, Any]:
        status = self.receipt_statuses.pop(0) if self.receipt_statuses else 1
        if isinstance(status, Exception):
            raise status
        return {"status": status, "blockNumber": 100 + len(self.sent), "transactionHash": tx_hash}


def mock_http_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
def settings():
    return SplitpaySettings(
        _env_file=None,
        api_base_url="http://backend.test",
        confirmation_poll_interval_seconds=0.0,
        report_max_retries=2,
        report_base_delay_seconds=0.0,
    )


@pytest.fixture
def guard():
    return AttemptGuard()


@pytest.fixture
def solana_payer() -> str:
    return str(Pubkey.new_unique())


@pytest.fixture
def solana_merchant() -> str:
    return str(Pubkey.new_unique())


@pytest.fixture
def evm_payer() -> str:
    return "0x" + "11" * 20


@pytest.fixture
def evm_merchant() -> str:
    return "0x" + "22" * 20


@pytest.fixture
def make_solana_intent(solana_merchant, settings):
    def _make(amount="2000", symbol="USDC", merchant: Optional[str] = "default", intent_id="inv_sol_1"):
        token = resolve_token("solana_devnet", symbol)
        return PaymentIntent(
            id=intent_id,
            chain="solana_devnet",
            token_kind=token.kind,
            token_symbol=token.symbol,
            token_identifier=token.identifier,
            decimals=token.decimals,
            total_amount=Decimal(amount),
            merchant_address=solana_merchant if merchant == "default" else merchant,
            platform_address=settings.solana_platform_wallet,
        )
    return _make


@pytest.fixture
def make_evm_intent(evm_merchant):
    def _make(amount="100", symbol="USDC", merchant: Optional[str] = "default", intent_id="inv_evm_1"):
        token = resolve_token("base_sepolia", symbol)
        return PaymentIntent(
            id=intent_id,
            chain="base_sepolia",
            token_kind=token.kind,
            token_symbol=token.symbol,
            token_identifier=token.identifier,
            decimals=token.decimals,
            total_amount=Decimal(amount),
            merchant_address=evm_merchant if merchant == "default" else merchant,
            platform_address="0x" + "33" * 20,
        )
    return _make


@pytest.fixture
def never_resolves():
    """Awaitable that blocks until cancelled."""
    async def _wait(*args, **kwargs):
        await asyncio.Event().wait()
    return _wait

