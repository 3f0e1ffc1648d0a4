"""External signer capabilities.

The engine never holds keys. A signer is whatever wallet the payer connected;
it only has to expose the calls below for its chain family.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from solders.transaction import Transaction
from web3 import AsyncWeb3

from .exceptions import SignerError, UserRejectedError
from .models import EvmCall

logger = logging.getLogger(__name__)

# EIP-1193 "User Rejected Request"
USER_REJECTED_CODE = 4001


@runtime_checkable
class AccountInstructionSigner(Protocol):
    """Wallet for account-instruction chains (e.g. a Solana wallet adapter)."""

    async def request_account(self) -> str:
        ...

    async def sign_and_send_transaction(self, transaction: Transaction) -> str:
        """Sign, broadcast and return the transaction signature."""
        ...


@runtime_checkable
class ContractCallSigner(Protocol):
    """Wallet for contract-call chains (EIP-1193 style)."""

    async def request_account(self) -> str:
        ...

    async def send_transaction(self, call: EvmCall, sender: str) -> str:
        """Sign, broadcast and return the transaction hash."""
        ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Dict[str, Any]:
        """Receipt with at least `status` and `blockNumber`.

        Raises asyncio.TimeoutError or web3's TimeExhausted on timeout.
        """
        ...


def _rpc_error_code(error: BaseException) -> Optional[int]:
    payload = getattr(error, "rpc_response", None)
    if payload is None and error.args:
        payload = error.args[0]
    if isinstance(payload, dict):
        inner = payload.get("error", payload)
        if isinstance(inner, dict):
            code = inner.get("code")
            return code if isinstance(code, int) else None
    return None


def wallet_error(error: BaseException, step: str, chain: Optional[str] = None) -> Exception:
    """Map a raw wallet exception to UserRejectedError or SignerError."""
    if _rpc_error_code(error) == USER_REJECTED_CODE:
        return UserRejectedError(f"User rejected the request: {error}", step=step, chain=chain)
    return SignerError(f"Wallet error: {error}", step=step, chain=chain)


class Web3WalletSigner:
    """ContractCallSigner backed by a web3 provider that manages the account.

    Suits wallets and dev nodes that accept `eth_sendTransaction` for an
    account they hold (browser bridges, Frame, anvil/hardhat).
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        account: Optional[str] = None,
        chain: Optional[str] = None,
    ):
        self._w3 = w3
        self._account = account
        self._chain = chain

    @classmethod
    def from_url(cls, provider_url: str, account: Optional[str] = None, chain: Optional[str] = None) -> "Web3WalletSigner":
        return cls(AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(provider_url)), account=account, chain=chain)

    async def request_account(self) -> str:
        if self._account:
            return self._account
        try:
            accounts = await self._w3.eth.accounts
        except Exception as e:
            raise wallet_error(e, "connect", self._chain) from e
        if not accounts:
            raise SignerError("Wallet exposes no accounts", step="connect", chain=self._chain)
        self._account = accounts[0]
        logger.info("Connected wallet account %s", self._account)
        return self._account

    async def send_transaction(self, call: EvmCall, sender: str) -> str:
        try:
            tx_hash = await self._w3.eth.send_transaction(call.to_tx_dict(sender))
        except Exception as e:
            raise wallet_error(e, "submit", self._chain) from e
        return AsyncWeb3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Dict[str, Any]:
        receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        return dict(receipt)
