"""Document API client and payment-intent resolution.

A payable document (invoice or payment link) lives in the backend of record.
This module fetches it and turns it into a PaymentIntent for the chain and
token the payer picked.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .chains import ChainFamily, family_of, normalize_chain_name
from .config import SplitpaySettings, load_settings
from .exceptions import (
    DocumentAlreadyPaidError,
    DocumentNotFoundError,
    RPCUnavailableError,
    SplitpayValidationError,
)
from .models import PaymentIntent
from .tokens import normalize_symbol, resolve_token

logger = logging.getLogger(__name__)

PAID_STATUS = "paid"


class DocumentUser(BaseModel):
    """Owner of a document, i.e. the merchant."""

    model_config = ConfigDict(extra="ignore")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    ethereum_wallet_address: Optional[str] = None
    solana_wallet_address: Optional[str] = None

    def address_for(self, family: ChainFamily) -> Optional[str]:
        if family == ChainFamily.ACCOUNT_INSTRUCTION:
            return self.solana_wallet_address
        return self.ethereum_wallet_address


class Document(BaseModel):
    """Payable document as returned by the backend."""

    model_config = ConfigDict(extra="ignore")

    id: str
    title: Optional[str] = None
    amount: Decimal
    status: str = "draft"
    currency: Optional[str] = None
    chain: Optional[str] = None
    content: Dict[str, Any] = Field(default_factory=dict)
    user: Optional[DocumentUser] = None

    @property
    def is_paid(self) -> bool:
        return self.status.lower() == PAID_STATUS

    @property
    def token_symbol(self) -> str:
        """Currency with fiat aliases mapped to their stablecoin."""
        return normalize_symbol(self.currency)


def unwrap_document(payload: Any) -> Dict[str, Any]:
    """Accept `{success, data: {document}}`, `{data: {...}}` or a bare document."""
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict):
            document = data.get("document")
            return document if isinstance(document, dict) else data
        return payload
    raise SplitpayValidationError("Document response is not a JSON object")


class DocumentClient:
    """Reads payable documents from the backend of record."""

    def __init__(
        self,
        api_base_url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = api_base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(
        cls, settings: SplitpaySettings, http_client: Optional[httpx.AsyncClient] = None
    ) -> "DocumentClient":
        return cls(settings.api_base_url, settings.http_timeout_seconds, http_client)

    async def fetch_document(self, document_id: str) -> Document:
        url = f"{self._base_url}/api/documents/{document_id}"
        try:
            response = await self._http.get(url)
        except httpx.HTTPError as e:
            raise RPCUnavailableError(
                f"Document API unreachable: {e}", method="GET /api/documents", step="resolve_document"
            ) from e
        if response.status_code == 404:
            raise DocumentNotFoundError(document_id)
        if response.is_error:
            raise RPCUnavailableError(
                f"Document API returned {response.status_code}",
                method="GET /api/documents",
                step="resolve_document",
            )
        document = Document.model_validate(unwrap_document(response.json()))
        logger.debug("Fetched document %s (status=%s)", document.id, document.status)
        return document

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "DocumentClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def intent_from_document(
    document: Document,
    chain: Optional[str] = None,
    token: Optional[str] = None,
    settings: Optional[SplitpaySettings] = None,
) -> PaymentIntent:
    """Build the PaymentIntent for paying `document`.

    `chain` and `token` are the payer's selection; when omitted the
    document's own chain label and currency are used. The merchant address
    is left empty when the merchant has none for the chain's family, so the
    flow can fail the attempt before planning.
    """
    if document.is_paid:
        raise DocumentAlreadyPaidError(document.id)

    settings = settings or load_settings()
    chain_key = normalize_chain_name(
        chain or document.chain,
        default_evm=settings.default_evm_chain,
        default_solana=settings.default_solana_chain,
    )
    family = family_of(chain_key)
    resolved = resolve_token(chain_key, token or document.token_symbol)
    merchant = document.user.address_for(family) if document.user else None

    return PaymentIntent(
        id=document.id,
        chain=chain_key,
        token_kind=resolved.kind,
        token_symbol=resolved.symbol,
        token_identifier=resolved.identifier,
        decimals=resolved.decimals,
        total_amount=document.amount,
        merchant_address=merchant,
        platform_address=settings.platform_address_for(family.value),
    )
