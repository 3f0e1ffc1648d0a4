"""Report confirmed settlements to the backend of record."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import httpx

from .config import SplitpaySettings
from .exceptions import ReportingError, SplitpayValidationError
from .models import SettlementResult, SettlementStatus
from .retry import RetryConfig, RetryExhausted, retry_async

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"


class _ServerError(Exception):
    """5xx from the backend; retried."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"HTTP {status_code}: {body[:200]}")
        self.status_code = status_code


@dataclass(frozen=True)
class ReportAck:
    """Backend acknowledgement of a recorded payment."""
    intent_id: str
    transaction_id: str
    idempotency_key: str
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def idempotency_key(intent_id: str, transaction_id: str) -> str:
    return f"{intent_id}:{transaction_id}"


class ReconciliationReporter:
    """Posts `{txHash, payer, chain, token, amount}` for confirmed settlements.

    Reports are idempotent per (intent, transaction): the backend receives
    the pair as an idempotency key, and acks are remembered locally so a
    repeated report does not hit the network again.
    """

    def __init__(
        self,
        api_base_url: str,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = api_base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._retry_config = retry_config or RetryConfig(
            retryable_exceptions=(httpx.TransportError, _ServerError),
        )
        self._acks: Dict[Tuple[str, str], ReportAck] = {}

    @classmethod
    def from_settings(
        cls, settings: SplitpaySettings, http_client: Optional[httpx.AsyncClient] = None
    ) -> "ReconciliationReporter":
        return cls(
            settings.api_base_url,
            timeout=settings.http_timeout_seconds,
            retry_config=RetryConfig(
                max_retries=settings.report_max_retries,
                base_delay=settings.report_base_delay_seconds,
                retryable_exceptions=(httpx.TransportError, _ServerError),
            ),
            http_client=http_client,
        )

    async def report(
        self,
        intent_id: str,
        result: SettlementResult,
        payer: str,
        chain: str,
        token: str,
        amount: Decimal,
    ) -> ReportAck:
        if result.status != SettlementStatus.CONFIRMED or not result.transaction_id:
            raise SplitpayValidationError(
                f"Only confirmed settlements are reported, got {result.status.value}",
                field="result",
            )
        transaction_id = result.transaction_id
        cached = self._acks.get((intent_id, transaction_id))
        if cached is not None:
            logger.debug("Report for %s/%s already acknowledged", intent_id, transaction_id)
            return cached

        key = idempotency_key(intent_id, transaction_id)
        payload = {
            "txHash": transaction_id,
            "payer": payer,
            "chain": chain,
            "token": token,
            "amount": str(amount),
        }
        url = f"{self._base_url}/api/documents/{intent_id}/pay"

        try:
            response = await retry_async(self._post, url, payload, key, config=self._retry_config)
        except RetryExhausted as e:
            status = getattr(e.original_exception, "status_code", None)
            raise ReportingError(
                f"Could not record payment for {intent_id}: {e.original_exception}",
                intent_id=intent_id,
                transaction_id=transaction_id,
                status_code=status,
                chain=chain,
            ) from e
        except httpx.HTTPStatusError as e:
            raise ReportingError(
                f"Backend rejected payment record for {intent_id}: HTTP {e.response.status_code}",
                intent_id=intent_id,
                transaction_id=transaction_id,
                status_code=e.response.status_code,
                chain=chain,
            ) from e
        except httpx.HTTPError as e:
            raise ReportingError(
                f"Could not record payment for {intent_id}: {e}",
                intent_id=intent_id,
                transaction_id=transaction_id,
                chain=chain,
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        ack = ReportAck(
            intent_id=intent_id,
            transaction_id=transaction_id,
            idempotency_key=key,
            status_code=response.status_code,
            body=body if isinstance(body, dict) else {"data": body},
        )
        self._acks[(intent_id, transaction_id)] = ack
        logger.info("Recorded payment %s for intent %s", transaction_id, intent_id)
        return ack

    async def _post(self, url: str, payload: Dict[str, Any], key: str) -> httpx.Response:
        response = await self._http.post(url, json=payload, headers={IDEMPOTENCY_HEADER: key})
        if response.status_code >= 500:
            raise _ServerError(response.status_code, response.text)
        response.raise_for_status()
        return response

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "ReconciliationReporter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
