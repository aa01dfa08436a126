"""Notifier implementations for verification outcomes."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..domain.entities import Payment, Settlement
from ..domain.errors import SettlementError
from .http.http_client import AsyncHttpClient

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Writes outcomes to the log. Used when no webhook is configured."""

    async def notify_success(self, payment: Payment, settlement: Settlement) -> None:
        logger.info(
            "payment.verified id=%s reference=%s tx=%s status=%s",
            payment.id,
            payment.reference,
            settlement.transaction_hash,
            payment.status.value,
        )

    async def notify_failure(self, payment: Payment, error: SettlementError) -> None:
        logger.warning(
            "payment.verification_failed id=%s reference=%s kind=%s retryable=%s: %s",
            payment.id,
            payment.reference,
            error.kind.value,
            error.retryable,
            error.message,
        )


class WebhookNotifier:
    """POSTs outcome events as JSON to a single webhook URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        http_client: Optional[AsyncHttpClient] = None,
    ) -> None:
        self._http = http_client or AsyncHttpClient(url, timeout=timeout)

    async def notify_success(self, payment: Payment, settlement: Settlement) -> None:
        await self._send(
            {
                "event": "payment.verified",
                "payment": payment.model_dump(mode="json"),
                "settlement": settlement.model_dump(mode="json"),
            }
        )

    async def notify_failure(self, payment: Payment, error: SettlementError) -> None:
        await self._send(
            {
                "event": "payment.verification_failed",
                "payment": payment.model_dump(mode="json"),
                "error": error.to_dict(),
            }
        )

    async def _send(self, body: dict[str, Any]) -> None:
        try:
            await self._http.post("", json=body)
        except httpx.HTTPError as e:
            # Delivery is best effort; the ledger is the source of truth
            logger.warning("Webhook delivery of %s failed: %s", body["event"], e)

    async def aclose(self) -> None:
        await self._http.aclose()
