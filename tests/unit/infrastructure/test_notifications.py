"""Tests for webhook and logging notifiers."""

import logging
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from chainsettle.domain.entities import Settlement, SettlementEvidence
from chainsettle.domain.errors import AmountMismatchError
from chainsettle.infrastructure.notifications import LoggingNotifier, WebhookNotifier

TX = "0x" + "ab" * 32


@pytest_asyncio.fixture
async def payment(open_payment):
    return await open_payment()


def _settlement(payment) -> Settlement:
    return Settlement(
        transaction_hash=TX,
        chain_id=payment.chain_id,
        block_number=100,
        confirmations=20,
        evidence=SettlementEvidence.SWEPT_EVENT,
        deposit_address=payment.deposit_address,
        token_address=payment.token_address,
        total_amount=payment.amount,
        merchant_amount=payment.payout_amount,
        platform_fee=payment.platform_fee,
    )


async def test_webhook_posts_verified_event(payment) -> None:
    http = AsyncMock()
    notifier = WebhookNotifier("https://hooks.example/settle", http_client=http)

    await notifier.notify_success(payment, _settlement(payment))

    http.post.assert_awaited_once()
    body = http.post.call_args.kwargs["json"]
    assert body["event"] == "payment.verified"
    assert body["payment"]["id"] == str(payment.id)
    assert body["payment"]["amount"] == "100000000"
    assert body["settlement"]["evidence"] == "swept_event"


async def test_webhook_posts_failure_kind(payment) -> None:
    http = AsyncMock()
    notifier = WebhookNotifier("https://hooks.example/settle", http_client=http)

    await notifier.notify_failure(payment, AmountMismatchError("short"))

    body = http.post.call_args.kwargs["json"]
    assert body["event"] == "payment.verification_failed"
    assert body["error"]["kind"] == "amount_mismatch"


async def test_webhook_delivery_errors_are_logged(payment, caplog) -> None:
    http = AsyncMock()
    http.post.side_effect = httpx.ConnectError("refused")
    notifier = WebhookNotifier("https://hooks.example/settle", http_client=http)

    with caplog.at_level(logging.WARNING):
        await notifier.notify_success(payment, _settlement(payment))
    assert "Webhook delivery of payment.verified failed" in caplog.text

    await notifier.aclose()
    http.aclose.assert_awaited_once()


async def test_logging_notifier(payment, caplog) -> None:
    notifier = LoggingNotifier()
    with caplog.at_level(logging.INFO):
        await notifier.notify_success(payment, _settlement(payment))
        await notifier.notify_failure(payment, AmountMismatchError("short"))
    assert "payment.verified" in caplog.text
    assert "kind=amount_mismatch" in caplog.text
