"""Unit tests for Payment state transitions and serialization."""

import json
import re

import pytest

from chainsettle.domain.amounts import UINT256_MAX
from chainsettle.domain.entities import (
    Payment,
    PaymentStatus,
    ReleaseType,
    generate_reference,
)
from chainsettle.domain.errors import InvalidPaymentStateError

TX_A = "0x" + "aa" * 32


def _payment(**overrides: object) -> Payment:
    data = {
        "reference": "CS-PAY-TEST-000001",
        "merchant_id": "merchant-42",
        "merchant_wallet": "0x8ba1f109551bD432803012645Ac136ddd64DBA72",
        "chain_id": 8453,
        "token_address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "token_decimals": 6,
        "amount": 100_000_000,
        "platform_fee_bps": 300,
        "platform_fee": 3_000_000,
        "payout_amount": 97_000_000,
        "deposit_address": "0x0000000000000000000000000000000000000001",
        "salt": "0x" + "11" * 32,
    }
    data.update(overrides)
    return Payment(**data)


def test_generate_reference_format() -> None:
    reference = generate_reference()
    assert re.fullmatch(r"CS-PAY-[0-9A-Z]+-[0-9A-Z]{6}", reference)
    assert generate_reference() != reference


def test_amounts_serialize_as_strings() -> None:
    """JSON consumers that parse doubles must not truncate base units."""
    payment = _payment(amount=UINT256_MAX, payout_amount=UINT256_MAX)
    data = json.loads(payment.model_dump_json())
    assert data["amount"] == str(UINT256_MAX)
    assert Payment.model_validate_json(payment.model_dump_json()).amount == UINT256_MAX


def test_amount_above_uint256_is_rejected() -> None:
    with pytest.raises(ValueError):
        _payment(amount=UINT256_MAX + 1)


class TestTransitions:
    def test_mark_settled_records_hash_and_split(self) -> None:
        payment = _payment()
        payment.mark_settled(
            transaction_hash=TX_A,
            status=PaymentStatus.COMPLETED,
            payer_address=None,
            payout_amount=97_000_000,
            platform_fee=3_000_000,
        )
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.transaction_hash == TX_A
        assert payment.completed_at is not None
        assert payment.is_settled

    def test_settled_payment_cannot_settle_again(self) -> None:
        payment = _payment(status=PaymentStatus.ESCROW, transaction_hash=TX_A)
        with pytest.raises(InvalidPaymentStateError):
            payment.mark_settled(
                transaction_hash="0x" + "bb" * 32,
                status=PaymentStatus.COMPLETED,
                payer_address=None,
                payout_amount=1,
                platform_fee=0,
            )

    def test_mark_failed_keeps_hash_empty(self) -> None:
        payment = _payment()
        payment.mark_failed("Amount mismatch", attempted_hash=TX_A)
        assert payment.status == PaymentStatus.FAILED
        assert payment.transaction_hash is None
        assert payment.failed_transaction_hash == TX_A

    def test_reset_for_retry_only_from_failed(self) -> None:
        payment = _payment()
        with pytest.raises(InvalidPaymentStateError):
            payment.reset_for_retry()

        payment.mark_failed("boom", attempted_hash=TX_A)
        payment.reset_for_retry()
        assert payment.status == PaymentStatus.PENDING
        assert payment.failed_transaction_hash is None
        assert payment.failure_reason is None
        assert payment.amount == 100_000_000

    def test_record_release_requires_escrow_and_is_single_shot(self) -> None:
        with pytest.raises(InvalidPaymentStateError):
            _payment().record_release(
                sweep_transaction_hash=TX_A,
                release_type=ReleaseType.MANUAL,
                payout_amount=1,
                platform_fee=0,
            )

        payment = _payment(status=PaymentStatus.ESCROW, transaction_hash=TX_A)
        payment.record_release(
            sweep_transaction_hash="0x" + "cc" * 32,
            release_type=ReleaseType.AUTOMATIC,
            payout_amount=97_000_000,
            platform_fee=3_000_000,
        )
        assert payment.status == PaymentStatus.ESCROW
        assert payment.escrow_released_at is not None
        with pytest.raises(InvalidPaymentStateError, match="already been swept"):
            payment.record_release(
                sweep_transaction_hash="0x" + "dd" * 32,
                release_type=ReleaseType.MANUAL,
                payout_amount=1,
                platform_fee=0,
            )
