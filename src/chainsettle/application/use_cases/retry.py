"""Use case: put a failed payment back into verification."""

from __future__ import annotations

import logging
from typing import Optional, Union
from uuid import UUID

from ...domain.entities import Payment, PaymentStatus
from ...domain.errors import InvalidPaymentStateError, PaymentNotFoundError
from ...domain.payment_repository import PaymentRepository
from ..verification_cache import VerificationCache

logger = logging.getLogger(__name__)


class RetryPolicy:
    """The only sanctioned path from ``failed`` back to ``pending``.

    Clears the stale transaction linkage (hash, attempted hash, payer,
    failure reason) so the next verification starts from a clean record.
    Amount and fees are preserved.
    """

    def __init__(self, payment_repository: PaymentRepository, cache: VerificationCache):
        self.payment_repository = payment_repository
        self.cache = cache

    async def reset_for_retry(self, payment: Payment) -> Payment:
        if payment.status != PaymentStatus.FAILED:
            raise InvalidPaymentStateError(
                f"Only failed payments can be retried; payment is {payment.status.value}",
                payment_id=payment.id,
            )

        updated = payment.model_copy(deep=True)
        updated.reset_for_retry()

        code, current = await self.payment_repository.compare_and_set(
            updated,
            expected_status=PaymentStatus.FAILED,
            expected_transaction_hash=payment.transaction_hash,
        )
        if code == 2:
            raise PaymentNotFoundError("Payment not found", payment_id=payment.id)
        if code == 0:
            status = current.status.value if current is not None else "unknown"
            raise InvalidPaymentStateError(
                f"Payment changed concurrently; now {status}", payment_id=payment.id
            )

        evicted = self.cache.evict_payment(updated.id)
        logger.info(
            "Payment %s reset for retry (%d cached verifications dropped)",
            updated.id,
            evicted,
        )
        return updated

    async def reset_by_id(
        self, payment_id: Union[UUID, str], merchant_id: Optional[str] = None
    ) -> Payment:
        payment = await self.payment_repository.get_by_id(payment_id)
        if payment is None or (
            merchant_id is not None and payment.merchant_id != merchant_id
        ):
            raise PaymentNotFoundError("Payment not found", payment_id=payment_id)
        return await self.reset_for_retry(payment)
