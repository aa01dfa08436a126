"""Payment API routes."""

from __future__ import annotations

import logging
import time
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status
from prometheus_client import Counter, Histogram

from ...application.dtos import (
    OpenPaymentDTO,
    PaymentResponseDTO,
    VerifyPaymentDTO,
)
from ...application.use_cases.intake import PaymentIntakeService
from ...application.use_cases.retry import RetryPolicy
from ...application.use_cases.verification import TransactionVerifier
from ...domain.entities import VerificationOutcome, VerificationResult
from ...domain.errors import ErrorKind, SettlementError
from ..dependencies import (
    get_intake_service,
    get_retry_policy,
    get_transaction_verifier,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


verification_requests_total = Counter(
    "verification_requests_total",
    "Total verification requests processed",
    ["outcome"],
)

verification_request_duration_seconds = Histogram(
    "verification_request_duration_seconds",
    "Wall time to process a verification request",
    ["outcome"],
)

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.UNSUPPORTED_CHAIN: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CHAIN_MISMATCH: status.HTTP_400_BAD_REQUEST,
    ErrorKind.HASH_MISMATCH: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorKind.CONFIRMATION_PENDING: status.HTTP_202_ACCEPTED,
    ErrorKind.SETTLEMENT_EVIDENCE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.AMOUNT_MISMATCH: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.NUMERIC_OVERFLOW: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.CHAIN_RPC: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def settlement_http_error(error: SettlementError) -> HTTPException:
    """Translate a settlement error into an HTTP error with a typed body."""
    return HTTPException(
        status_code=_STATUS_BY_KIND.get(error.kind, status.HTTP_400_BAD_REQUEST),
        detail=error.to_dict(),
    )


@router.post(
    "",
    response_model=PaymentResponseDTO,
    status_code=status.HTTP_201_CREATED,
)
async def open_payment(
    payment_data: OpenPaymentDTO,
    intake_service: PaymentIntakeService = Depends(get_intake_service),
) -> PaymentResponseDTO:
    """Open a payment and derive its deposit address."""
    try:
        return await intake_service.open_payment(payment_data)
    except SettlementError as e:
        raise settlement_http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.exception("Failed to open payment")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to open payment: {str(e)}",
        )


@router.get("/{payment_id}", response_model=PaymentResponseDTO)
async def get_payment(
    payment_id: UUID = Path(..., description="Payment identifier"),
    merchant_id: Optional[str] = Query(None),
    intake_service: PaymentIntakeService = Depends(get_intake_service),
) -> PaymentResponseDTO:
    try:
        return await intake_service.get_payment(payment_id, merchant_id)
    except SettlementError as e:
        raise settlement_http_error(e)


@router.post("/{payment_id}/verifications", response_model=VerificationResult)
async def verify_payment(
    payload: VerifyPaymentDTO,
    response: Response,
    payment_id: UUID = Path(..., description="Payment identifier"),
    verifier: TransactionVerifier = Depends(get_transaction_verifier),
) -> VerificationResult:
    """Verify that a transaction settles the payment.

    Returns 200 when verified (or already verified with the same hash) and
    202 when the transaction is not yet confirmed; poll again later.
    """
    start_time = time.perf_counter()
    outcome = "server_error"
    try:
        result = await verifier.verify(
            payload.transaction_hash,
            payload.chain_id,
            payload.merchant_id,
            payment_id,
        )
        outcome = result.outcome.value
        if result.outcome == VerificationOutcome.PENDING:
            response.status_code = status.HTTP_202_ACCEPTED
        return result
    except SettlementError as e:
        outcome = e.kind.value
        raise settlement_http_error(e)
    except ValueError as e:
        outcome = "client_error"
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.exception("Verification of payment %s failed", payment_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to verify payment: {str(e)}",
        )
    finally:
        verification_requests_total.labels(outcome=outcome).inc()
        verification_request_duration_seconds.labels(outcome=outcome).observe(
            time.perf_counter() - start_time
        )


@router.post("/{payment_id}/retries", response_model=PaymentResponseDTO)
async def reset_payment_for_retry(
    payment_id: UUID = Path(..., description="Payment identifier"),
    merchant_id: Optional[str] = Query(None),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
) -> PaymentResponseDTO:
    """Return a failed payment to pending so a new transaction can be verified."""
    try:
        payment = await retry_policy.reset_by_id(payment_id, merchant_id)
    except SettlementError as e:
        raise settlement_http_error(e)
    return PaymentResponseDTO(**payment.model_dump())
