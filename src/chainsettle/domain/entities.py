"""Settlement domain entities: Payment, receipts, and verification results."""

from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .amounts import UINT256_MAX
from .errors import (
    ConfirmationPendingError,
    ChainRpcError,
    ErrorKind,
    InvalidPaymentStateError,
    SettlementError,
)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    INITIALIZED = "initialized"
    ESCROW = "escrow"
    PROCESSING = "processing"
    RELEASED = "released"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    FAILED = "failed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class ReleaseType(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    DISPUTE_RESOLUTION = "dispute_resolution"


# Funds confirmed on-chain; the transaction hash is frozen from here on.
SETTLED_STATUSES = frozenset(
    {PaymentStatus.ESCROW, PaymentStatus.COMPLETED, PaymentStatus.RELEASED}
)
VERIFIABLE_STATUSES = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.INITIALIZED, PaymentStatus.PROCESSING}
)
SWEEPABLE_STATUSES = frozenset({PaymentStatus.ESCROW, PaymentStatus.COMPLETED})


def _check_uint256(value: int) -> int:
    if value > UINT256_MAX:
        raise ValueError("Amount does not fit in uint256")
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_base36(value: int) -> str:
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
    return out or "0"


def generate_reference() -> str:
    """Generate a unique payment reference such as ``CS-PAY-LX3K9Q2A-7F2K1Z``."""
    timestamp = _to_base36(int(time.time() * 1000))
    random_part = _to_base36(secrets.randbits(31)).rjust(6, "0")[:6]
    return f"CS-PAY-{timestamp}-{random_part}"


class Payment(BaseModel):
    """One expected fund transfer into a deterministic deposit address."""

    id: UUID = Field(default_factory=uuid4)
    reference: str = Field(..., min_length=1, max_length=64)
    merchant_id: str = Field(..., min_length=1)
    merchant_wallet: str
    payer_address: Optional[str] = None

    chain_id: int = Field(..., gt=0)
    token_address: str
    token_symbol: Optional[str] = None
    token_decimals: int = Field(..., ge=0, le=77)

    # Base units
    amount: int = Field(..., gt=0)
    platform_fee_bps: int = Field(..., ge=0, le=10_000)
    platform_fee: int = Field(..., ge=0)
    payout_amount: int = Field(..., ge=0)

    deposit_address: str
    salt: str

    status: PaymentStatus = PaymentStatus.PENDING
    transaction_hash: Optional[str] = None
    failed_transaction_hash: Optional[str] = None
    failure_reason: Optional[str] = None

    escrow_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    escrow_released_at: Optional[datetime] = None
    release_type: Optional[ReleaseType] = None
    sweep_transaction_hash: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    @field_validator("amount", "platform_fee", "payout_amount")
    @classmethod
    def validate_uint256(cls, v: int) -> int:
        return _check_uint256(v)

    @field_serializer("id")
    def serialize_id(self, value: UUID) -> str:
        return str(value)

    # JSON consumers may parse numbers as doubles; keep base units as strings.
    @field_serializer("amount", "platform_fee", "payout_amount")
    def serialize_amount(self, value: int) -> str:
        return str(value)

    @field_serializer(
        "created_at", "updated_at", "escrow_at", "completed_at", "escrow_released_at"
    )
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_STATUSES

    @property
    def is_verifiable(self) -> bool:
        return self.status in VERIFIABLE_STATUSES

    @property
    def is_swept(self) -> bool:
        return self.sweep_transaction_hash is not None

    def mark_settled(
        self,
        *,
        transaction_hash: str,
        status: PaymentStatus,
        payer_address: Optional[str],
        payout_amount: int,
        platform_fee: int,
    ) -> None:
        """Record a successful verification."""
        if status not in (PaymentStatus.ESCROW, PaymentStatus.COMPLETED):
            raise ValueError(f"Cannot settle a payment into status {status.value}")
        if not self.is_verifiable:
            raise InvalidPaymentStateError(
                f"Payment is {self.status.value}; only pending payments can settle",
                payment_id=self.id,
            )
        now = _utcnow()
        self.status = status
        self.transaction_hash = transaction_hash
        self.payer_address = payer_address
        self.payout_amount = payout_amount
        self.platform_fee = platform_fee
        self.failure_reason = None
        self.escrow_at = now
        if status == PaymentStatus.COMPLETED:
            self.completed_at = now
        self.updated_at = now

    def mark_failed(self, reason: str, *, attempted_hash: str) -> None:
        """Record a terminal verification failure; the settled hash stays empty."""
        if not self.is_verifiable:
            raise InvalidPaymentStateError(
                f"Payment is {self.status.value}; cannot mark as failed",
                payment_id=self.id,
            )
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason
        self.failed_transaction_hash = attempted_hash
        self.updated_at = _utcnow()

    def reset_for_retry(self) -> None:
        """Clear stale transaction linkage so verification can start over."""
        if self.status != PaymentStatus.FAILED:
            raise InvalidPaymentStateError(
                f"Only failed payments can be retried; payment is {self.status.value}",
                payment_id=self.id,
            )
        self.status = PaymentStatus.PENDING
        self.transaction_hash = None
        self.failed_transaction_hash = None
        self.payer_address = None
        self.failure_reason = None
        self.updated_at = _utcnow()

    def record_release(
        self,
        *,
        sweep_transaction_hash: str,
        release_type: ReleaseType,
        payout_amount: int,
        platform_fee: int,
    ) -> None:
        """Record payout bookkeeping after a sweep. Status is left unchanged."""
        if self.status not in SWEEPABLE_STATUSES:
            raise InvalidPaymentStateError(
                f"Payment is {self.status.value}; sweep requires escrow or completed",
                payment_id=self.id,
            )
        if self.is_swept:
            raise InvalidPaymentStateError(
                "Payment has already been swept", payment_id=self.id
            )
        self.sweep_transaction_hash = sweep_transaction_hash
        self.release_type = release_type
        self.payout_amount = payout_amount
        self.platform_fee = platform_fee
        self.escrow_released_at = _utcnow()
        self.updated_at = self.escrow_released_at


class DepositAddress(BaseModel):
    """Deterministic deposit address for one payment on one chain."""

    model_config = ConfigDict(frozen=True)

    chain_id: int
    address: str
    salt: str


class LogEntry(BaseModel):
    """A raw event log as returned in a transaction receipt."""

    address: str
    topics: list[str]
    data: str = "0x"
    log_index: int = 0


class TransactionReceipt(BaseModel):
    """Chain-agnostic view of an EVM transaction receipt."""

    transaction_hash: str
    block_number: int
    status: int
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    logs: list[LogEntry] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class SettlementEvidence(str, Enum):
    SWEPT_EVENT = "swept_event"
    TOKEN_TRANSFER = "token_transfer"


class Settlement(BaseModel):
    """Reconciled on-chain facts backing a verified payment."""

    transaction_hash: str
    chain_id: int
    block_number: int
    confirmations: int
    evidence: SettlementEvidence
    deposit_address: str
    token_address: str
    total_amount: int
    merchant_amount: int
    platform_fee: int
    merchant_wallet: Optional[str] = None
    payer_address: Optional[str] = None

    @field_serializer("total_amount", "merchant_amount", "platform_fee")
    def serialize_amount(self, value: int) -> str:
        return str(value)


class VerificationOutcome(str, Enum):
    VERIFIED = "verified"
    ALREADY_COMPLETED = "already_completed"
    PENDING = "pending"


class VerificationResult(BaseModel):
    """Discriminated outcome of a verification call.

    Terminal failures are raised as typed errors; retryable conditions are
    returned with ``error_kind`` set so pollers can re-invoke later.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    outcome: VerificationOutcome
    payment_id: UUID
    transaction_hash: str
    chain_id: int
    status: PaymentStatus
    already_completed: bool = False
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    retryable: bool = False
    confirmations: Optional[int] = None
    required_confirmations: Optional[int] = None
    merchant_payout: Optional[int] = None
    platform_fee: Optional[int] = None
    settlement: Optional[Settlement] = None

    @field_serializer("payment_id")
    def serialize_payment_id(self, value: UUID) -> str:
        return str(value)

    @field_serializer("merchant_payout", "platform_fee")
    def serialize_amount(self, value: Optional[int]) -> Optional[str]:
        return str(value) if value is not None else None

    @property
    def success(self) -> bool:
        return self.outcome in (
            VerificationOutcome.VERIFIED,
            VerificationOutcome.ALREADY_COMPLETED,
        )

    @classmethod
    def pending(
        cls, payment: Payment, transaction_hash: str, error: SettlementError
    ) -> "VerificationResult":
        confirmations = getattr(error, "confirmations", None)
        required = getattr(error, "required", None)
        return cls(
            outcome=VerificationOutcome.PENDING,
            payment_id=payment.id,
            transaction_hash=transaction_hash,
            chain_id=payment.chain_id,
            status=payment.status,
            error_kind=error.kind,
            error_message=error.message,
            retryable=True,
            confirmations=confirmations,
            required_confirmations=required,
        )

    def raise_for_status(self) -> None:
        """Raise the retryable error carried by a pending result."""
        if self.outcome != VerificationOutcome.PENDING:
            return
        if self.error_kind == ErrorKind.CONFIRMATION_PENDING:
            raise ConfirmationPendingError(
                self.confirmations or 0, self.required_confirmations or 0
            )
        raise ChainRpcError(self.error_message or "Chain RPC unavailable")


class SweepResult(BaseModel):
    payment_id: UUID
    chain_id: int
    sweep_transaction_hash: str
    fee_bps: int
    payout_amount: int
    platform_fee: int

    @field_serializer("payment_id")
    def serialize_payment_id(self, value: UUID) -> str:
        return str(value)

    @field_serializer("payout_amount", "platform_fee")
    def serialize_amount(self, value: int) -> str:
        return str(value)


class SweepItemResult(BaseModel):
    """Per-item outcome of a batch sweep."""

    payment_id: UUID
    success: bool
    sweep_transaction_hash: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @field_serializer("payment_id")
    def serialize_payment_id(self, value: UUID) -> str:
        return str(value)
