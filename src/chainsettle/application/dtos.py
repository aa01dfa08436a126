"""Data Transfer Objects for the settlement application layer."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from web3 import Web3

from ..domain.entities import PaymentStatus, ReleaseType


def _checksum(value: str) -> str:
    if not Web3.is_address(value):
        raise ValueError(f"Invalid address: {value}")
    return Web3.to_checksum_address(value)


class OpenPaymentDTO(BaseModel):
    """DTO for opening a payment that expects funds at a deposit address."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "merchant_id": "merchant-42",
                "merchant_wallet": "0x8ba1f109551bD432803012645Ac136ddd64DBA72",
                "chain_id": "8453",
                "token_address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
                "token_symbol": "USDC",
                "amount": "100.00",
            }
        }
    )

    merchant_id: str = Field(..., min_length=1, max_length=100)
    merchant_wallet: str
    chain_id: Union[int, str]
    token_address: str
    token_symbol: Optional[str] = Field(None, max_length=20)
    token_decimals: Optional[int] = Field(None, ge=0, le=77)
    # Human-readable amount; converted exactly to base units
    amount: Union[str, int, Decimal]
    platform_fee_bps: Optional[int] = Field(None, ge=0, le=10_000)
    payer_address: Optional[str] = None
    reference: Optional[str] = Field(None, min_length=1, max_length=64)

    @field_validator("merchant_wallet", "token_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return _checksum(v)

    @field_validator("payer_address")
    @classmethod
    def validate_payer(cls, v: Optional[str]) -> Optional[str]:
        return _checksum(v) if v else None

    @field_validator("amount", mode="before")
    @classmethod
    def reject_float(cls, v: object) -> object:
        if isinstance(v, float):
            raise ValueError("amount must be a string or integer, not a float")
        return v


class PaymentResponseDTO(BaseModel):
    """DTO for returning payment data."""

    id: UUID
    reference: str
    merchant_id: str
    merchant_wallet: str
    payer_address: Optional[str]
    chain_id: int
    token_address: str
    token_symbol: Optional[str]
    token_decimals: int
    amount: int
    platform_fee_bps: int
    platform_fee: int
    payout_amount: int
    deposit_address: str
    salt: str
    status: PaymentStatus
    transaction_hash: Optional[str]
    failed_transaction_hash: Optional[str]
    failure_reason: Optional[str]
    release_type: Optional[ReleaseType]
    sweep_transaction_hash: Optional[str]
    escrow_at: Optional[datetime]
    completed_at: Optional[datetime]
    escrow_released_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]

    @field_serializer("id")
    def serialize_id(self, value: UUID) -> str:
        return str(value)

    @field_serializer("amount", "platform_fee", "payout_amount")
    def serialize_amount(self, value: int) -> str:
        return str(value)

    @field_serializer(
        "escrow_at", "completed_at", "escrow_released_at", "created_at", "updated_at"
    )
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None


class DepositAddressDTO(BaseModel):
    """DTO for returning a derived deposit address."""

    chain_id: int
    reference: str
    deposit_address: str
    salt: str


class VerifyPaymentDTO(BaseModel):
    """DTO for submitting a transaction hash for verification."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "transaction_hash": "0x" + "ab" * 32,
                "chain_id": "0x2105",
                "merchant_id": "merchant-42",
            }
        }
    )

    transaction_hash: str = Field(..., min_length=66, max_length=66)
    chain_id: Union[int, str]
    merchant_id: str = Field(..., min_length=1, max_length=100)


class SweepRequestDTO(BaseModel):
    """DTO for sweeping one settled payment to the merchant wallet."""

    payment_id: UUID
    fee_bps: Optional[int] = Field(None, ge=0, le=10_000)
    release_type: ReleaseType = ReleaseType.MANUAL


class BatchSweepDTO(BaseModel):
    """DTO for sweeping several settled payments at once."""

    items: list[SweepRequestDTO] = Field(..., min_length=1, max_length=200)


class ChainResponseDTO(BaseModel):
    """DTO for returning a supported chain."""

    chain_id: int
    name: str
    factory_address: str
    implementation_address: str
    required_confirmations: int
