"""Use cases for opening payments and reading them back."""

from __future__ import annotations

import logging
from typing import Optional, Union
from uuid import UUID

from ...domain.amounts import split_fee, to_base_units
from ...domain.chains import ChainConfig
from ...domain.entities import Payment, generate_reference
from ...domain.errors import PaymentNotFoundError
from ...domain.payment_repository import PaymentRepository
from ...domain.shared import ChainClientProtocol
from ..chain_registry import ChainRegistry
from ..deposit_address import DepositAddressResolver
from ..dtos import DepositAddressDTO, OpenPaymentDTO, PaymentResponseDTO

logger = logging.getLogger(__name__)


class PaymentIntakeService:
    """Service for payment creation and lookup."""

    def __init__(
        self,
        payment_repository: PaymentRepository,
        registry: ChainRegistry,
        resolver: DepositAddressResolver,
        *,
        chain_client: Optional[ChainClientProtocol] = None,
        default_fee_bps: int = 300,
    ):
        self.payment_repository = payment_repository
        self.registry = registry
        self.resolver = resolver
        self.chain_client = chain_client
        self.default_fee_bps = default_fee_bps

    async def open_payment(self, dto: OpenPaymentDTO) -> PaymentResponseDTO:
        """Create a pending payment with its deterministic deposit address."""
        chain = self.registry.resolve(dto.chain_id)
        decimals = await self._token_decimals(chain, dto)
        amount = to_base_units(dto.amount, decimals)
        if amount == 0:
            raise ValueError("Amount must be greater than zero")

        fee_bps = (
            dto.platform_fee_bps
            if dto.platform_fee_bps is not None
            else self.default_fee_bps
        )
        payout_amount, platform_fee = split_fee(amount, fee_bps)

        reference = dto.reference or generate_reference()
        if await self.payment_repository.get_by_reference(reference) is not None:
            raise ValueError("Payment with this reference already exists")

        deposit = self.resolver.derive_address(chain.chain_id, reference)
        payment = Payment(
            reference=reference,
            merchant_id=dto.merchant_id,
            merchant_wallet=dto.merchant_wallet,
            payer_address=dto.payer_address,
            chain_id=chain.chain_id,
            token_address=dto.token_address,
            token_symbol=dto.token_symbol,
            token_decimals=decimals,
            amount=amount,
            platform_fee_bps=fee_bps,
            platform_fee=platform_fee,
            payout_amount=payout_amount,
            deposit_address=deposit.address,
            salt=deposit.salt,
        )
        created = await self.payment_repository.create(payment)
        logger.info(
            "Opened payment %s (%s) on chain %s at %s",
            created.id,
            created.reference,
            created.chain_id,
            created.deposit_address,
        )
        return PaymentResponseDTO(**created.model_dump())

    async def get_payment(
        self, payment_id: Union[UUID, str], merchant_id: Optional[str] = None
    ) -> PaymentResponseDTO:
        payment = await self.payment_repository.get_by_id(payment_id)
        if payment is None or (
            merchant_id is not None and payment.merchant_id != merchant_id
        ):
            raise PaymentNotFoundError("Payment not found", payment_id=payment_id)
        return PaymentResponseDTO(**payment.model_dump())

    async def _token_decimals(self, chain: ChainConfig, dto: OpenPaymentDTO) -> int:
        if dto.token_decimals is not None:
            return dto.token_decimals
        if dto.token_address.lower() in chain.token_decimals:
            return chain.token_decimals[dto.token_address.lower()]
        if self.chain_client is None:
            raise ValueError(
                f"Unknown token {dto.token_address}; token_decimals is required"
            )
        return await self.chain_client.get_token_decimals(chain, dto.token_address)

    def deposit_address_for(
        self, chain_id: Union[int, str], reference: str
    ) -> DepositAddressDTO:
        deposit = self.resolver.derive_address(chain_id, reference)
        return DepositAddressDTO(
            chain_id=deposit.chain_id,
            reference=reference,
            deposit_address=deposit.address,
            salt=deposit.salt,
        )
