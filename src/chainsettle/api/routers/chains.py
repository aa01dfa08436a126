"""Chain and deposit address API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path

from ...application.chain_registry import ChainRegistry
from ...application.dtos import ChainResponseDTO, DepositAddressDTO
from ...application.use_cases.intake import PaymentIntakeService
from ...domain.errors import SettlementError
from ..dependencies import get_chain_registry, get_intake_service
from .payments import settlement_http_error

router = APIRouter(prefix="/chains", tags=["chains"])


@router.get("", response_model=list[ChainResponseDTO])
async def list_chains(
    registry: ChainRegistry = Depends(get_chain_registry),
) -> list[ChainResponseDTO]:
    """List chains with a deployed deposit factory."""
    return [
        ChainResponseDTO(
            chain_id=chain.chain_id,
            name=chain.name,
            factory_address=chain.factory_address,
            implementation_address=chain.implementation_address,
            required_confirmations=chain.required_confirmations,
        )
        for chain in registry.all()
    ]


@router.get(
    "/{chain_id}/deposit-addresses/{reference}", response_model=DepositAddressDTO
)
async def get_deposit_address(
    chain_id: str = Path(..., description="Decimal, 0x-hex or eip155 chain id"),
    reference: str = Path(..., min_length=1, max_length=64),
    intake_service: PaymentIntakeService = Depends(get_intake_service),
) -> DepositAddressDTO:
    try:
        return intake_service.deposit_address_for(chain_id, reference)
    except SettlementError as e:
        raise settlement_http_error(e)
