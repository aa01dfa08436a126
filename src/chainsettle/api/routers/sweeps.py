"""Sweep API routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from prometheus_client import Counter

from ...application.dtos import BatchSweepDTO, SweepRequestDTO
from ...application.use_cases.sweep import SweepCoordinator
from ...domain.entities import SweepItemResult, SweepResult
from ...domain.errors import SettlementError
from ..dependencies import get_sweep_coordinator
from .payments import settlement_http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sweeps", tags=["sweeps"])


sweep_items_total = Counter(
    "sweep_items_total",
    "Payments processed by sweep requests",
    ["status"],
)


@router.post("", response_model=SweepResult)
async def sweep_payment(
    payload: SweepRequestDTO,
    coordinator: SweepCoordinator = Depends(get_sweep_coordinator),
) -> SweepResult:
    """Sweep one escrowed payment to its merchant."""
    try:
        result = await coordinator.sweep(
            payload.payment_id,
            fee_bps=payload.fee_bps,
            release_type=payload.release_type,
        )
    except SettlementError as e:
        sweep_items_total.labels(status="failed").inc()
        raise settlement_http_error(e)
    except Exception as e:
        sweep_items_total.labels(status="failed").inc()
        logger.exception("Sweep of payment %s failed", payload.payment_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to sweep payment: {str(e)}",
        )
    sweep_items_total.labels(status="swept").inc()
    return result


@router.post("/batch", response_model=list[SweepItemResult])
async def batch_sweep_payments(
    payload: BatchSweepDTO,
    coordinator: SweepCoordinator = Depends(get_sweep_coordinator),
) -> list[SweepItemResult]:
    """Sweep several payments; each item reports its own outcome."""
    results = await coordinator.batch_sweep(payload.items)
    for item in results:
        sweep_items_total.labels(status="swept" if item.success else "failed").inc()
    return results
