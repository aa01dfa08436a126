"""Use case: move settled funds from deposit addresses to merchants."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Optional, Sequence, Union
from uuid import UUID

from eth_abi.exceptions import DecodingError

from ...domain.amounts import split_fee, validate_fee_bps
from ...domain.chains import ChainConfig
from ...domain.entities import (
    SWEEPABLE_STATUSES,
    Payment,
    ReleaseType,
    SweepItemResult,
    SweepResult,
    TransactionReceipt,
)
from ...domain.errors import (
    ChainRpcError,
    InvalidPaymentStateError,
    PaymentNotFoundError,
    SettlementError,
    SettlementEvidenceError,
)
from ...domain.payment_repository import PaymentRepository
from ...domain.shared import ChainClientProtocol
from ..chain_registry import ChainRegistry
from ..deposit_address import DepositAddressResolver, hex_to_salt
from ..dtos import SweepRequestDTO
from ..settlement_events import SweptEvent, decode_swept_events

logger = logging.getLogger(__name__)


class SweepCoordinator:
    """Sweeps escrowed deposits through the factory and records the release.

    State is checked before any chain call, so an unsettled payment never
    costs a transaction. The release bookkeeping is written with a
    compare-and-set that leaves the verification status untouched.
    """

    def __init__(
        self,
        payment_repository: PaymentRepository,
        registry: ChainRegistry,
        resolver: DepositAddressResolver,
        chain_client: ChainClientProtocol,
    ):
        self.payment_repository = payment_repository
        self.registry = registry
        self.resolver = resolver
        self.chain_client = chain_client
        self._in_flight: set[str] = set()

    async def sweep(
        self,
        payment_id: Union[UUID, str],
        *,
        fee_bps: Optional[int] = None,
        release_type: ReleaseType = ReleaseType.MANUAL,
    ) -> SweepResult:
        payment, chain = await self._load_sweepable(payment_id, fee_bps)
        key = str(payment.id)
        if key in self._in_flight:
            raise InvalidPaymentStateError(
                "Sweep already in progress", payment_id=payment.id
            )

        self._in_flight.add(key)
        try:
            # Resolved before sending: nothing may fail between mining and recording
            effective_bps = await self._effective_fee_bps(chain, fee_bps)
            receipt = await self.chain_client.sweep(
                chain,
                hex_to_salt(payment.salt),
                payment.token_address,
                payment.merchant_wallet,
                fee_bps,
            )
            if not receipt.succeeded:
                raise SettlementEvidenceError(
                    "Sweep transaction reverted",
                    transaction_hash=receipt.transaction_hash,
                )
            return await self._record_release(
                payment, chain, receipt, effective_bps, release_type
            )
        finally:
            self._in_flight.discard(key)

    async def batch_sweep(
        self, requests: Sequence[SweepRequestDTO]
    ) -> list[SweepItemResult]:
        """Sweep several payments, one factory call per chain.

        Every request gets its own result, in request order. Invalid items are
        rejected without touching the chain. If a chain's batch transaction
        fails to send or reverts, its items are retried one by one so a single
        bad deposit cannot block the others.
        """
        results: list[Optional[SweepItemResult]] = [None] * len(requests)
        groups: dict[int, list[tuple[int, SweepRequestDTO, Payment]]] = defaultdict(
            list
        )
        chains: dict[int, ChainConfig] = {}
        seen: set[str] = set()
        claimed: set[str] = set()

        try:
            for index, request in enumerate(requests):
                key = str(request.payment_id)
                if key in seen or key in self._in_flight:
                    results[index] = SweepItemResult(
                        payment_id=request.payment_id,
                        success=False,
                        error_kind=InvalidPaymentStateError.kind,
                        error_message="Payment is already being swept",
                    )
                    continue
                seen.add(key)
                self._in_flight.add(key)
                claimed.add(key)
                try:
                    payment, chain = await self._load_sweepable(
                        request.payment_id, request.fee_bps
                    )
                except SettlementError as e:
                    self._in_flight.discard(key)
                    claimed.discard(key)
                    results[index] = _failed_item(request.payment_id, e)
                    continue
                chains[chain.chain_id] = chain
                groups[chain.chain_id].append((index, request, payment))

            for chain_id, items in groups.items():
                for index, item in await self._sweep_group(chains[chain_id], items):
                    results[index] = item
        finally:
            self._in_flight.difference_update(claimed)

        return [r for r in results if r is not None]

    async def _sweep_group(
        self,
        chain: ChainConfig,
        items: list[tuple[int, SweepRequestDTO, Payment]],
    ) -> list[tuple[int, SweepItemResult]]:
        try:
            fees = await self._resolve_fees(chain, items)
        except ChainRpcError as e:
            logger.warning(
                "Fee lookup on chain %s failed; nothing swept: %s", chain.chain_id, e.message
            )
            return [(index, _failed_item(payment.id, e)) for index, _, payment in items]

        if len(items) > 1:
            try:
                receipt = await self._send_batch(chain, items, fees)
            except ChainRpcError as e:
                if e.details.get("transaction_hash"):
                    # Sent but outcome unknown; sending again could sweep twice
                    logger.error(
                        "Batch sweep %s on chain %s unconfirmed: %s",
                        e.details["transaction_hash"],
                        chain.chain_id,
                        e.message,
                    )
                    return [
                        (index, _failed_item(payment.id, e))
                        for index, _, payment in items
                    ]
                self._log_fallback(chain, items, e)
            except SettlementEvidenceError as e:
                self._log_fallback(chain, items, e)
            else:
                return await self._record_batch(chain, items, receipt, fees)

        out: list[tuple[int, SweepItemResult]] = []
        for position, (index, request, payment) in enumerate(items):
            out.append(
                (
                    index,
                    await self._sweep_single_item(
                        chain, request, payment, fees[position]
                    ),
                )
            )
        return out

    async def _resolve_fees(
        self,
        chain: ChainConfig,
        items: list[tuple[int, SweepRequestDTO, Payment]],
    ) -> list[int]:
        default_bps: Optional[int] = None
        if any(request.fee_bps is None for _, request, _ in items):
            default_bps = await self.chain_client.get_default_fee_bps(chain)
        return [
            request.fee_bps if request.fee_bps is not None else default_bps
            for _, request, _ in items
        ]

    async def _send_batch(
        self,
        chain: ChainConfig,
        items: list[tuple[int, SweepRequestDTO, Payment]],
        fees: list[int],
    ) -> TransactionReceipt:
        overrides = (
            fees
            if any(request.fee_bps is not None for _, request, _ in items)
            else None
        )
        receipt = await self.chain_client.batch_sweep(
            chain,
            [hex_to_salt(payment.salt) for _, _, payment in items],
            [payment.token_address for _, _, payment in items],
            [payment.merchant_wallet for _, _, payment in items],
            overrides,
        )
        if not receipt.succeeded:
            raise SettlementEvidenceError(
                "Batch sweep transaction reverted",
                transaction_hash=receipt.transaction_hash,
            )
        return receipt

    async def _record_batch(
        self,
        chain: ChainConfig,
        items: list[tuple[int, SweepRequestDTO, Payment]],
        receipt: TransactionReceipt,
        fees: list[int],
    ) -> list[tuple[int, SweepItemResult]]:
        out: list[tuple[int, SweepItemResult]] = []
        for position, (index, request, payment) in enumerate(items):
            try:
                result = await self._record_release(
                    payment, chain, receipt, fees[position], request.release_type
                )
            except SettlementError as e:
                out.append((index, _failed_item(payment.id, e)))
                continue
            out.append(
                (
                    index,
                    SweepItemResult(
                        payment_id=payment.id,
                        success=True,
                        sweep_transaction_hash=result.sweep_transaction_hash,
                    ),
                )
            )
        return out

    @staticmethod
    def _log_fallback(
        chain: ChainConfig,
        items: list[tuple[int, SweepRequestDTO, Payment]],
        error: SettlementError,
    ) -> None:
        logger.warning(
            "Batch sweep of %d payments on chain %s failed (%s); "
            "falling back to individual sweeps",
            len(items),
            chain.chain_id,
            error.message,
        )

    async def _sweep_single_item(
        self,
        chain: ChainConfig,
        request: SweepRequestDTO,
        payment: Payment,
        fee_bps: int,
    ) -> SweepItemResult:
        try:
            receipt = await self.chain_client.sweep(
                chain,
                hex_to_salt(payment.salt),
                payment.token_address,
                payment.merchant_wallet,
                request.fee_bps,
            )
            if not receipt.succeeded:
                raise SettlementEvidenceError(
                    "Sweep transaction reverted",
                    transaction_hash=receipt.transaction_hash,
                )
            result = await self._record_release(
                payment, chain, receipt, fee_bps, request.release_type
            )
        except SettlementError as e:
            logger.warning("Sweep of payment %s failed: %s", payment.id, e.message)
            return _failed_item(payment.id, e)
        return SweepItemResult(
            payment_id=payment.id,
            success=True,
            sweep_transaction_hash=result.sweep_transaction_hash,
        )

    async def _load_sweepable(
        self, payment_id: Union[UUID, str], fee_bps: Optional[int]
    ) -> tuple[Payment, ChainConfig]:
        if fee_bps is not None:
            try:
                validate_fee_bps(fee_bps)
            except ValueError as e:
                raise InvalidPaymentStateError(str(e), payment_id=payment_id) from e

        payment = await self.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundError("Payment not found", payment_id=payment_id)
        if payment.status not in SWEEPABLE_STATUSES:
            raise InvalidPaymentStateError(
                f"Payment is {payment.status.value}; sweep requires escrow or completed",
                payment_id=payment.id,
            )
        if payment.is_swept:
            raise InvalidPaymentStateError(
                f"Payment already swept by {payment.sweep_transaction_hash}",
                payment_id=payment.id,
            )

        chain = self.registry.resolve(payment.chain_id)
        expected = self.resolver.derive_address(chain.chain_id, payment.reference)
        if expected.address.lower() != payment.deposit_address.lower():
            raise InvalidPaymentStateError(
                "Stored deposit address does not match the payment reference",
                payment_id=payment.id,
            )
        return payment, chain

    async def _effective_fee_bps(
        self, chain: ChainConfig, fee_bps: Optional[int]
    ) -> int:
        if fee_bps is not None:
            return fee_bps
        return await self.chain_client.get_default_fee_bps(chain)

    async def _record_release(
        self,
        payment: Payment,
        chain: ChainConfig,
        receipt: TransactionReceipt,
        fee_bps: int,
        release_type: ReleaseType,
    ) -> SweepResult:
        event = _swept_event_for(receipt, chain, payment)
        if event is not None:
            payout_amount, platform_fee = event.merchant_amount, event.platform_fee
        else:
            payout_amount, platform_fee = split_fee(payment.amount, fee_bps)

        updated = payment.model_copy(deep=True)
        updated.record_release(
            sweep_transaction_hash=receipt.transaction_hash.lower(),
            release_type=release_type,
            payout_amount=payout_amount,
            platform_fee=platform_fee,
        )
        code, current = await self.payment_repository.compare_and_set(
            updated,
            expected_status=payment.status,
            expected_transaction_hash=payment.transaction_hash,
        )
        if code == 2:
            raise PaymentNotFoundError("Payment not found", payment_id=payment.id)
        if code == 0:
            logger.error(
                "Sweep %s of payment %s could not be recorded; ledger changed",
                receipt.transaction_hash,
                payment.id,
            )
            raise InvalidPaymentStateError(
                "Payment changed while sweeping",
                payment_id=payment.id,
                sweep_transaction_hash=receipt.transaction_hash,
                current_sweep=current.sweep_transaction_hash if current else None,
            )

        logger.info(
            "Swept payment %s on chain %s in %s (payout %d, fee %d)",
            payment.id,
            chain.chain_id,
            receipt.transaction_hash,
            payout_amount,
            platform_fee,
        )
        return SweepResult(
            payment_id=payment.id,
            chain_id=chain.chain_id,
            sweep_transaction_hash=updated.sweep_transaction_hash or "",
            fee_bps=fee_bps,
            payout_amount=payout_amount,
            platform_fee=platform_fee,
        )


def _swept_event_for(
    receipt: TransactionReceipt, chain: ChainConfig, payment: Payment
) -> Optional[SweptEvent]:
    try:
        events = decode_swept_events(receipt, chain.factory_address)
    except (DecodingError, ValueError):
        logger.warning(
            "Undecodable Swept event in %s; using computed split",
            receipt.transaction_hash,
        )
        return None
    for event in events:
        if event.salt == payment.salt.lower():
            return event
    return None


def _failed_item(payment_id: Union[UUID, str], error: SettlementError) -> SweepItemResult:
    return SweepItemResult(
        payment_id=payment_id,
        success=False,
        error_kind=error.kind,
        error_message=error.message,
    )
