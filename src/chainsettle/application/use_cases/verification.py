"""Use case: verify that an on-chain transaction settles a pending payment."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Coroutine, Optional, Union
from uuid import UUID

from eth_abi.exceptions import DecodingError

from ...domain.amounts import ensure_uint256, split_fee, within_tolerance
from ...domain.chains import ChainConfig
from ...domain.entities import (
    Payment,
    PaymentStatus,
    ReleaseType,
    Settlement,
    SettlementEvidence,
    TransactionReceipt,
    VerificationOutcome,
    VerificationResult,
)
from ...domain.errors import (
    AmountMismatchError,
    ChainMismatchError,
    ChainRpcError,
    ConfirmationPendingError,
    HashMismatchError,
    InvalidPaymentStateError,
    NumericOverflowError,
    PaymentNotFoundError,
    SettlementError,
    SettlementEvidenceError,
)
from ...domain.payment_repository import PaymentRepository
from ...domain.shared import ChainClientProtocol, NotifierProtocol
from ..chain_registry import ChainIdLike, ChainRegistry, normalize_chain_id
from ..settlement_events import decode_swept_events, decode_transfers_to
from ..verification_cache import VerificationCache, VerificationKey

logger = logging.getLogger(__name__)

_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def normalize_transaction_hash(transaction_hash: str) -> str:
    if not isinstance(transaction_hash, str) or not _TX_HASH_RE.match(
        transaction_hash.strip()
    ):
        raise ValueError(f"Invalid transaction hash: {transaction_hash!r}")
    return transaction_hash.strip().lower()


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


class TransactionVerifier:
    """Reconciles a claimed transaction against a payment record, exactly once.

    Algorithm:
      1. Load the payment (merchant-scoped).
      2. Settled payments short-circuit: same hash is idempotent success,
         a different hash is rejected.
      3. Claim the (hash, payment) pair in the verification cache; late
         callers join the in-flight result.
      4-5. Resolve the chain and wait (bounded) for enough confirmations.
      6. Decode the settlement event and reconcile amounts.
      7. Compare-and-set the ledger, cache the result, notify.
    """

    def __init__(
        self,
        payment_repository: PaymentRepository,
        registry: ChainRegistry,
        cache: VerificationCache,
        chain_client: ChainClientProtocol,
        notifier: NotifierProtocol,
        *,
        confirmation_timeout: float = 30.0,
        poll_interval: float = 5.0,
        rpc_retry_backoff: float = 1.0,
        amount_tolerance: int = 0,
        join_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.payment_repository = payment_repository
        self.registry = registry
        self.cache = cache
        self.chain_client = chain_client
        self.notifier = notifier
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.rpc_retry_backoff = rpc_retry_backoff
        self.amount_tolerance = amount_tolerance
        self.join_timeout = join_timeout
        self._sleep = sleep
        self._background_tasks: set[asyncio.Task[None]] = set()

    async def verify(
        self,
        transaction_hash: str,
        chain_id: ChainIdLike,
        merchant_id: str,
        payment_id: Union[UUID, str],
    ) -> VerificationResult:
        """Verify ``transaction_hash`` against the payment.

        Returns a result for successes and for retryable conditions
        (confirmations pending, RPC unavailable). Terminal failures raise a
        ``SettlementError`` subclass.
        """
        tx_hash = normalize_transaction_hash(transaction_hash)
        claimed_chain_id = normalize_chain_id(chain_id)

        payment = await self.payment_repository.get_by_id(payment_id)
        if payment is None or payment.merchant_id != merchant_id:
            raise PaymentNotFoundError("Payment not found", payment_id=payment_id)

        if payment.is_settled:
            return self._settled_result(payment, tx_hash)

        if payment.chain_id != claimed_chain_id:
            raise ChainMismatchError(
                f"Payment expects chain {payment.chain_id}, got {claimed_chain_id}",
                payment_id=payment.id,
            )
        if not payment.is_verifiable:
            raise InvalidPaymentStateError(
                f"Payment is {payment.status.value} and cannot be verified",
                payment_id=payment.id,
            )

        claim = self.cache.get_or_create(VerificationKey.of(tx_hash, payment.id))
        if not claim.is_new:
            logger.debug("Joining verification of %s for %s", tx_hash, payment.id)
            return await claim.wait(self.join_timeout)

        try:
            result = await self._verify_uncached(payment, tx_hash)
        except SettlementError as e:
            claim.reject(e, retain=not e.retryable)
            raise
        except BaseException as e:
            claim.reject(
                ChainRpcError(f"Verification aborted: {e!r}", payment_id=payment.id),
                retain=False,
            )
            raise

        claim.resolve(result, retain=result.success)
        return result

    async def drain_notifications(self) -> None:
        """Wait for in-flight notification deliveries (used at shutdown)."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    def _settled_result(self, payment: Payment, tx_hash: str) -> VerificationResult:
        if payment.transaction_hash != tx_hash:
            error = HashMismatchError(
                "Payment already completed with a different transaction hash",
                payment_id=payment.id,
                claimed=tx_hash,
            )
            logger.warning(
                "Rejected hash %s for payment %s settled by %s",
                tx_hash,
                payment.id,
                payment.transaction_hash,
            )
            self._dispatch(self.notifier.notify_failure(payment, error))
            raise error
        return VerificationResult(
            outcome=VerificationOutcome.ALREADY_COMPLETED,
            payment_id=payment.id,
            transaction_hash=tx_hash,
            chain_id=payment.chain_id,
            status=payment.status,
            already_completed=True,
            merchant_payout=payment.payout_amount,
            platform_fee=payment.platform_fee,
        )

    async def _verify_uncached(
        self, payment: Payment, tx_hash: str
    ) -> VerificationResult:
        chain = self.registry.resolve(payment.chain_id)
        required = self.registry.required_confirmations(chain.chain_id)

        try:
            receipt, confirmations = await self._await_confirmations(
                chain, tx_hash, required
            )
        except (ConfirmationPendingError, ChainRpcError) as e:
            logger.info("Verification of %s pending: %s", payment.id, e.message)
            self._dispatch(self.notifier.notify_failure(payment, e))
            return VerificationResult.pending(payment, tx_hash, e)

        try:
            settlement = self._reconcile(payment, chain, receipt, confirmations)
        except (SettlementEvidenceError, AmountMismatchError, NumericOverflowError) as e:
            await self._record_failure(payment, tx_hash, e)
            raise

        return await self._record_success(payment, settlement)

    async def _await_confirmations(
        self, chain: ChainConfig, tx_hash: str, required: int
    ) -> tuple[TransactionReceipt, int]:
        """Poll until ``required`` confirmations or the confirmation timeout.

        RPC failures inside the window are retried with exponential backoff
        (capped at the poll interval); the last one is raised at the deadline.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout
        rpc_failures = 0
        while True:
            confirmations = 0
            rpc_error: Optional[ChainRpcError] = None
            try:
                receipt = await self.chain_client.get_transaction_receipt(
                    chain, tx_hash
                )
                if receipt is not None:
                    head = await self.chain_client.get_block_number(chain)
                    confirmations = max(0, head - receipt.block_number + 1)
                    if confirmations >= required:
                        return receipt, confirmations
            except ChainRpcError as e:
                rpc_error = e
                rpc_failures += 1
                delay = min(
                    self.rpc_retry_backoff * 2 ** (rpc_failures - 1), self.poll_interval
                )
                logger.info(
                    "RPC error while confirming %s (failure %d), retrying in %.1fs: %s",
                    tx_hash,
                    rpc_failures,
                    delay,
                    e.message,
                )
            else:
                rpc_failures = 0
                delay = self.poll_interval

            remaining = deadline - loop.time()
            if remaining <= 0:
                if rpc_error is not None:
                    raise rpc_error
                raise ConfirmationPendingError(confirmations, required)
            await self._sleep(min(delay, remaining))

    def _reconcile(
        self,
        payment: Payment,
        chain: ChainConfig,
        receipt: TransactionReceipt,
        confirmations: int,
    ) -> Settlement:
        if not receipt.succeeded:
            raise SettlementEvidenceError(
                "Transaction reverted on-chain", transaction_hash=receipt.transaction_hash
            )

        try:
            swept = [
                event
                for event in decode_swept_events(receipt, chain.factory_address)
                if event.salt == payment.salt.lower()
                and _same_address(event.deposit_address, payment.deposit_address)
            ]
            transfers = (
                []
                if swept
                else [
                    transfer
                    for transfer in decode_transfers_to(receipt, payment.deposit_address)
                    if _same_address(transfer.token, payment.token_address)
                ]
            )
        except (DecodingError, ValueError) as e:
            raise SettlementEvidenceError(
                f"Could not decode settlement event: {e}",
                transaction_hash=receipt.transaction_hash,
            ) from e

        tolerance = self.amount_tolerance
        if swept:
            for event in swept:
                if not _same_address(event.token, payment.token_address):
                    raise AmountMismatchError(
                        f"Swept token {event.token} does not match {payment.token_address}"
                    )
                if not _same_address(event.merchant, payment.merchant_wallet):
                    raise AmountMismatchError(
                        f"Swept to merchant {event.merchant}, expected {payment.merchant_wallet}"
                    )
            total = ensure_uint256(sum(e.amount for e in swept), field="total amount")
            platform_fee = ensure_uint256(
                sum(e.platform_fee for e in swept), field="platform fee"
            )
            if platform_fee > total:
                raise AmountMismatchError("Platform fee exceeds swept amount")
            merchant_amount = total - platform_fee
            evidence = SettlementEvidence.SWEPT_EVENT
            payer = payment.payer_address
        elif transfers:
            total = ensure_uint256(
                sum(t.amount for t in transfers), field="total amount"
            )
            merchant_amount, platform_fee = split_fee(total, payment.platform_fee_bps)
            senders = {t.sender.lower() for t in transfers}
            if payment.payer_address and senders != {payment.payer_address.lower()}:
                raise AmountMismatchError(
                    f"Transfer sender does not match expected payer {payment.payer_address}"
                )
            evidence = SettlementEvidence.TOKEN_TRANSFER
            payer = transfers[0].sender
        else:
            raise SettlementEvidenceError(
                "No settlement event for this payment in transaction",
                transaction_hash=receipt.transaction_hash,
            )

        if not within_tolerance(total, payment.amount, tolerance):
            raise AmountMismatchError(
                f"Received {total}, expected {payment.amount}",
                received=total,
                expected=payment.amount,
            )
        if not within_tolerance(platform_fee, payment.platform_fee, tolerance):
            raise AmountMismatchError(
                f"Platform fee {platform_fee}, expected {payment.platform_fee}",
                received=platform_fee,
                expected=payment.platform_fee,
            )
        if not within_tolerance(merchant_amount, payment.payout_amount, tolerance):
            raise AmountMismatchError(
                f"Merchant share {merchant_amount}, expected {payment.payout_amount}",
                received=merchant_amount,
                expected=payment.payout_amount,
            )

        return Settlement(
            transaction_hash=receipt.transaction_hash.lower(),
            chain_id=chain.chain_id,
            block_number=receipt.block_number,
            confirmations=confirmations,
            evidence=evidence,
            deposit_address=payment.deposit_address,
            token_address=payment.token_address,
            total_amount=total,
            merchant_amount=merchant_amount,
            platform_fee=platform_fee,
            merchant_wallet=payment.merchant_wallet,
            payer_address=payer,
        )

    async def _record_success(
        self, payment: Payment, settlement: Settlement
    ) -> VerificationResult:
        status = (
            PaymentStatus.COMPLETED
            if settlement.evidence == SettlementEvidence.SWEPT_EVENT
            else PaymentStatus.ESCROW
        )
        updated = payment.model_copy(deep=True)
        updated.mark_settled(
            transaction_hash=settlement.transaction_hash,
            status=status,
            payer_address=settlement.payer_address,
            payout_amount=settlement.merchant_amount,
            platform_fee=settlement.platform_fee,
        )
        if settlement.evidence == SettlementEvidence.SWEPT_EVENT:
            # The factory already forwarded the funds in this transaction
            updated.record_release(
                sweep_transaction_hash=settlement.transaction_hash,
                release_type=ReleaseType.AUTOMATIC,
                payout_amount=settlement.merchant_amount,
                platform_fee=settlement.platform_fee,
            )

        code, current = await self.payment_repository.compare_and_set(
            updated,
            expected_status=payment.status,
            expected_transaction_hash=None,
        )
        if code == 2:
            raise PaymentNotFoundError("Payment disappeared", payment_id=payment.id)
        if code == 0:
            # Another worker (possibly in another process) wrote first.
            if current is not None and current.is_settled:
                return self._settled_result(current, settlement.transaction_hash)
            raise InvalidPaymentStateError(
                "Payment changed during verification", payment_id=payment.id
            )

        logger.info(
            "Payment %s settled as %s by %s on chain %s",
            payment.id,
            status.value,
            settlement.transaction_hash,
            settlement.chain_id,
        )
        self._dispatch(self.notifier.notify_success(updated, settlement))
        return VerificationResult(
            outcome=VerificationOutcome.VERIFIED,
            payment_id=payment.id,
            transaction_hash=settlement.transaction_hash,
            chain_id=settlement.chain_id,
            status=status,
            confirmations=settlement.confirmations,
            required_confirmations=self.registry.required_confirmations(
                settlement.chain_id
            ),
            merchant_payout=settlement.merchant_amount,
            platform_fee=settlement.platform_fee,
            settlement=settlement,
        )

    async def _record_failure(
        self, payment: Payment, tx_hash: str, error: SettlementError
    ) -> None:
        updated = payment.model_copy(deep=True)
        updated.mark_failed(error.message, attempted_hash=tx_hash)
        code, current = await self.payment_repository.compare_and_set(
            updated,
            expected_status=payment.status,
            expected_transaction_hash=None,
        )
        if code != 1:
            logger.warning(
                "Could not mark payment %s failed; ledger state changed", payment.id
            )
        logger.warning(
            "Verification of %s for payment %s failed: %s",
            tx_hash,
            payment.id,
            error.message,
        )
        self._dispatch(
            self.notifier.notify_failure(updated if code == 1 else current or payment, error)
        )

    def _dispatch(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_notification_done)

    def _on_notification_done(self, task: "asyncio.Task[None]") -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Notification delivery failed", exc_info=exc)
