"""Payment ledger repository implementation over a storage abstraction."""

from __future__ import annotations

from typing import Any, List, Optional, Union
from uuid import UUID

from ..domain.entities import Payment, PaymentStatus
from ..domain.payment_repository import PaymentRepository
from .scripts import LEDGER_SCRIPTS
from .storage import KeyValueStore

_INDEX_KEY = "payments:all"


async def register_ledger_scripts(store: KeyValueStore) -> None:
    for name, script in LEDGER_SCRIPTS.items():
        await store.register_script(name, script)


def _decode_script_result(result: Any) -> tuple[int, Optional[str]]:
    # result is a list-like: [code, json_or_empty]
    code = int(result[0]) if result and result[0] not in (None, "") else 0
    payload = result[1] if len(result) > 1 and result[1] not in (None, "") else None
    return code, payload


class PaymentRepositoryImpl(PaymentRepository):
    """Payment repository using a KeyValueStore.

    Keys:
      - payment:{id} -> Payment JSON (authoritative)
      - payment:reference:{reference} -> payment id
      - payments:all -> sorted set of ids by creation time
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _payment_key(payment_id: Union[UUID, str]) -> str:
        return f"payment:{payment_id}"

    @staticmethod
    def _reference_key(reference: str) -> str:
        return f"payment:reference:{reference}"

    async def create(self, payment: Payment) -> Payment:
        result = await self.store.run_script(
            "create_payment",
            keys=[
                self._payment_key(payment.id),
                self._reference_key(payment.reference),
                _INDEX_KEY,
            ],
            args=[
                payment.model_dump_json(),
                str(payment.id),
                str(payment.created_at.timestamp()),
            ],
        )
        code, _ = _decode_script_result(result)
        if code != 1:
            raise ValueError("Payment with this reference already exists")
        return payment

    async def get_by_id(self, payment_id: Union[UUID, str]) -> Optional[Payment]:
        data = await self.store.get(self._payment_key(payment_id))
        if not data:
            return None
        return Payment.model_validate_json(data)

    async def get_by_reference(self, reference: str) -> Optional[Payment]:
        payment_id = await self.store.get(self._reference_key(reference))
        if not payment_id:
            return None
        return await self.get_by_id(payment_id)

    async def get_all(self, skip: int = 0, limit: int = 100) -> List[Payment]:
        ids: list[str] = await self.store.zrevrange(_INDEX_KEY, skip, skip + limit - 1)
        payments: List[Payment] = []
        for payment_id in ids:
            payment = await self.get_by_id(payment_id)
            if payment is not None:
                payments.append(payment)
        return payments

    async def compare_and_set(
        self,
        payment: Payment,
        *,
        expected_status: PaymentStatus,
        expected_transaction_hash: Optional[str],
    ) -> tuple[int, Optional[Payment]]:
        result = await self.store.run_script(
            "compare_and_set_payment",
            keys=[self._payment_key(payment.id)],
            args=[
                payment.model_dump_json(),
                expected_status.value,
                expected_transaction_hash or "",
            ],
        )
        code, payload = _decode_script_result(result)

        if code == 1:
            if payload is None:
                raise RuntimeError(
                    "Unexpected: compare_and_set_payment returned success but no payload"
                )
            return 1, Payment.model_validate_json(payload)
        if code == 0:
            return 0, Payment.model_validate_json(payload) if payload else None
        return 2, None
