"""Payment ledger domain repository interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Union
from uuid import UUID

from .entities import Payment, PaymentStatus


class PaymentRepository(ABC):
    """Abstract repository interface for Payment records."""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """Store a new payment. Raises ValueError if the reference is taken."""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: Union[UUID, str]) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_by_reference(self, reference: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_all(self, skip: int = 0, limit: int = 100) -> List[Payment]:
        """Newest first."""
        pass

    @abstractmethod
    async def compare_and_set(
        self,
        payment: Payment,
        *,
        expected_status: PaymentStatus,
        expected_transaction_hash: Optional[str],
    ) -> tuple[int, Optional[Payment]]:
        """
        Atomically replace the stored payment if it is still in the expected state.

        Returns:
          (1, payment) -> stored (success)
          (0, current) -> rejected, stored payment changed in the meantime
          (2, None) -> payment missing
        """
        pass
