"""Protocol interface for settlement notification delivery."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from ..entities import Payment, Settlement
    from ..errors import SettlementError


class NotifierProtocol(Protocol):
    """Receives verification outcomes.

    Calls are fire-and-forget from the verifier's point of view: delivery
    failures are logged and never change a verification result.
    """

    async def notify_success(
        self, payment: "Payment", settlement: "Settlement"
    ) -> None:
        ...

    async def notify_failure(
        self, payment: "Payment", error: "SettlementError"
    ) -> None:
        ...
