"""Notifier that records outcomes for assertions."""

from __future__ import annotations

from chainsettle.domain.entities import Payment, Settlement
from chainsettle.domain.errors import SettlementError


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.successes: list[tuple[Payment, Settlement]] = []
        self.failures: list[tuple[Payment, SettlementError]] = []
        self.fail = fail

    async def notify_success(self, payment: Payment, settlement: Settlement) -> None:
        if self.fail:
            raise RuntimeError("notification backend down")
        self.successes.append((payment, settlement))

    async def notify_failure(self, payment: Payment, error: SettlementError) -> None:
        if self.fail:
            raise RuntimeError("notification backend down")
        self.failures.append((payment, error))
