"""Single-flight, time-bounded cache of verification results.

When several callers race to verify the same ``(transaction_hash, payment_id)``
pair, only the first one gets a new claim and performs the reconciliation;
the others join the in-flight result. Completed entries expire after a fixed
TTL regardless of outcome.

The cache is process-local. Cross-process exclusivity comes from the ledger's
compare-and-set, not from here.
"""

from __future__ import annotations

import asyncio
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, NamedTuple, Optional, Union
from uuid import UUID

from ..domain.entities import VerificationResult


class VerificationKey(NamedTuple):
    transaction_hash: str
    payment_id: str

    @classmethod
    def of(cls, transaction_hash: str, payment_id: Union[UUID, str]) -> "VerificationKey":
        return cls(transaction_hash.lower(), str(payment_id))


@dataclass
class _Entry:
    future: "Future[VerificationResult]"
    created_at: float
    expires_at: float


@dataclass
class CacheClaim:
    """Handle returned by ``VerificationCache.get_or_create``.

    The owner of a new claim must call ``resolve`` or ``reject`` exactly once.
    """

    key: VerificationKey
    is_new: bool
    _future: "Future[VerificationResult]"
    _cache: "VerificationCache" = field(repr=False)

    @property
    def done(self) -> bool:
        return self._future.done()

    async def wait(self, timeout: Optional[float] = None) -> VerificationResult:
        """Return the shared result, re-raising the shared error if it failed."""
        wrapped = asyncio.wrap_future(self._future)
        if timeout is None:
            return await wrapped
        return await asyncio.wait_for(asyncio.shield(wrapped), timeout)

    def resolve(self, result: VerificationResult, *, retain: bool = True) -> None:
        self._cache._complete(self, result=result, retain=retain)

    def reject(self, error: BaseException, *, retain: bool) -> None:
        self._cache._complete(self, error=error, retain=retain)


class VerificationCache:
    """Thread-safe map of verification keys to shared futures."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        *,
        failure_ttl_seconds: float = 30.0,
        max_entries: Optional[int] = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self.failure_ttl_seconds = min(failure_ttl_seconds, ttl_seconds)
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[VerificationKey, _Entry] = {}
        self._lock = threading.Lock()

    def get_or_create(self, key: VerificationKey) -> CacheClaim:
        """Claim ``key`` or join the existing entry for it."""
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            entry = self._entries.get(key)
            if entry is not None:
                return CacheClaim(key, False, entry.future, self)

            future: "Future[VerificationResult]" = Future()
            self._entries[key] = _Entry(
                future=future, created_at=now, expires_at=now + self.ttl_seconds
            )
            self._enforce_size()
            return CacheClaim(key, True, future, self)

    def peek(self, key: VerificationKey) -> Optional[VerificationResult]:
        """Return a completed successful result without claiming."""
        with self._lock:
            self._purge_expired(self._clock())
            entry = self._entries.get(key)
        if entry is None or not entry.future.done():
            return None
        if entry.future.exception() is not None:
            return None
        return entry.future.result()

    def evict(self, key: VerificationKey) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def evict_payment(self, payment_id: Union[UUID, str]) -> int:
        """Drop every entry for a payment, e.g. after a retry reset."""
        payment_key = str(payment_id)
        with self._lock:
            stale = [k for k in self._entries if k.payment_id == payment_key]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._entries)

    def _complete(
        self,
        claim: CacheClaim,
        *,
        result: Optional[VerificationResult] = None,
        error: Optional[BaseException] = None,
        retain: bool,
    ) -> None:
        if not claim.is_new:
            raise RuntimeError("Only the claim owner can complete a verification")
        with self._lock:
            entry = self._entries.get(claim.key)
            owned = entry is not None and entry.future is claim._future
            if owned:
                if not retain:
                    del self._entries[claim.key]
                elif error is not None:
                    entry.expires_at = min(
                        entry.expires_at, self._clock() + self.failure_ttl_seconds
                    )
        # Joiners hold the future itself, so they see the outcome even when
        # the entry was evicted above.
        if error is not None:
            claim._future.set_exception(error)
        else:
            claim._future.set_result(result)

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            del self._entries[k]

    def _enforce_size(self) -> None:
        if self.max_entries is None or len(self._entries) <= self.max_entries:
            return
        # Drop the oldest completed entries first; in-flight claims stay.
        completed = sorted(
            (e.created_at, k) for k, e in self._entries.items() if e.future.done()
        )
        for _, k in completed[: len(self._entries) - self.max_entries]:
            del self._entries[k]
