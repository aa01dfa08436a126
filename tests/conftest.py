"""Shared pytest fixtures for settlement tests."""

from __future__ import annotations

import os
from typing import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio

from chainsettle.application.chain_registry import ChainRegistry
from chainsettle.application.deposit_address import DepositAddressResolver
from chainsettle.application.dtos import OpenPaymentDTO
from chainsettle.application.use_cases.intake import PaymentIntakeService
from chainsettle.application.use_cases.retry import RetryPolicy
from chainsettle.application.use_cases.sweep import SweepCoordinator
from chainsettle.application.use_cases.verification import TransactionVerifier
from chainsettle.application.verification_cache import VerificationCache
from chainsettle.domain.chains import (
    DEFAULT_FACTORY_ADDRESS,
    DEFAULT_IMPLEMENTATION_ADDRESS,
    KNOWN_CHAINS,
)
from chainsettle.domain.entities import Payment
from chainsettle.infrastructure.database import DatabaseClient
from chainsettle.infrastructure.storage import RedisKeyValueStore
from tests.fixtures import (
    BASE_USDC,
    MERCHANT_ID,
    MERCHANT_WALLET,
    FakeChainClient,
    InMemoryPaymentRepository,
    RecordingNotifier,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def registry() -> ChainRegistry:
    """Base, BSC and Arbitrum from the defaults, plus Polygon via overrides."""
    return ChainRegistry.from_definitions(
        KNOWN_CHAINS,
        {
            "POLYGON": {
                "factory_address": DEFAULT_FACTORY_ADDRESS,
                "implementation_address": DEFAULT_IMPLEMENTATION_ADDRESS,
            }
        },
    )


@pytest.fixture
def resolver(registry: ChainRegistry) -> DepositAddressResolver:
    return DepositAddressResolver(registry)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> VerificationCache:
    return VerificationCache(300.0, failure_ttl_seconds=30.0, clock=clock)


@pytest.fixture
def chain_client() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def payment_repository() -> AsyncGenerator[InMemoryPaymentRepository, None]:
    """Create an in-memory payment ledger."""
    repo = InMemoryPaymentRepository()
    await repo.initialize()
    yield repo
    repo.clear()


@pytest.fixture
def intake_service(
    payment_repository: InMemoryPaymentRepository,
    registry: ChainRegistry,
    resolver: DepositAddressResolver,
    chain_client: FakeChainClient,
) -> PaymentIntakeService:
    return PaymentIntakeService(
        payment_repository, registry, resolver, chain_client=chain_client
    )


@pytest.fixture
def verifier(
    payment_repository: InMemoryPaymentRepository,
    registry: ChainRegistry,
    cache: VerificationCache,
    chain_client: FakeChainClient,
    notifier: RecordingNotifier,
) -> TransactionVerifier:
    # No waiting: below-threshold transactions come back as pending at once
    return TransactionVerifier(
        payment_repository,
        registry,
        cache,
        chain_client,
        notifier,
        confirmation_timeout=0,
        poll_interval=0.01,
    )


@pytest.fixture
def retry_policy(
    payment_repository: InMemoryPaymentRepository, cache: VerificationCache
) -> RetryPolicy:
    return RetryPolicy(payment_repository, cache)


@pytest.fixture
def sweep_coordinator(
    payment_repository: InMemoryPaymentRepository,
    registry: ChainRegistry,
    resolver: DepositAddressResolver,
    chain_client: FakeChainClient,
) -> SweepCoordinator:
    return SweepCoordinator(payment_repository, registry, resolver, chain_client)


@pytest.fixture
def open_payment(
    intake_service: PaymentIntakeService,
    payment_repository: InMemoryPaymentRepository,
) -> Callable[..., Awaitable[Payment]]:
    """Open a 100 USDC payment on Base with a 3% platform fee."""

    async def _open(**overrides: object) -> Payment:
        data = {
            "merchant_id": MERCHANT_ID,
            "merchant_wallet": MERCHANT_WALLET,
            "chain_id": 8453,
            "token_address": BASE_USDC,
            "token_symbol": "USDC",
            "amount": "100",
            "platform_fee_bps": 300,
        }
        data.update(overrides)
        created = await intake_service.open_payment(OpenPaymentDTO(**data))
        payment = await payment_repository.get_by_id(created.id)
        assert payment is not None
        return payment

    return _open


# ============================================================================
# Redis fixtures (integration tests skip when Redis is unavailable)
# ============================================================================


class _RedisSettings:
    def __init__(self, url: str) -> None:
        self.database_url = url


@pytest_asyncio.fixture
async def redis_store() -> AsyncGenerator[RedisKeyValueStore, None]:
    url = os.environ.get("TEST_REDIS_URL", "redis://localhost:6379/15")
    db_client = DatabaseClient(_RedisSettings(url))
    try:
        async with db_client.get_connection() as conn:
            await conn.ping()
            await conn.flushdb()
    except Exception as e:
        await db_client.close()
        pytest.skip(f"Redis not available at {url}: {e}")

    yield RedisKeyValueStore(db_client)

    async with db_client.get_connection() as conn:
        await conn.flushdb()
    await db_client.close()
