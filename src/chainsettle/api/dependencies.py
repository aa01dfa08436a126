"""FastAPI dependencies for the settlement API.

Components that hold process state (the verification cache, the verifier's
background notifications, sweeps in flight, RPC connections) are created once
per process; repositories and services are cheap wrappers around them.
"""

from __future__ import annotations

from typing import Optional, Union

from fastapi import Depends

from ..application.chain_registry import ChainRegistry
from ..application.deposit_address import DepositAddressResolver
from ..application.use_cases.intake import PaymentIntakeService
from ..application.use_cases.retry import RetryPolicy
from ..application.use_cases.sweep import SweepCoordinator
from ..application.use_cases.verification import TransactionVerifier
from ..application.verification_cache import VerificationCache
from ..domain.payment_repository import PaymentRepository
from ..domain.shared import ChainClientProtocol, NotifierProtocol
from ..env import Settings, get_settings
from ..infrastructure.chain.web3_client import Web3ChainClient
from ..infrastructure.database import DatabaseClient, get_database_client
from ..infrastructure.notifications import LoggingNotifier, WebhookNotifier
from ..infrastructure.payment_repository_impl import PaymentRepositoryImpl
from ..infrastructure.storage import KeyValueStore, RedisKeyValueStore

_store: Optional[KeyValueStore] = None
_registry: Optional[ChainRegistry] = None
_cache: Optional[VerificationCache] = None
_chain_client: Optional[Web3ChainClient] = None
_notifier: Union[WebhookNotifier, LoggingNotifier, None] = None
_verifier: Optional[TransactionVerifier] = None
_sweeper: Optional[SweepCoordinator] = None


def get_database_client_with_settings(
    settings: Settings = Depends(get_settings),
) -> DatabaseClient:
    """Get database client with settings."""
    return get_database_client(settings)


def get_key_value_store(
    db_client: DatabaseClient = Depends(get_database_client_with_settings),
) -> KeyValueStore:
    """Get the key-value store; script SHAs live on this instance."""
    global _store
    if _store is None:
        _store = RedisKeyValueStore(db_client)
    return _store


def get_payment_repository(
    store: KeyValueStore = Depends(get_key_value_store),
) -> PaymentRepository:
    """Get payment repository."""
    return PaymentRepositoryImpl(store)


def get_chain_registry(settings: Settings = Depends(get_settings)) -> ChainRegistry:
    global _registry
    if _registry is None:
        _registry = ChainRegistry.from_settings(settings)
    return _registry


def get_deposit_address_resolver(
    registry: ChainRegistry = Depends(get_chain_registry),
) -> DepositAddressResolver:
    return DepositAddressResolver(registry)


def get_verification_cache(
    settings: Settings = Depends(get_settings),
) -> VerificationCache:
    global _cache
    if _cache is None:
        _cache = VerificationCache(
            settings.verification_cache_ttl,
            failure_ttl_seconds=settings.verification_failure_ttl,
            max_entries=settings.verification_cache_max_entries,
        )
    return _cache


def get_chain_client(settings: Settings = Depends(get_settings)) -> ChainClientProtocol:
    global _chain_client
    if _chain_client is None:
        _chain_client = Web3ChainClient(
            settings.operator_address,
            max_attempts=settings.rpc_max_attempts,
            retry_backoff=settings.rpc_retry_backoff,
            failure_threshold=settings.rpc_failure_threshold,
            recovery_timeout=settings.rpc_recovery_timeout,
        )
    return _chain_client


def get_notifier(settings: Settings = Depends(get_settings)) -> NotifierProtocol:
    global _notifier
    if _notifier is None:
        if settings.notify_webhook_url:
            _notifier = WebhookNotifier(settings.notify_webhook_url)
        else:
            _notifier = LoggingNotifier()
    return _notifier


def get_transaction_verifier(
    settings: Settings = Depends(get_settings),
    payment_repository: PaymentRepository = Depends(get_payment_repository),
    registry: ChainRegistry = Depends(get_chain_registry),
    cache: VerificationCache = Depends(get_verification_cache),
    chain_client: ChainClientProtocol = Depends(get_chain_client),
    notifier: NotifierProtocol = Depends(get_notifier),
) -> TransactionVerifier:
    """Get the process-wide transaction verifier."""
    global _verifier
    if _verifier is None:
        _verifier = TransactionVerifier(
            payment_repository,
            registry,
            cache,
            chain_client,
            notifier,
            confirmation_timeout=settings.confirmation_timeout,
            poll_interval=settings.confirmation_poll_interval,
            rpc_retry_backoff=settings.rpc_retry_backoff,
            amount_tolerance=settings.amount_tolerance,
        )
    return _verifier


def get_sweep_coordinator(
    payment_repository: PaymentRepository = Depends(get_payment_repository),
    registry: ChainRegistry = Depends(get_chain_registry),
    resolver: DepositAddressResolver = Depends(get_deposit_address_resolver),
    chain_client: ChainClientProtocol = Depends(get_chain_client),
) -> SweepCoordinator:
    global _sweeper
    if _sweeper is None:
        _sweeper = SweepCoordinator(payment_repository, registry, resolver, chain_client)
    return _sweeper


def get_retry_policy(
    payment_repository: PaymentRepository = Depends(get_payment_repository),
    cache: VerificationCache = Depends(get_verification_cache),
) -> RetryPolicy:
    return RetryPolicy(payment_repository, cache)


def get_intake_service(
    settings: Settings = Depends(get_settings),
    payment_repository: PaymentRepository = Depends(get_payment_repository),
    registry: ChainRegistry = Depends(get_chain_registry),
    resolver: DepositAddressResolver = Depends(get_deposit_address_resolver),
    chain_client: ChainClientProtocol = Depends(get_chain_client),
) -> PaymentIntakeService:
    return PaymentIntakeService(
        payment_repository,
        registry,
        resolver,
        chain_client=chain_client,
        default_fee_bps=settings.default_fee_bps,
    )


async def shutdown_components() -> None:
    """Flush notifications and close network clients."""
    global _verifier, _chain_client, _notifier
    if _verifier is not None:
        await _verifier.drain_notifications()
    if _chain_client is not None:
        await _chain_client.aclose()
    if isinstance(_notifier, WebhookNotifier):
        await _notifier.aclose()
    _verifier = None
    _chain_client = None
    _notifier = None
