"""Test fixtures for in-memory implementations."""

from .constants import (
    BASE_USDC,
    MERCHANT_ID,
    MERCHANT_WALLET,
    PAYER,
    POLYGON_USDC,
)
from .fake_chain_client import (
    FakeChainClient,
    make_receipt,
    swept_log,
    transfer_log,
)
from .in_memory_repositories import InMemoryPaymentRepository
from .in_memory_storage import InMemoryKeyValueStore
from .recording_notifier import RecordingNotifier

__all__ = [
    "BASE_USDC",
    "FakeChainClient",
    "InMemoryKeyValueStore",
    "InMemoryPaymentRepository",
    "MERCHANT_ID",
    "MERCHANT_WALLET",
    "PAYER",
    "POLYGON_USDC",
    "RecordingNotifier",
    "make_receipt",
    "swept_log",
    "transfer_log",
]
