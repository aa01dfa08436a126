"""Tests for environment-driven settings."""

import pytest

from chainsettle.application.chain_registry import ChainRegistry
from chainsettle.domain.chains import DEFAULT_FACTORY_ADDRESS, DEFAULT_IMPLEMENTATION_ADDRESS
from chainsettle.env import Settings, get_settings, read_chain_overrides


def test_read_chain_overrides_groups_by_prefix() -> None:
    overrides = read_chain_overrides(
        {
            "POLYGON_SPLIT_FACTORY_ADDRESS": DEFAULT_FACTORY_ADDRESS,
            "POLYGON_SPLIT_IMPLEMENTATION_ADDRESS": DEFAULT_IMPLEMENTATION_ADDRESS,
            "BASE_RPC_URL": "http://base-node:8545",
            "BASE_REQUIRED_CONFIRMATIONS": "",
            "UNKNOWN_RPC_URL": "http://ignored",
        }
    )
    assert overrides == {
        "POLYGON": {
            "factory_address": DEFAULT_FACTORY_ADDRESS,
            "implementation_address": DEFAULT_IMPLEMENTATION_ADDRESS,
        },
        "BASE": {"rpc_url": "http://base-node:8545"},
    }


def test_get_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CHAINSETTLE_DATABASE_URL", "CHAINSETTLE_DEFAULT_FEE_BPS"):
        monkeypatch.delenv(name, raising=False)
    settings = get_settings()
    assert settings.database_url == "redis://localhost:6379/0"
    assert settings.default_fee_bps == 300
    assert settings.default_required_confirmations == 20
    assert settings.verification_cache_ttl == 300.0


def test_get_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHAINSETTLE_DATABASE_URL", "redis://cache:6379/2")
    monkeypatch.setenv("CHAINSETTLE_API_DEBUG", "TRUE")
    monkeypatch.setenv("CHAINSETTLE_API_CORS_ORIGINS", "https://a.example,https://b.example")
    monkeypatch.setenv("CHAINSETTLE_AMOUNT_TOLERANCE", "5")
    monkeypatch.setenv("CHAINSETTLE_NOTIFY_WEBHOOK_URL", "")
    monkeypatch.setenv("POLYGON_SPLIT_FACTORY_ADDRESS", DEFAULT_FACTORY_ADDRESS)
    monkeypatch.setenv("POLYGON_SPLIT_IMPLEMENTATION_ADDRESS", DEFAULT_IMPLEMENTATION_ADDRESS)
    monkeypatch.setenv("POLYGON_REQUIRED_CONFIRMATIONS", "64")

    settings = get_settings()
    assert settings.database_url == "redis://cache:6379/2"
    assert settings.api_debug is True
    assert settings.api_cors_origins == ["https://a.example", "https://b.example"]
    assert settings.amount_tolerance == 5
    assert settings.notify_webhook_url is None

    registry = ChainRegistry.from_settings(settings)
    assert registry.is_supported(137)
    assert registry.required_confirmations(137) == 64


def test_database_url_must_be_redis() -> None:
    with pytest.raises(ValueError):
        Settings(database_url="sqlite:///payments.db")


def test_rpc_fallback_urls_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BASE_RPC_URL", "http://base-node:8545")
    monkeypatch.setenv("BASE_RPC_URLS", "http://backup-a:8545, http://backup-b:8545")
    monkeypatch.setenv("CHAINSETTLE_RPC_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("CHAINSETTLE_RPC_FAILURE_THRESHOLD", "2")

    settings = get_settings()
    assert settings.chain_overrides["BASE"]["rpc_urls"] == (
        "http://backup-a:8545, http://backup-b:8545"
    )
    assert settings.rpc_max_attempts == 5
    assert settings.rpc_failure_threshold == 2

    chain = ChainRegistry.from_settings(settings).resolve(8453)
    assert chain.rpc_endpoints == [
        "http://base-node:8545",
        "http://backup-a:8545",
        "http://backup-b:8545",
    ]
