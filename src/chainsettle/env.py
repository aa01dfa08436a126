from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from .domain.chains import DEFAULT_REQUIRED_CONFIRMATIONS, KNOWN_CHAINS

_CHAIN_ENV_SUFFIXES = {
    "factory_address": "SPLIT_FACTORY_ADDRESS",
    "implementation_address": "SPLIT_IMPLEMENTATION_ADDRESS",
    "rpc_url": "RPC_URL",
    "rpc_urls": "RPC_URLS",
    "required_confirmations": "REQUIRED_CONFIRMATIONS",
}


class Settings(BaseModel):
    """Typed application settings built from environment variables."""

    database_url: str = "redis://localhost:6379/0"

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 1
    api_debug: bool = False
    api_cors_origins: list[str] = ["*"]

    app_name: str = "ChainSettle"
    app_version: str = "1.0.0"

    notify_webhook_url: Optional[str] = None
    # Account unlocked on the RPC node that sends sweep transactions
    operator_address: Optional[str] = None

    verification_cache_ttl: float = Field(300.0, gt=0)
    verification_failure_ttl: float = Field(30.0, gt=0)
    verification_cache_max_entries: int = Field(10_000, ge=1)
    confirmation_timeout: float = Field(30.0, ge=0)
    confirmation_poll_interval: float = Field(5.0, gt=0)
    amount_tolerance: int = Field(0, ge=0)
    default_fee_bps: int = Field(300, ge=0, le=10_000)
    default_required_confirmations: int = Field(DEFAULT_REQUIRED_CONFIRMATIONS, ge=1)

    rpc_max_attempts: int = Field(3, ge=1)
    rpc_retry_backoff: float = Field(1.0, ge=0)
    rpc_failure_threshold: int = Field(5, ge=1)
    rpc_recovery_timeout: float = Field(60.0, ge=0)

    # Env prefix (e.g. "BASE") -> {"factory_address": ..., "rpc_url": ...}
    chain_overrides: dict[str, dict[str, str]] = Field(default_factory=dict)

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("database_url must be a redis:// URL")
        return v


def _flag(value: str) -> bool:
    return value.lower() == "true"


def read_chain_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, str]]:
    """Collect ``<PREFIX>_SPLIT_FACTORY_ADDRESS`` style variables per chain."""
    overrides: dict[str, dict[str, str]] = {}
    for definition in KNOWN_CHAINS:
        values = {
            field: environ[f"{definition.env_prefix}_{suffix}"]
            for field, suffix in _CHAIN_ENV_SUFFIXES.items()
            if environ.get(f"{definition.env_prefix}_{suffix}")
        }
        if values:
            overrides[definition.env_prefix] = values
    return overrides


def get_settings() -> Settings:
    """Return typed settings instance sourced from env vars."""
    env = os.environ
    return Settings(
        database_url=env.get("CHAINSETTLE_DATABASE_URL", "redis://localhost:6379/0"),
        api_host=env.get("CHAINSETTLE_API_HOST", "0.0.0.0"),
        api_port=int(env.get("CHAINSETTLE_API_PORT", "8000")),
        api_workers=int(env.get("CHAINSETTLE_API_WORKERS", "1")),
        api_debug=_flag(env.get("CHAINSETTLE_API_DEBUG", "false")),
        api_cors_origins=env.get("CHAINSETTLE_API_CORS_ORIGINS", "*").split(","),
        app_name=env.get("CHAINSETTLE_APP_NAME", "ChainSettle"),
        app_version=env.get("CHAINSETTLE_APP_VERSION", "1.0.0"),
        notify_webhook_url=env.get("CHAINSETTLE_NOTIFY_WEBHOOK_URL") or None,
        operator_address=env.get("CHAINSETTLE_OPERATOR_ADDRESS") or None,
        verification_cache_ttl=float(env.get("CHAINSETTLE_VERIFICATION_CACHE_TTL", "300")),
        verification_failure_ttl=float(
            env.get("CHAINSETTLE_VERIFICATION_FAILURE_TTL", "30")
        ),
        verification_cache_max_entries=int(
            env.get("CHAINSETTLE_VERIFICATION_CACHE_MAX_ENTRIES", "10000")
        ),
        confirmation_timeout=float(env.get("CHAINSETTLE_CONFIRMATION_TIMEOUT", "30")),
        confirmation_poll_interval=float(
            env.get("CHAINSETTLE_CONFIRMATION_POLL_INTERVAL", "5")
        ),
        amount_tolerance=int(env.get("CHAINSETTLE_AMOUNT_TOLERANCE", "0")),
        default_fee_bps=int(env.get("CHAINSETTLE_DEFAULT_FEE_BPS", "300")),
        default_required_confirmations=int(
            env.get(
                "CHAINSETTLE_DEFAULT_REQUIRED_CONFIRMATIONS",
                str(DEFAULT_REQUIRED_CONFIRMATIONS),
            )
        ),
        rpc_max_attempts=int(env.get("CHAINSETTLE_RPC_MAX_ATTEMPTS", "3")),
        rpc_retry_backoff=float(env.get("CHAINSETTLE_RPC_RETRY_BACKOFF", "1")),
        rpc_failure_threshold=int(env.get("CHAINSETTLE_RPC_FAILURE_THRESHOLD", "5")),
        rpc_recovery_timeout=float(env.get("CHAINSETTLE_RPC_RECOVERY_TIMEOUT", "60")),
        chain_overrides=read_chain_overrides(env),
    )
