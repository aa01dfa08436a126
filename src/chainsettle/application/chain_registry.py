"""Typed registry of chains that have a deployed deposit factory."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping, Optional, Protocol, Union

from ..domain.chains import (
    CHAIN_CONFIRMATIONS,
    DEFAULT_REQUIRED_CONFIRMATIONS,
    KNOWN_CHAINS,
    ChainConfig,
    ChainDefinition,
)
from ..domain.errors import UnsupportedChainError

logger = logging.getLogger(__name__)

ChainIdLike = Union[int, str]

_HEX_RE = re.compile(r"^0[xX][0-9a-fA-F]+$")
_DEC_RE = re.compile(r"^[0-9]+$")


def normalize_chain_id(value: ChainIdLike) -> int:
    """Normalize a chain identifier to a decimal int.

    Accepts ints, decimal strings (``"137"``), hex strings (``"0x89"``) and
    CAIP-2 identifiers (``"eip155:137"``).

    Raises:
        UnsupportedChainError: If the value is not a positive chain id.
    """
    if isinstance(value, bool):
        raise UnsupportedChainError(value, f"Invalid chain identifier: {value!r}")
    if isinstance(value, int):
        chain_id = value
    elif isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("eip155:"):
            text = text.split(":", 1)[1]
        if _HEX_RE.match(text):
            chain_id = int(text, 16)
        elif _DEC_RE.match(text):
            chain_id = int(text)
        else:
            raise UnsupportedChainError(value, f"Invalid chain identifier: {value!r}")
    else:
        raise UnsupportedChainError(value, f"Invalid chain identifier: {value!r}")

    if chain_id <= 0:
        raise UnsupportedChainError(value, f"Invalid chain identifier: {value!r}")
    return chain_id


def _split_urls(value: Optional[str]) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(url.strip() for url in value.split(",") if url.strip())


class HasChainSettings(Protocol):
    chain_overrides: Mapping[str, Mapping[str, str]]
    default_required_confirmations: int


class ChainRegistry:
    """Immutable lookup table of supported chains, built once at startup."""

    DEFAULT_REQUIRED_CONFIRMATIONS = DEFAULT_REQUIRED_CONFIRMATIONS

    def __init__(
        self,
        chains: Iterable[ChainConfig],
        *,
        confirmations: Optional[Mapping[int, int]] = None,
        default_required_confirmations: int = DEFAULT_REQUIRED_CONFIRMATIONS,
    ) -> None:
        self._chains: dict[int, ChainConfig] = {}
        for chain in chains:
            if chain.chain_id in self._chains:
                raise ValueError(f"Duplicate chain configuration for {chain.chain_id}")
            self._chains[chain.chain_id] = chain
        self._confirmations = dict(
            CHAIN_CONFIRMATIONS if confirmations is None else confirmations
        )
        self._default_required_confirmations = default_required_confirmations

    def resolve(self, chain_id: ChainIdLike) -> ChainConfig:
        normalized = normalize_chain_id(chain_id)
        chain = self._chains.get(normalized)
        if chain is None:
            raise UnsupportedChainError(normalized)
        return chain

    def is_supported(self, chain_id: ChainIdLike) -> bool:
        try:
            self.resolve(chain_id)
        except UnsupportedChainError:
            return False
        return True

    def required_confirmations(self, chain_id: ChainIdLike) -> int:
        """Confirmation threshold for a chain.

        Falls back to the confirmation table and then to
        ``DEFAULT_REQUIRED_CONFIRMATIONS`` (20) for chains with no entry.
        """
        normalized = normalize_chain_id(chain_id)
        chain = self._chains.get(normalized)
        if chain is not None:
            return chain.required_confirmations
        return self._confirmations.get(
            normalized, self._default_required_confirmations
        )

    def supported_chain_ids(self) -> list[int]:
        return sorted(self._chains)

    def all(self) -> list[ChainConfig]:
        return [self._chains[chain_id] for chain_id in self.supported_chain_ids()]

    @classmethod
    def from_definitions(
        cls,
        definitions: Iterable[ChainDefinition],
        overrides: Mapping[str, Mapping[str, str]],
        *,
        default_required_confirmations: int = DEFAULT_REQUIRED_CONFIRMATIONS,
    ) -> "ChainRegistry":
        """Build the registry from known chains overlaid with env overrides.

        ``overrides`` maps an env prefix (``"BASE"``) to values read from
        ``<PREFIX>_SPLIT_FACTORY_ADDRESS``, ``<PREFIX>_SPLIT_IMPLEMENTATION_ADDRESS``,
        ``<PREFIX>_RPC_URL``, ``<PREFIX>_RPC_URLS`` (comma-separated fallbacks) and
        ``<PREFIX>_REQUIRED_CONFIRMATIONS``.
        """
        chains: list[ChainConfig] = []
        for definition in definitions:
            values = overrides.get(definition.env_prefix, {})
            factory = values.get("factory_address") or definition.factory_address
            implementation = (
                values.get("implementation_address")
                or definition.implementation_address
            )
            if not factory:
                continue
            if not implementation:
                logger.warning(
                    "Chain %s has a factory but no implementation address; skipping",
                    definition.chain_id,
                )
                continue

            confirmations_raw = values.get("required_confirmations")
            required = (
                int(confirmations_raw)
                if confirmations_raw
                else CHAIN_CONFIRMATIONS.get(
                    definition.chain_id, default_required_confirmations
                )
            )
            chains.append(
                ChainConfig(
                    chain_id=definition.chain_id,
                    name=definition.name,
                    factory_address=factory,
                    implementation_address=implementation,
                    required_confirmations=required,
                    rpc_url=values.get("rpc_url") or definition.rpc_url,
                    fallback_rpc_urls=_split_urls(values.get("rpc_urls"))
                    or definition.fallback_rpc_urls,
                    token_decimals=definition.token_decimals,
                )
            )
        return cls(chains, default_required_confirmations=default_required_confirmations)

    @classmethod
    def from_settings(cls, settings: HasChainSettings) -> "ChainRegistry":
        return cls.from_definitions(
            KNOWN_CHAINS,
            settings.chain_overrides,
            default_required_confirmations=settings.default_required_confirmations,
        )
