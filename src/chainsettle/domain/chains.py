"""EVM chain configuration for deposit factories.

The PaymentFactorySplit factory is deployed with CREATE2, so its address is
the same on every chain where it exists. A chain is only usable for deposits
when a factory address is configured for it.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3

DEFAULT_FACTORY_ADDRESS = "0x373A8997fFe0D1aBf42F022FaEf1F0F3551C3553"
DEFAULT_IMPLEMENTATION_ADDRESS = "0x9439Fce7bAD99eCaF0Dc1BE87D4E256250Cf4e39"

# Chains without an explicit entry fall back to this. It is a conservative
# guess, not a finality guarantee; set <PREFIX>_REQUIRED_CONFIRMATIONS instead.
DEFAULT_REQUIRED_CONFIRMATIONS = 20

CHAIN_CONFIRMATIONS: dict[int, int] = {
    1: 12,
    56: 20,
    137: 128,  # Polygon reorgs are deep
    10: 20,
    42161: 20,
    43114: 20,
    8453: 20,
    42220: 20,
}


class ChainConfig(BaseModel):
    """A supported network with a deployed deposit factory."""

    model_config = ConfigDict(frozen=True)

    chain_id: int = Field(..., gt=0)
    name: str
    factory_address: str
    implementation_address: str
    required_confirmations: int = Field(DEFAULT_REQUIRED_CONFIRMATIONS, ge=1)
    rpc_url: Optional[str] = None
    # Tried in order after rpc_url when it fails
    fallback_rpc_urls: tuple[str, ...] = ()
    native_decimals: int = 18
    # Lower-cased token address -> decimals
    token_decimals: dict[str, int] = Field(default_factory=dict)

    @field_validator("factory_address", "implementation_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        if not Web3.is_address(v):
            raise ValueError(f"Invalid contract address: {v}")
        return Web3.to_checksum_address(v)

    @field_validator("token_decimals")
    @classmethod
    def lower_token_keys(cls, v: dict[str, int]) -> dict[str, int]:
        return {address.lower(): decimals for address, decimals in v.items()}

    def decimals_for(self, token_address: Optional[str]) -> int:
        if not token_address:
            return self.native_decimals
        return self.token_decimals.get(token_address.lower(), self.native_decimals)

    @property
    def rpc_endpoints(self) -> list[str]:
        urls = [self.rpc_url] if self.rpc_url else []
        for url in self.fallback_rpc_urls:
            if url not in urls:
                urls.append(url)
        return urls


class ChainDefinition(BaseModel):
    """Static description of a known network; factory may be absent."""

    model_config = ConfigDict(frozen=True)

    chain_id: int
    name: str
    env_prefix: str
    rpc_url: str
    fallback_rpc_urls: tuple[str, ...] = ()
    factory_address: Optional[str] = None
    implementation_address: Optional[str] = None
    token_decimals: dict[str, int] = Field(default_factory=dict)


# Base (Layer 2)
BASE = ChainDefinition(
    chain_id=8453,
    name="Base",
    env_prefix="BASE",
    rpc_url="https://mainnet.base.org",
    factory_address=DEFAULT_FACTORY_ADDRESS,
    implementation_address=DEFAULT_IMPLEMENTATION_ADDRESS,
    token_decimals={"0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913": 6},
)

# BNB Smart Chain
# NOTE: BSC stablecoins use 18 decimals
BSC = ChainDefinition(
    chain_id=56,
    name="BNB Smart Chain",
    env_prefix="BSC",
    rpc_url="https://binance.llamarpc.com",
    fallback_rpc_urls=(
        "https://bsc-dataseed1.binance.org",
        "https://bsc-dataseed2.binance.org",
    ),
    factory_address=DEFAULT_FACTORY_ADDRESS,
    implementation_address=DEFAULT_IMPLEMENTATION_ADDRESS,
    token_decimals={
        "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d": 18,
        "0x55d398326f99059fF775485246999027B3197955": 18,
    },
)

# Arbitrum One
ARBITRUM = ChainDefinition(
    chain_id=42161,
    name="Arbitrum One",
    env_prefix="ARBITRUM",
    rpc_url="https://arb1.arbitrum.io/rpc",
    factory_address=DEFAULT_FACTORY_ADDRESS,
    implementation_address=DEFAULT_IMPLEMENTATION_ADDRESS,
    token_decimals={"0xaf88d065e77c8cC2239327C5EDb3A432268e5831": 6},
)

# Not deployed yet; enabled by setting <PREFIX>_SPLIT_FACTORY_ADDRESS
ETHEREUM = ChainDefinition(
    chain_id=1,
    name="Ethereum",
    env_prefix="ETHEREUM",
    rpc_url="https://eth.llamarpc.com",
    token_decimals={"0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48": 6},
)

POLYGON = ChainDefinition(
    chain_id=137,
    name="Polygon",
    env_prefix="POLYGON",
    rpc_url="https://polygon-rpc.com",
    token_decimals={"0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359": 6},
)

OPTIMISM = ChainDefinition(
    chain_id=10,
    name="Optimism",
    env_prefix="OPTIMISM",
    rpc_url="https://mainnet.optimism.io",
    token_decimals={"0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85": 6},
)

AVALANCHE = ChainDefinition(
    chain_id=43114,
    name="Avalanche C-Chain",
    env_prefix="AVALANCHE",
    rpc_url="https://avalanche-c-chain-rpc.publicnode.com",
    token_decimals={"0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E": 6},
)

CELO = ChainDefinition(
    chain_id=42220,
    name="Celo",
    env_prefix="CELO",
    rpc_url="https://forno.celo.org",
    token_decimals={"0xcebA9300f2b948710d2653dD7B07f33A8B32118C": 6},
)

KNOWN_CHAINS: list[ChainDefinition] = [
    BASE,
    BSC,
    ARBITRUM,
    ETHEREUM,
    POLYGON,
    OPTIMISM,
    AVALANCHE,
    CELO,
]
