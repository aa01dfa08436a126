"""Deterministic deposit address derivation.

Deposit addresses are EIP-1167 minimal proxies deployed by the factory with
CREATE2, so the address can be computed off-chain before anything is
deployed:

    keccak256(0xff ++ factory ++ salt ++ keccak256(init_code))[12:]

The salt is ``keccak256(payment_reference)``, the same value the factory's
pure ``getSalt(string)`` returns.
"""

from __future__ import annotations

from typing import Union

from web3 import Web3

from ..domain.entities import DepositAddress
from ..domain.shared import ChainClientProtocol
from .chain_registry import ChainIdLike, ChainRegistry

_CLONE_PREFIX = bytes.fromhex("3d602d80600a3d3981f3363d3d373d3d3d363d73")
_CLONE_SUFFIX = bytes.fromhex("5af43d82803e903d91602b57fd5bf3")


def compute_salt(external_id: str) -> bytes:
    """Return the 32-byte salt for a payment's external identifier."""
    if not external_id:
        raise ValueError("Payment identifier cannot be empty")
    return bytes(Web3.keccak(text=external_id))


def salt_to_hex(salt: bytes) -> str:
    return "0x" + salt.hex()


def hex_to_salt(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        salt = value
    else:
        salt = bytes.fromhex(value[2:] if value.startswith("0x") else value)
    if len(salt) != 32:
        raise ValueError("Salt must be 32 bytes")
    return salt


def clone_init_code(implementation: str) -> bytes:
    """Creation code of an EIP-1167 proxy delegating to ``implementation``."""
    impl = bytes.fromhex(Web3.to_checksum_address(implementation)[2:])
    return _CLONE_PREFIX + impl + _CLONE_SUFFIX


def predict_clone_address(deployer: str, implementation: str, salt: bytes) -> str:
    """CREATE2 address of a clone deployed by ``deployer`` with ``salt``."""
    if len(salt) != 32:
        raise ValueError("Salt must be 32 bytes")
    deployer_bytes = bytes.fromhex(Web3.to_checksum_address(deployer)[2:])
    init_code_hash = bytes(Web3.keccak(clone_init_code(implementation)))
    digest = bytes(Web3.keccak(b"\xff" + deployer_bytes + salt + init_code_hash))
    return Web3.to_checksum_address("0x" + digest[12:].hex())


class DepositAddressResolver:
    """Computes per-payment deposit addresses for registered chains.

    Pure and synchronous; safe to call concurrently.
    """

    def __init__(self, registry: ChainRegistry):
        self.registry = registry

    def derive_address(self, chain_id: ChainIdLike, external_id: str) -> DepositAddress:
        chain = self.registry.resolve(chain_id)
        salt = compute_salt(external_id)
        address = predict_clone_address(
            chain.factory_address, chain.implementation_address, salt
        )
        return DepositAddress(
            chain_id=chain.chain_id, address=address, salt=salt_to_hex(salt)
        )

    async def confirm_with_factory(
        self,
        chain_client: ChainClientProtocol,
        chain_id: ChainIdLike,
        external_id: str,
    ) -> DepositAddress:
        """Check the off-chain prediction against the factory's own view.

        Raises:
            ValueError: If the factory reports a different address.
        """
        deposit = self.derive_address(chain_id, external_id)
        chain = self.registry.resolve(chain_id)
        on_chain = await chain_client.get_deposit_address(
            chain, hex_to_salt(deposit.salt)
        )
        if Web3.to_checksum_address(on_chain) != deposit.address:
            raise ValueError(
                f"Factory reports deposit address {on_chain}, expected {deposit.address}"
            )
        return deposit
