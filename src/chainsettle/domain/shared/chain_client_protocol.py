"""Protocol interface for chain RPC client implementations.

Services depend on this protocol rather than on web3 directly, so verification
and sweep logic can be exercised against a scripted chain in tests.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from ..chains import ChainConfig
    from ..entities import TransactionReceipt


class ChainClientProtocol(Protocol):
    """Read and write access to the deposit factory on each chain.

    Implementations raise ``ChainRpcError`` for transport or node failures.
    State-changing calls are sent from the operator account held by the node;
    this client never handles private keys.
    """

    # Reads

    async def get_transaction_receipt(
        self, chain: "ChainConfig", transaction_hash: str
    ) -> Optional["TransactionReceipt"]:
        """Return the mined receipt, or None if the transaction is not mined yet."""
        ...

    async def get_block_number(self, chain: "ChainConfig") -> int:
        """Return the current head block number."""
        ...

    async def get_deposit_address(self, chain: "ChainConfig", salt: bytes) -> str:
        """Factory view ``getDepositAddress(salt)``."""
        ...

    async def get_salt(self, chain: "ChainConfig", payment_id: str) -> bytes:
        """Factory pure function ``getSalt(paymentId)``."""
        ...

    async def get_implementation(self, chain: "ChainConfig") -> str:
        ...

    async def get_platform_wallet(self, chain: "ChainConfig") -> str:
        ...

    async def get_default_fee_bps(self, chain: "ChainConfig") -> int:
        ...

    async def get_token_decimals(self, chain: "ChainConfig", token: str) -> int:
        """ERC-20 ``decimals()``."""
        ...

    # Sweeps

    async def sweep(
        self,
        chain: "ChainConfig",
        salt: bytes,
        token: str,
        merchant: str,
        fee_bps: Optional[int] = None,
    ) -> "TransactionReceipt":
        """``sweep`` or, when ``fee_bps`` is given, ``sweepWithFee``."""
        ...

    async def batch_sweep(
        self,
        chain: "ChainConfig",
        salts: Sequence[bytes],
        tokens: Sequence[str],
        merchants: Sequence[str],
        fee_bps: Optional[Sequence[int]] = None,
    ) -> "TransactionReceipt":
        """``batchSweep`` or, when ``fee_bps`` is given, ``batchSweepWithFees``."""
        ...
