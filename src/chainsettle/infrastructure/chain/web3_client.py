"""web3.py implementation of the chain client protocol."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import (
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
)

from ...domain.chains import ChainConfig
from ...domain.entities import LogEntry, TransactionReceipt
from ...domain.errors import ChainRpcError
from .abi import DEPOSIT_FACTORY_ABI, ERC20_ABI
from .resilience import CircuitBreaker, backoff_delay

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transport and node failures surfaced as ChainRpcError
_RPC_ERRORS = (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, ValueError)
# Definite answers from a healthy node; another endpoint would say the same
_ANSWERS = (TransactionNotFound, ContractLogicError)


def _to_hex(value: Any) -> str:
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return Web3.to_hex(value)


def _receipt_from_web3(raw: Any) -> TransactionReceipt:
    return TransactionReceipt(
        transaction_hash=_to_hex(raw["transactionHash"]),
        block_number=int(raw["blockNumber"]),
        status=int(raw.get("status", 0)),
        from_address=raw.get("from"),
        to_address=raw.get("to"),
        logs=[
            LogEntry(
                address=log["address"],
                topics=[_to_hex(topic) for topic in log["topics"]],
                data=_to_hex(log["data"]),
                log_index=int(log.get("logIndex", 0)),
            )
            for log in raw.get("logs", [])
        ],
    )


class Web3ChainClient:
    """Talks to each chain's RPC endpoints through ``AsyncWeb3``.

    Reads go to the chain's endpoints in order (``rpc_url`` then
    ``fallback_rpc_urls``), with exponential backoff between attempts. Each
    chain has a circuit breaker that refuses calls for a while once calls
    have failed on every endpoint ``failure_threshold`` times in a row.

    Sweeps are sent with ``transact`` from ``operator_address``, an account
    unlocked on the primary RPC node; no key material passes through this
    process. Writes are never retried.
    """

    def __init__(
        self,
        operator_address: Optional[str] = None,
        *,
        request_timeout: float = 30.0,
        receipt_timeout: float = 180.0,
        max_attempts: int = 3,
        retry_backoff: float = 1.0,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.operator_address = (
            Web3.to_checksum_address(operator_address) if operator_address else None
        )
        self.request_timeout = request_timeout
        self.receipt_timeout = receipt_timeout
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._sleep = sleep
        self._clients: dict[int, list[AsyncWeb3]] = {}
        self._breakers: dict[int, CircuitBreaker] = {}

    def _endpoints(self, chain: ChainConfig) -> list[AsyncWeb3]:
        clients = self._clients.get(chain.chain_id)
        if clients is None:
            urls = chain.rpc_endpoints
            if not urls:
                raise ChainRpcError(
                    f"No RPC URL configured for chain {chain.chain_id}",
                    chain_id=chain.chain_id,
                )
            clients = [
                AsyncWeb3(
                    AsyncHTTPProvider(
                        url, request_kwargs={"timeout": self.request_timeout}
                    )
                )
                for url in urls
            ]
            self._clients[chain.chain_id] = clients
        return clients

    def breaker(self, chain: ChainConfig) -> CircuitBreaker:
        breaker = self._breakers.get(chain.chain_id)
        if breaker is None:
            breaker = CircuitBreaker(
                f"chain {chain.chain_id}",
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
            )
            self._breakers[chain.chain_id] = breaker
        return breaker

    @staticmethod
    def _factory(w3: AsyncWeb3, chain: ChainConfig) -> Any:
        return w3.eth.contract(address=chain.factory_address, abi=DEPOSIT_FACTORY_ABI)

    async def _rpc(
        self,
        chain: ChainConfig,
        what: str,
        call: Callable[[AsyncWeb3], Awaitable[T]],
        *,
        retry: bool = True,
    ) -> T:
        breaker = self.breaker(chain)
        if not breaker.allow():
            raise ChainRpcError(
                f"{what} refused: circuit open for chain {chain.chain_id}",
                chain_id=chain.chain_id,
            )
        endpoints = self._endpoints(chain)
        attempts = max(len(endpoints), self.max_attempts) if retry else 1

        last_error: Optional[BaseException] = None
        for attempt in range(attempts):
            index = attempt % len(endpoints)
            try:
                result = await call(endpoints[index])
            except _ANSWERS as e:
                breaker.record_success()
                raise ChainRpcError(
                    f"{what} failed on chain {chain.chain_id}: {e}",
                    chain_id=chain.chain_id,
                ) from e
            except _RPC_ERRORS as e:
                last_error = e
                logger.warning(
                    "RPC %s failed on chain %s endpoint %d (attempt %d/%d): %s",
                    what,
                    chain.chain_id,
                    index,
                    attempt + 1,
                    attempts,
                    e,
                )
                if attempt + 1 < attempts:
                    await self._sleep(backoff_delay(attempt, base=self.retry_backoff))
                continue
            breaker.record_success()
            return result

        breaker.record_failure()
        raise ChainRpcError(
            f"{what} failed on chain {chain.chain_id} after {attempts} attempt(s): "
            f"{last_error}",
            chain_id=chain.chain_id,
        ) from last_error

    async def get_transaction_receipt(
        self, chain: ChainConfig, transaction_hash: str
    ) -> Optional[TransactionReceipt]:
        try:
            raw = await self._rpc(
                chain,
                "eth_getTransactionReceipt",
                lambda w3: w3.eth.get_transaction_receipt(transaction_hash),
            )
        except ChainRpcError as e:
            if isinstance(e.__cause__, TransactionNotFound):
                return None
            raise
        if raw is None:
            return None
        return _receipt_from_web3(raw)

    async def get_block_number(self, chain: ChainConfig) -> int:
        async def block_number(w3: AsyncWeb3) -> int:
            return await w3.eth.block_number

        return int(await self._rpc(chain, "eth_blockNumber", block_number))

    async def get_deposit_address(self, chain: ChainConfig, salt: bytes) -> str:
        address = await self._rpc(
            chain,
            "getDepositAddress",
            lambda w3: self._factory(w3, chain).functions.getDepositAddress(salt).call(),
        )
        return Web3.to_checksum_address(address)

    async def get_salt(self, chain: ChainConfig, payment_id: str) -> bytes:
        salt = await self._rpc(
            chain,
            "getSalt",
            lambda w3: self._factory(w3, chain).functions.getSalt(payment_id).call(),
        )
        return bytes(salt)

    async def get_implementation(self, chain: ChainConfig) -> str:
        address = await self._rpc(
            chain,
            "implementation",
            lambda w3: self._factory(w3, chain).functions.implementation().call(),
        )
        return Web3.to_checksum_address(address)

    async def get_platform_wallet(self, chain: ChainConfig) -> str:
        address = await self._rpc(
            chain,
            "platformWallet",
            lambda w3: self._factory(w3, chain).functions.platformWallet().call(),
        )
        return Web3.to_checksum_address(address)

    async def get_default_fee_bps(self, chain: ChainConfig) -> int:
        return int(
            await self._rpc(
                chain,
                "defaultFeeBps",
                lambda w3: self._factory(w3, chain).functions.defaultFeeBps().call(),
            )
        )

    async def get_token_decimals(self, chain: ChainConfig, token: str) -> int:
        token = Web3.to_checksum_address(token)
        return int(
            await self._rpc(
                chain,
                "decimals",
                lambda w3: w3.eth.contract(address=token, abi=ERC20_ABI)
                .functions.decimals()
                .call(),
            )
        )

    async def sweep(
        self,
        chain: ChainConfig,
        salt: bytes,
        token: str,
        merchant: str,
        fee_bps: Optional[int] = None,
    ) -> TransactionReceipt:
        token = Web3.to_checksum_address(token)
        merchant = Web3.to_checksum_address(merchant)
        if fee_bps is None:
            name = "sweep"
            args: tuple[Any, ...] = (salt, token, merchant)
        else:
            name = "sweepWithFee"
            args = (salt, token, merchant, fee_bps)
        return await self._transact(chain, name, args)

    async def batch_sweep(
        self,
        chain: ChainConfig,
        salts: Sequence[bytes],
        tokens: Sequence[str],
        merchants: Sequence[str],
        fee_bps: Optional[Sequence[int]] = None,
    ) -> TransactionReceipt:
        if not (len(salts) == len(tokens) == len(merchants)):
            raise ValueError("salts, tokens and merchants must have the same length")
        token_list = [Web3.to_checksum_address(t) for t in tokens]
        merchant_list = [Web3.to_checksum_address(m) for m in merchants]
        if fee_bps is None:
            name = "batchSweep"
            args: tuple[Any, ...] = (list(salts), token_list, merchant_list)
        else:
            if len(fee_bps) != len(salts):
                raise ValueError("fee_bps must have one entry per salt")
            name = "batchSweepWithFees"
            args = (list(salts), token_list, merchant_list, list(fee_bps))
        return await self._transact(chain, name, args)

    async def _transact(
        self, chain: ChainConfig, name: str, args: tuple[Any, ...]
    ) -> TransactionReceipt:
        if self.operator_address is None:
            raise ChainRpcError(
                "No operator address configured for sweeps", chain_id=chain.chain_id
            )
        operator = self.operator_address
        tx_hash = await self._rpc(
            chain,
            name,
            lambda w3: getattr(self._factory(w3, chain).functions, name)(
                *args
            ).transact({"from": operator}),
            retry=False,
        )
        logger.info("Sent %s on chain %s: %s", name, chain.chain_id, _to_hex(tx_hash))
        w3 = self._endpoints(chain)[0]
        try:
            raw = await w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except TimeExhausted as e:
            raise ChainRpcError(
                f"{name} {_to_hex(tx_hash)} not mined within {self.receipt_timeout}s",
                chain_id=chain.chain_id,
                transaction_hash=_to_hex(tx_hash),
            ) from e
        except _RPC_ERRORS as e:
            raise ChainRpcError(
                f"Waiting for {name} receipt failed: {e}",
                chain_id=chain.chain_id,
                transaction_hash=_to_hex(tx_hash),
            ) from e
        return _receipt_from_web3(raw)

    async def aclose(self) -> None:
        for clients in self._clients.values():
            for client in clients:
                disconnect = getattr(client.provider, "disconnect", None)
                if disconnect is not None:
                    await disconnect()
        self._clients.clear()
