"""Decoding of settlement evidence from receipt logs."""

from __future__ import annotations

from typing import Iterable, Optional

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from pydantic import BaseModel
from web3 import Web3

from ..domain.entities import LogEntry, TransactionReceipt

SWEPT_EVENT_SIGNATURE = "Swept(bytes32,address,address,uint256,address,uint256)"
TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"

SWEPT_TOPIC = "0x" + bytes(Web3.keccak(text=SWEPT_EVENT_SIGNATURE)).hex()
TRANSFER_TOPIC = "0x" + bytes(Web3.keccak(text=TRANSFER_EVENT_SIGNATURE)).hex()


class SweptEvent(BaseModel):
    """``Swept(salt, depositAddress, token, amount, merchant, platformFee)``."""

    factory_address: str
    salt: str
    deposit_address: str
    token: str
    amount: int
    merchant: str
    platform_fee: int
    log_index: int

    @property
    def merchant_amount(self) -> int:
        return self.amount - self.platform_fee


class TokenTransfer(BaseModel):
    token: str
    sender: str
    recipient: str
    amount: int
    log_index: int


def _hex_to_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def _topic_to_address(topic: str) -> str:
    raw = _hex_to_bytes(topic)
    if len(raw) != 32:
        raise DecodingError("Indexed address topic must be 32 bytes")
    return Web3.to_checksum_address("0x" + raw[12:].hex())


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


def _logs_with_topic(logs: Iterable[LogEntry], topic: str) -> Iterable[LogEntry]:
    for log in logs:
        if log.topics and log.topics[0].lower() == topic:
            yield log


def decode_swept_events(
    receipt: TransactionReceipt, factory_address: str
) -> list[SweptEvent]:
    """Decode ``Swept`` events emitted by ``factory_address``.

    Logs that carry the event topic but cannot be decoded raise
    ``DecodingError``; unrelated logs are ignored.
    """
    events: list[SweptEvent] = []
    for log in _logs_with_topic(receipt.logs, SWEPT_TOPIC):
        if not _same_address(log.address, factory_address):
            continue
        if len(log.topics) != 3:
            raise DecodingError("Swept event must have 3 topics")
        token, amount, merchant, platform_fee = decode(
            ["address", "uint256", "address", "uint256"], _hex_to_bytes(log.data)
        )
        events.append(
            SweptEvent(
                factory_address=Web3.to_checksum_address(log.address),
                salt=log.topics[1].lower(),
                deposit_address=_topic_to_address(log.topics[2]),
                token=Web3.to_checksum_address(token),
                amount=amount,
                merchant=Web3.to_checksum_address(merchant),
                platform_fee=platform_fee,
                log_index=log.log_index,
            )
        )
    return events


def decode_transfers_to(
    receipt: TransactionReceipt, recipient: str
) -> list[TokenTransfer]:
    """Decode ERC-20 ``Transfer`` logs whose recipient is ``recipient``."""
    transfers: list[TokenTransfer] = []
    for log in _logs_with_topic(receipt.logs, TRANSFER_TOPIC):
        # ERC-721 transfers share the topic but index the token id
        if len(log.topics) != 3:
            continue
        to_address = _topic_to_address(log.topics[2])
        if not _same_address(to_address, recipient):
            continue
        (amount,) = decode(["uint256"], _hex_to_bytes(log.data))
        transfers.append(
            TokenTransfer(
                token=Web3.to_checksum_address(log.address),
                sender=_topic_to_address(log.topics[1]),
                recipient=to_address,
                amount=amount,
                log_index=log.log_index,
            )
        )
    return transfers
