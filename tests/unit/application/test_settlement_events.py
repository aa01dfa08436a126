"""Unit tests for receipt log decoding."""

import pytest
from eth_abi.exceptions import DecodingError

from chainsettle.application.deposit_address import compute_salt
from chainsettle.application.settlement_events import (
    TRANSFER_TOPIC,
    decode_swept_events,
    decode_transfers_to,
)
from chainsettle.domain.chains import DEFAULT_FACTORY_ADDRESS
from chainsettle.domain.entities import LogEntry
from tests.fixtures import (
    BASE_USDC,
    MERCHANT_WALLET,
    PAYER,
    make_receipt,
    swept_log,
    transfer_log,
)


DEPOSIT = "0x1111111111111111111111111111111111111111"
SALT = "0x" + compute_salt("CS-PAY-ABC").hex()
TX = "0x" + "ab" * 32


def test_decode_swept_event() -> None:
    receipt = make_receipt(
        TX,
        10,
        [
            transfer_log(BASE_USDC, DEPOSIT, MERCHANT_WALLET, 97, log_index=0),
            swept_log(
                DEFAULT_FACTORY_ADDRESS, SALT, DEPOSIT, BASE_USDC, 100, MERCHANT_WALLET, 3, 1
            ),
        ],
    )
    (event,) = decode_swept_events(receipt, DEFAULT_FACTORY_ADDRESS)
    assert event.salt == SALT
    assert event.deposit_address.lower() == DEPOSIT
    assert event.token == BASE_USDC
    assert event.merchant == MERCHANT_WALLET
    assert event.amount == 100
    assert event.merchant_amount == 97
    assert event.log_index == 1


def test_swept_from_other_contract_is_ignored() -> None:
    receipt = make_receipt(
        TX,
        10,
        [swept_log(PAYER, SALT, DEPOSIT, BASE_USDC, 100, MERCHANT_WALLET, 3)],
    )
    assert decode_swept_events(receipt, DEFAULT_FACTORY_ADDRESS) == []


def test_malformed_swept_data_raises() -> None:
    log = swept_log(DEFAULT_FACTORY_ADDRESS, SALT, DEPOSIT, BASE_USDC, 1, MERCHANT_WALLET, 0)
    broken = log.model_copy(update={"data": "0x1234"})
    with pytest.raises(DecodingError):
        decode_swept_events(make_receipt(TX, 10, [broken]), DEFAULT_FACTORY_ADDRESS)


def test_decode_transfers_to_recipient_only() -> None:
    receipt = make_receipt(
        TX,
        10,
        [
            transfer_log(BASE_USDC, PAYER, DEPOSIT, 60, log_index=0),
            transfer_log(BASE_USDC, PAYER, MERCHANT_WALLET, 5, log_index=1),
            transfer_log(BASE_USDC, PAYER, DEPOSIT.upper().replace("0X", "0x"), 40, log_index=2),
        ],
    )
    transfers = decode_transfers_to(receipt, DEPOSIT)
    assert [t.amount for t in transfers] == [60, 40]
    assert all(t.sender.lower() == PAYER.lower() for t in transfers)
    assert transfers[0].token == BASE_USDC


def test_nft_transfers_are_skipped() -> None:
    log = LogEntry(
        address=BASE_USDC,
        topics=[TRANSFER_TOPIC, "0x" + "00" * 32, "0x" + "00" * 32, "0x" + "00" * 31 + "01"],
        data="0x",
    )
    assert decode_transfers_to(make_receipt(TX, 10, [log]), DEPOSIT) == []
