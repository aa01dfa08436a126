"""Integer amount arithmetic for on-chain values.

Amounts are carried as Python ints in token base units and checked against
the uint256 range at every boundary. Floats are never used; decimal input is
converted exactly or rejected.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext
from typing import Union

from .errors import NumericOverflowError

UINT256_MAX = 2**256 - 1
BPS_DENOMINATOR = 10_000


def ensure_uint256(value: int, *, field: str = "amount") -> int:
    """Return ``value`` if it fits in uint256, else raise NumericOverflowError."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise NumericOverflowError(
            f"{field} must be an integer number of base units", value=value
        )
    if value < 0 or value > UINT256_MAX:
        raise NumericOverflowError(f"{field} does not fit in uint256", value=value)
    return value


def to_base_units(amount: Union[str, int, Decimal], decimals: int) -> int:
    """Convert a human amount (e.g. ``"12.5"``) to token base units.

    Raises:
        NumericOverflowError: If the amount has more fractional digits than
            the token supports, is negative, or overflows uint256.
    """
    if isinstance(amount, float):
        raise NumericOverflowError("Float amounts are not accepted", value=amount)
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise NumericOverflowError(f"Invalid amount: {amount}", value=amount) from e
    if not value.is_finite():
        raise NumericOverflowError(f"Invalid amount: {amount}", value=amount)

    with localcontext() as ctx:
        # uint256 needs 78 significant digits
        ctx.prec = 100
        scaled = value.scaleb(decimals)
        is_whole = scaled == scaled.to_integral_value()
    if not is_whole:
        raise NumericOverflowError(
            f"Amount {amount} has more than {decimals} decimal places",
            value=amount,
            decimals=decimals,
        )
    return ensure_uint256(int(scaled))


def from_base_units(value: int, decimals: int) -> Decimal:
    """Convert base units back to an exact Decimal."""
    ensure_uint256(value)
    with localcontext() as ctx:
        ctx.prec = 100
        return Decimal(value).scaleb(-decimals)


def validate_fee_bps(fee_bps: int) -> int:
    if isinstance(fee_bps, bool) or not isinstance(fee_bps, int):
        raise ValueError("Fee must be an integer number of basis points")
    if fee_bps < 0 or fee_bps > BPS_DENOMINATOR:
        raise ValueError(f"Fee {fee_bps} bps is outside 0..{BPS_DENOMINATOR}")
    return fee_bps


def split_fee(amount: int, fee_bps: int) -> tuple[int, int]:
    """Split ``amount`` into ``(merchant_share, platform_fee)``.

    The platform fee is rounded down, matching the factory's integer
    division, so the merchant receives any remainder.
    """
    ensure_uint256(amount)
    validate_fee_bps(fee_bps)
    platform_fee = amount * fee_bps // BPS_DENOMINATOR
    merchant_share = amount - platform_fee
    return merchant_share, platform_fee


def within_tolerance(actual: int, expected: int, tolerance: int) -> bool:
    return abs(actual - expected) <= tolerance
