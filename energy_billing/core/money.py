"""
Fixed-point helpers for money and energy amounts.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

DecimalLike = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
WATT_HOUR = Decimal("0.001")


def to_decimal(value: DecimalLike) -> Decimal:
    """Converts a value to Decimal (floats go through str to avoid binary noise)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round2(value: DecimalLike) -> Decimal:
    """Rounds to two decimal places (ROUND_HALF_UP)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_kwh(value: DecimalLike) -> Decimal:
    """Rounds energy to three decimal places (Wh resolution)."""
    return to_decimal(value).quantize(WATT_HOUR, rounding=ROUND_HALF_UP)


def format_money(value: DecimalLike) -> str:
    """Formats money for the API, e.g. "108.00"."""
    return str(round2(value))


def format_kwh(value: DecimalLike) -> str:
    """Formats energy for the API, e.g. "720.000"."""
    return str(round_kwh(value))
