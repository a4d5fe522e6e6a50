"""
Decimal rounding for e-CF amounts.

DGII rounds half-up on the first discarded digit. Amounts carry 2 decimals,
unit prices and exchange rates 4, sub-quantities 3.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

TWO_PLACES = Decimal("0.01")
THREE_PLACES = Decimal("0.001")
FOUR_PLACES = Decimal("0.0001")


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Convert to Decimal without binary float artifacts (10.005 stays 10.005)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round2(value: Decimal | int | float | str) -> Decimal:
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def round3(value: Decimal | int | float | str) -> Decimal:
    return to_decimal(value).quantize(THREE_PLACES, rounding=ROUND_HALF_UP)


def round4(value: Decimal | int | float | str) -> Decimal:
    return to_decimal(value).quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)
