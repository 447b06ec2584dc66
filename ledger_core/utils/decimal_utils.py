"""Helpers for Decimal money arithmetic."""

from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP

CENT = Decimal("0.01")
RATE_QUANTUM = Decimal("0.00000001")


def coerce_decimal(value) -> Decimal:
    """Normalize numeric values to Decimal.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather
    than its binary expansion. ``None`` becomes zero.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value) -> Decimal:
    """Quantize a value to cents."""
    return coerce_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_rate(value) -> Decimal:
    """Quantize a per-period payment to 8 decimal places."""
    return coerce_decimal(value).quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def to_money_ceiling(value) -> Decimal:
    """Quantize a value up to the next cent, so any positive amount stays visible."""
    return coerce_decimal(value).quantize(CENT, rounding=ROUND_CEILING)
