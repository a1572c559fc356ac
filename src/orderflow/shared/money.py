"""Monetary arithmetic helpers.

Amounts are stored as ``Float`` fields on aggregates but every calculation
goes through ``Decimal`` and is quantized to cents, so that totals satisfy
their identities exactly once read back.
"""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def as_float(value: Decimal) -> float:
    return float(to_money(value))


def money_sum(values) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return total
