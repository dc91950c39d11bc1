"""Fixed-point money helpers.

All amounts are KES Decimals with two fractional digits. The payment
provider works in integer minor units (1 KES = 100).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CURRENCY = "KES"
TWO_PLACES = Decimal("0.01")
MINOR_UNITS_PER_UNIT = 100


def to_money(value: Decimal | int | str | float) -> Decimal:
    """Coerce a value to a 2dp Decimal (ROUND_HALF_UP)."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal | int | str) -> int:
    """Convert a decimal amount to integer minor units, rounding half up."""
    money = to_money(amount)
    if money < 0:
        raise ValueError("Amount cannot be negative")
    minor = (money * MINOR_UNITS_PER_UNIT).to_integral_value(rounding=ROUND_HALF_UP)
    return int(minor)


def from_minor_units(minor: int | str | Decimal) -> Decimal:
    """Convert provider minor units back to a 2dp Decimal."""
    try:
        value = Decimal(str(minor))
    except InvalidOperation as e:
        raise ValueError(f"Not an amount in minor units: {minor!r}") from e
    return to_money(value / MINOR_UNITS_PER_UNIT)


def sum_money(values: list[Decimal | None]) -> Decimal:
    """Sum optional amounts, treating None as zero."""
    total = Decimal("0")
    for value in values:
        if value is not None:
            total += value
    return to_money(total)
