"""Day profit calculation.

Algorithm:
    profit = amount * change_pct / 100, rounded half away from zero to cents
"""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Coerce a monetary input to Decimal. Floats go through str so 0.1 stays 0.1."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def calculate_profit(
    amount: Decimal | int | float | str, change_pct: Decimal | int | float | str
) -> Decimal:
    """Return the profit of holding ``amount`` through a ``change_pct`` % move."""
    raw = to_decimal(amount) * to_decimal(change_pct) / 100
    return raw.quantize(CENT, rounding=ROUND_HALF_UP)
