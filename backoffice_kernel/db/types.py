"""
Module: backoffice_kernel.db.types
Responsibility: Money constants and the helpers every service uses for
    amounts.  All amounts are Decimal; floats are rejected at the
    service boundary by to_money().
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

# Difference tolerated between debit and credit totals of one journal entry
BALANCE_TOLERANCE = Decimal("0.01")

ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Quantize a monetary value (half-up, two places by default)."""
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def to_money(value: Decimal | int | str | None) -> Decimal:
    """
    Coerce an incoming amount to a rounded Decimal.

    None becomes zero.  Floats are refused because they cannot carry an
    exact monetary value.

    Raises:
        TypeError: If value is a float.
        ValueError: If value is not a number.
    """
    if value is None:
        return round_money(ZERO)
    if isinstance(value, float):
        raise TypeError("Monetary amounts must be Decimal, int or str, not float")
    try:
        return round_money(Decimal(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
