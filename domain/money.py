"""Monetary helpers.

Amounts inside the domain are ``Decimal``; the database and the payment
processor use integer minor units (Rappen, cents).
"""

from decimal import ROUND_HALF_UP, Decimal

# Minor units per major unit. Unknown currencies fall back to 100.
CURRENCY_FACTORS: dict[str, int] = {
    "chf": 100,
    "eur": 100,
    "usd": 100,
}
DEFAULT_FACTOR = 100

CENT = Decimal("0.01")


def _factor(currency: str) -> int:
    return CURRENCY_FACTORS.get(currency.lower(), DEFAULT_FACTOR)


def to_decimal(amount: Decimal | int | float | str) -> Decimal:
    """Convert to Decimal via ``str`` so floats keep their printed value."""
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def to_smallest_unit(amount: Decimal | int | float | str, currency: str = "chf") -> int:
    """Convert a major-unit amount to integer minor units, rounding half-up.

    >>> to_smallest_unit(99.99, "chf")
    9999
    >>> to_smallest_unit(10.999, "chf")
    1100
    """
    scaled = to_decimal(amount) * _factor(currency)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_smallest_unit(amount: int, currency: str = "chf") -> Decimal:
    """Convert integer minor units back to a major-unit Decimal."""
    return Decimal(int(amount)) / _factor(currency)


def round_money(amount: Decimal | int | float | str) -> Decimal:
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal | int | float, currency: str = "CHF") -> str:
    return f"{currency.upper()} {round_money(amount):.2f}"
