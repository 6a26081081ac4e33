from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

# Type alias for money values
Money = Decimal

ZERO = Decimal("0.00")
_CENT = Decimal("0.01")


def round_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """
    Round monetary value to 2 decimal places using ROUND_HALF_UP.

    Ties round away from zero for negative amounts as well, so credits and
    charges of the same magnitude always round to the same absolute value.

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money(-10.125)
        Decimal('-10.13')
        >>> round_money("10.115")
        Decimal('10.12')
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Union[Decimal, int, None]]) -> Decimal:
    """Sum amounts, treating None as zero, and round the result."""
    total = Decimal("0")
    for value in values:
        if value is not None:
            total += value
    return round_money(total)


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    """Share of ``part`` in ``whole`` as a percentage; 0 when ``whole`` is not positive."""
    if whole <= 0:
        return ZERO
    return round_money(part * Decimal("100") / whole)
