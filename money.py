"""Conversions between stored integer cents and two-decimal amounts.

Amounts live in the database as integer cents so that sums are exact. They
cross the API boundary as ``Decimal`` values quantized to two places.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def cents_to_amount(cents: Union[int, None]) -> Decimal:
    if not cents:
        return ZERO
    return (Decimal(int(cents)) / 100).quantize(CENT)


def amount_to_cents(amount: Union[Decimal, int, str]) -> int:
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def average_amount(total_cents: int, count: int) -> Decimal:
    if not count:
        return ZERO
    return (Decimal(int(total_cents)) / 100 / count).quantize(
        CENT, rounding=ROUND_HALF_UP
    )
