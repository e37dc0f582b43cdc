"""Money helpers.

Amounts are stored as integer cents so the database can apply balance
deltas exactly; the API speaks decimal amounts with two places.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from rivercafe.core.config import settings
from rivercafe.core.errors import InvalidAmount

CENT = Decimal("0.01")


def parse_amount(value: Any) -> int:
    """Convert a client-supplied amount to positive integer cents.

    Raises InvalidAmount for non-numeric, non-finite, non-positive values,
    for values with more than two decimal places and for values above
    ``settings.max_amount_cents``.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount()
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount()
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount()
    if amount * 100 > settings.max_amount_cents:
        raise InvalidAmount(f"Amount exceeds the maximum of {from_cents(settings.max_amount_cents)}")
    try:
        if amount != amount.quantize(CENT):
            raise InvalidAmount()
    except InvalidOperation:
        raise InvalidAmount()
    return int(amount * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)
