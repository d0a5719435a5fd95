"""Conversion between integer cents and Decimal dollars at the API boundary"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from dues_gateway.domain.exceptions import ValidationError

TWO_PLACES = Decimal("0.01")
CENTS_PER_DOLLAR = 100


def cents_to_decimal(amount_cents: int) -> Decimal:
    """12345 -> Decimal('123.45')"""
    return (Decimal(amount_cents) / CENTS_PER_DOLLAR).quantize(TWO_PLACES)


def decimal_to_cents(amount) -> int:
    """
    Convert a dollar amount (Decimal, str or int) to integer cents.

    Floats are rejected: they cannot represent most cent values exactly.
    Amounts with more than two decimal places raise ValidationError instead of
    being silently rounded.
    """
    if isinstance(amount, float):
        raise ValidationError("Monetary amounts must be Decimal or str, not float")
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid monetary amount: {amount!r}") from e

    if value != value.quantize(TWO_PLACES):
        raise ValidationError(f"Amount {amount} has sub-cent precision")
    return int(value * CENTS_PER_DOLLAR)


def round_cents(value: Decimal) -> int:
    """Round a fractional cent value half-up to whole cents"""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
