"""
Money Module

Decimal money handling for the lending core. Amounts are rounded half-up to
cents and NEVER represented as float.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Iterable

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Any, field: str = "monto") -> Decimal:
    """
    Convert user input to Decimal without going through float.

    Args:
        value: Decimal, int or numeric string
        field: Field name reported on validation errors

    Returns:
        Decimal value

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", field=field)
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be a number", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def round_money(amount: Decimal) -> Decimal:
    """
    Round half-up to cents.

    Raises:
        ValidationError: code ``invalid_amount`` when the amount does not fit
            the decimal context at cent precision
    """
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"Amount out of range: {amount}", code="invalid_amount")


def sum_money(amounts: Iterable[Decimal]) -> Decimal:
    """Sum amounts and round the result to cents"""
    return round_money(sum(amounts, ZERO))
