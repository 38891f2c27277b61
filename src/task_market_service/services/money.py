"""Money parsing and conversion. Amounts are Decimal in code and integer cents on disk."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from task_market_service.core.exceptions import ValidationError

CENT = Decimal("0.01")


def quantize(value: Decimal) -> Decimal:
    """Round to whole cents, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    """Convert a money amount to integer cents."""
    return int(quantize(value) * 100)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a two-digit Decimal."""
    return (Decimal(cents) / 100).quantize(CENT)


def to_json_number(value: Decimal) -> float:
    """Render a money amount for a JSON response."""
    return float(quantize(value))


def parse_amount(value: object, field_name: str = "amount") -> Decimal:
    """
    Parse a positive money amount with at most two decimal places.

    Accepts int, float or numeric string. Booleans are rejected.

    Raises:
        ValidationError: INVALID_AMOUNT for anything else
    """
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        raise ValidationError("INVALID_AMOUNT", f"{field_name} must be a number")

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValidationError("INVALID_AMOUNT", f"{field_name} must be a number") from exc

    if not amount.is_finite():
        raise ValidationError("INVALID_AMOUNT", f"{field_name} must be a finite number")
    if amount <= 0:
        raise ValidationError("INVALID_AMOUNT", f"{field_name} must be greater than zero")
    if amount != quantize(amount):
        raise ValidationError("INVALID_AMOUNT", f"{field_name} must have at most two decimals")
    return quantize(amount)
