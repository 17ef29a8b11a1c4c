from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from stockflow.domain.errors import ValidationError

ZERO = Decimal("0")
CENTS = Decimal("0.01")


def to_money(value: object, *, field: str = "amount") -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            # str() first so floats like 0.1 keep their printed value
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"{field} must be a number. Received: {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number.")
    return amount


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_int(value: object, *, field: str = "value") -> int:
    """Whole number from int, Decimal, float or numeric text; fractions are rejected, not truncated."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a whole number. Received: {value!r}")
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a whole number. Received: {value!r}") from exc
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f"{field} must be a whole number. Received: {value!r}")
    return int(number)


def to_quantity(value: object, *, field: str = "Qty") -> int:
    qty = to_int(value, field=field)
    if qty <= 0:
        raise ValidationError(f"{field} must be >= 1.")
    return qty
