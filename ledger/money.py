from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from ledger.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# NUMERIC(12, 2) holds at most ten integer digits
MAX_MONEY = Decimal("10000000000")


def to_money(value: Any, field: str = "amount") -> Decimal:
    """Coerce ``value`` into a two-place Decimal or raise ValidationError."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field, value=value)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field, value=value)
    try:
        if abs(amount) < MAX_MONEY:
            amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number", field=field, value=str(value))
    if abs(amount) >= MAX_MONEY:
        raise ValidationError(f"{field} is too large", field=field, value=str(value), limit=str(MAX_MONEY))
    return amount


def positive_money(value: Any, field: str = "amount") -> Decimal:
    amount = to_money(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than zero", field=field, amount=amount)
    return amount


def non_negative_money(value: Any, field: str = "amount") -> Decimal:
    amount = to_money(value, field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field, amount=amount)
    return amount


def as_str(value: Any) -> str:
    """Render a money value for JSON snapshots."""
    if value is None:
        return str(ZERO)
    return str(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))
