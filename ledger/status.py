from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

PENDING = "Pending"
PARTIAL = "Partial"
PAID = "Paid"
OVERDUE = "Overdue"
WAIVED = "Waived"

ALL_STATUSES = (PENDING, PARTIAL, PAID, OVERDUE, WAIVED)


def compute_balance(actual_fee, discount_amount, paid_amount) -> Decimal:
    balance = Decimal(actual_fee or 0) - Decimal(discount_amount or 0) - Decimal(paid_amount or 0)
    return balance if balance > 0 else Decimal("0.00")


def derive_status(
    *,
    balance: Decimal,
    paid_amount: Decimal,
    due_date: Optional[date],
    today: date,
    is_waived: bool = False,
) -> str:
    """Project a fee record's status from its amounts.

    Status is never stored; every read goes through here.
    """
    if is_waived:
        return WAIVED
    if balance <= 0:
        return PAID
    if due_date is not None and due_date < today:
        return OVERDUE
    if paid_amount and paid_amount > 0:
        return PARTIAL
    return PENDING
