from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from flask import current_app
from sqlalchemy import and_, exists

from extensions import db
from ledger import audit
from ledger.academic_years import get_academic_year
from ledger.clock import local_today
from ledger.db_helpers import atomic
from ledger.errors import NotFound, ValidationError
from ledger.money import ZERO, as_str, non_negative_money
from ledger.payment_block import enforce_previous_year_dues_block, is_previous_year_dues
from ledger.status import ALL_STATUSES, derive_status
from ledger.students import get_student
from models import FIFO_ORDER, CarryForward, FeeRecord

__all__ = [
    "FIFO_ORDER",
    "carried_forward_years",
    "create_fee_record",
    "derive_status",
    "get_fee_record",
    "get_outstanding",
    "insert_fee_record",
    "list_fee_records",
    "previous_year_dues",
    "student_balance_summary",
]


def get_fee_record(fee_record_id: int) -> FeeRecord:
    record = db.session.get(FeeRecord, fee_record_id) if fee_record_id else None
    if record is None:
        raise NotFound("fee_record", fee_record_id)
    return record


def list_fee_records(student_id: int, academic_year_id: Optional[int] = None) -> List[FeeRecord]:
    query = FeeRecord.query.filter(FeeRecord.student_id == student_id)
    if academic_year_id:
        query = query.filter(FeeRecord.academic_year_id == academic_year_id)
    return query.order_by(*FIFO_ORDER).all()


def carried_forward_clause():
    """True for records whose year has been carried forward and not waived.

    Their balance now lives on the destination year's dues record, so they
    are no longer collected directly.
    """
    return exists().where(
        and_(
            CarryForward.student_id == FeeRecord.student_id,
            CarryForward.from_academic_year_id == FeeRecord.academic_year_id,
            CarryForward.status != CarryForward.WAIVED,
        )
    )


def carried_forward_years(student_id: int) -> Set[int]:
    rows = (
        db.session.query(CarryForward.from_academic_year_id)
        .filter(CarryForward.student_id == student_id, CarryForward.status != CarryForward.WAIVED)
        .all()
    )
    return {row[0] for row in rows}


def candidate_query(student_id: int, academic_year_id: Optional[int] = None):
    query = FeeRecord.query.filter(FeeRecord.student_id == student_id, ~carried_forward_clause())
    if academic_year_id:
        query = query.filter(FeeRecord.academic_year_id == academic_year_id)
    return query.order_by(*FIFO_ORDER)


def get_outstanding(student_id: int, academic_year_id: Optional[int] = None) -> List[FeeRecord]:
    """Unblocked records with something left to pay, in FIFO order."""
    return (
        candidate_query(student_id, academic_year_id)
        .filter(FeeRecord.payment_blocked.is_(False), FeeRecord.is_waived.is_(False))
        .filter(FeeRecord.balance_fee > 0)
        .all()
    )


def previous_year_dues(student_id: int, academic_year_id: Optional[int] = None) -> List[FeeRecord]:
    return [r for r in list_fee_records(student_id, academic_year_id) if is_previous_year_dues(r)]


def as_date(value: Any, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a YYYY-MM-DD date", field=field, value=value)


def resolve_priority(fee_type: str, priority_order: Any = None) -> int:
    if priority_order is None:
        cfg = current_app.config
        if fee_type == cfg.get("PREVIOUS_YEAR_DUES_FEE_TYPE", "Previous Year Dues"):
            priority_order = cfg.get("PREVIOUS_YEAR_DUES_PRIORITY", 0)
        else:
            priority_order = cfg.get("DEFAULT_FEE_PRIORITY", 10)
    try:
        return int(priority_order)
    except (TypeError, ValueError):
        raise ValidationError("priority_order must be an integer", field="priority_order", value=priority_order)


def insert_fee_record(
    student_id: int,
    academic_year_id: int,
    fee_type: str,
    amount: Decimal,
    due: date,
    priority_order: int,
    actor: str,
    notes: Optional[str] = None,
) -> FeeRecord:
    """Add a record and its fee_created audit row to the open transaction."""
    record = FeeRecord(
        student_id=student_id,
        academic_year_id=academic_year_id,
        fee_type=fee_type,
        actual_fee=amount,
        discount_amount=ZERO,
        paid_amount=ZERO,
        due_date=due,
        priority_order=priority_order,
    )
    db.session.add(record)
    db.session.flush()
    audit.log(
        audit.FEE_CREATED,
        student_id,
        fee_record_id=record.id,
        old_values=None,
        new_values={"fee_type": fee_type, **record.snapshot()},
        amount_affected=amount,
        actor=actor,
        notes=notes,
        academic_year_id=academic_year_id,
    )
    return record


def create_fee_record(
    student_id: int,
    academic_year_id: int,
    fee_type: str,
    actual_fee: Any,
    due_date: Any,
    actor: str,
    priority_order: Optional[int] = None,
) -> FeeRecord:
    """Assign an obligation to a student for an academic year."""
    fee_type = (fee_type or "").strip()
    if not fee_type:
        raise ValidationError("fee_type is required", field="fee_type")
    if not (actor or "").strip():
        raise ValidationError("actor is required", field="actor")
    amount = non_negative_money(actual_fee, "actual_fee")
    due = as_date(due_date, "due_date")
    priority = resolve_priority(fee_type, priority_order)

    with atomic():
        get_student(student_id)
        get_academic_year(academic_year_id)
        record = insert_fee_record(student_id, academic_year_id, fee_type, amount, due, priority, actor)
        enforce_previous_year_dues_block(student_id, academic_year_id, actor)
    return record


def student_balance_summary(student_id: int, academic_year_id: Optional[int] = None, today: Optional[date] = None) -> Dict[str, Any]:
    """Totals and status counts, recomputed from the committed rows.

    Balances of carried-forward years are reported but not payable; they are
    collected through the destination year's dues record.
    """
    today = today or local_today()
    records = list_fee_records(student_id, academic_year_id)
    carried_years = carried_forward_years(student_id)
    keys = ("actual_fee", "discount_amount", "paid_amount", "balance_fee", "blocked_balance", "carried_forward_balance")
    totals = {k: Decimal("0.00") for k in keys}
    by_status = {s: 0 for s in ALL_STATUSES}
    for r in records:
        totals["actual_fee"] += Decimal(r.actual_fee)
        totals["discount_amount"] += Decimal(r.discount_amount)
        totals["paid_amount"] += Decimal(r.paid_amount)
        totals["balance_fee"] += r.balance_fee
        if r.academic_year_id in carried_years:
            totals["carried_forward_balance"] += r.balance_fee
        elif r.payment_blocked:
            totals["blocked_balance"] += r.balance_fee
        by_status[r.status_on(today)] += 1
    payable = totals["balance_fee"] - totals["blocked_balance"] - totals["carried_forward_balance"]
    return {
        "student_id": student_id,
        "academic_year_id": academic_year_id,
        "records": len(records),
        **{k: as_str(v) for k, v in totals.items()},
        "payable_balance": as_str(payable),
        "by_status": by_status,
    }
