from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional

from extensions import db
from ledger.clock import utc_now
from ledger.errors import ValidationError
from ledger.money import to_money
from models import AuditLogEntry

DISCOUNT = "discount"
PAYMENT = "payment"
BLOCK = "block"
UNBLOCK = "unblock"
CARRY_FORWARD = "carry_forward"
WAIVER = "waiver"
FEE_CREATED = "fee_created"

ACTION_TYPES = (DISCOUNT, PAYMENT, BLOCK, UNBLOCK, CARRY_FORWARD, WAIVER, FEE_CREATED)


def log(
    action_type: str,
    student_id: int,
    fee_record_id: Optional[int] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    amount_affected: Any = 0,
    actor: Optional[str] = None,
    notes: Optional[str] = None,
    reference_number: Optional[str] = None,
    academic_year_id: Optional[int] = None,
) -> AuditLogEntry:
    """Append an audit row to the caller's transaction.

    Nothing is committed here; the row lands or disappears together with the
    mutation it describes.
    """
    if not (action_type or "").strip():
        raise ValidationError("action_type is required", field="action_type")
    if not student_id:
        raise ValidationError("student_id is required", field="student_id")
    if not (actor or "").strip():
        raise ValidationError("actor is required", field="actor")
    entry = AuditLogEntry(
        student_id=student_id,
        fee_record_id=fee_record_id,
        academic_year_id=academic_year_id,
        action_type=action_type.strip(),
        old_values=old_values,
        new_values=new_values,
        amount_affected=to_money(amount_affected or 0, "amount_affected"),
        performed_by=actor.strip(),
        performed_at=utc_now(),
        notes=notes,
        reference_number=reference_number,
    )
    db.session.add(entry)
    return entry


def _as_bound(value: Any, end: bool = False) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.max if end else time.min)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError("date filters must be ISO formatted", value=value)
    if end and len(str(value)) <= 10:
        parsed = datetime.combine(parsed.date(), time.max)
    return parsed


def fetch(
    student_id: Optional[int] = None,
    academic_year_id: Optional[int] = None,
    action_type: Optional[str] = None,
    date_from: Any = None,
    date_to: Any = None,
    limit: Optional[int] = None,
) -> List[AuditLogEntry]:
    """Audit history, newest first. Read-only."""
    query = AuditLogEntry.query
    if student_id:
        query = query.filter(AuditLogEntry.student_id == student_id)
    if academic_year_id:
        query = query.filter(AuditLogEntry.academic_year_id == academic_year_id)
    if action_type:
        query = query.filter(AuditLogEntry.action_type == action_type)
    start = _as_bound(date_from)
    if start is not None:
        query = query.filter(AuditLogEntry.performed_at >= start)
    end = _as_bound(date_to, end=True)
    if end is not None:
        query = query.filter(AuditLogEntry.performed_at <= end)
    query = query.order_by(AuditLogEntry.performed_at.desc(), AuditLogEntry.id.desc())
    if limit:
        query = query.limit(min(max(int(limit), 1), 1000))
    return query.all()


def total_affected(entries: List[AuditLogEntry]) -> Decimal:
    return sum((Decimal(e.amount_affected or 0) for e in entries), Decimal("0.00"))
