from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List

from flask import current_app

from extensions import db
from ledger import audit
from ledger.academic_years import get_academic_year
from ledger.clock import utc_now
from ledger.db_helpers import atomic
from ledger.errors import ValidationError
from ledger.students import get_student
from models import FIFO_ORDER, FeeRecord, Student

POLICY_REASON = "Previous year dues outstanding"


def previous_year_dues_type() -> str:
    return current_app.config.get("PREVIOUS_YEAR_DUES_FEE_TYPE") or "Previous Year Dues"


def is_previous_year_dues(record: FeeRecord) -> bool:
    return bool(record.is_carry_forward) or record.fee_type == previous_year_dues_type()


def _year_records(student_id: int, academic_year_id: int, lock: bool = False) -> List[FeeRecord]:
    query = FeeRecord.query.filter_by(student_id=student_id, academic_year_id=academic_year_id).order_by(*FIFO_ORDER)
    if lock:
        query = query.with_for_update()
    return query.all()


def _block(record: FeeRecord, reason: str, actor: str) -> None:
    before = record.snapshot()
    record.payment_blocked = True
    record.blocked_reason = reason
    record.blocked_by = actor
    record.blocked_at = utc_now()
    audit.log(
        audit.BLOCK,
        record.student_id,
        fee_record_id=record.id,
        old_values=before,
        new_values={**record.snapshot(), "blocked_reason": reason},
        amount_affected=record.balance_fee,
        actor=actor,
        notes=reason,
        academic_year_id=record.academic_year_id,
    )


def _unblock(record: FeeRecord, actor: str, notes: str) -> None:
    before = {**record.snapshot(), "blocked_reason": record.blocked_reason}
    record.payment_blocked = False
    record.blocked_reason = None
    record.blocked_by = None
    record.blocked_at = None
    audit.log(
        audit.UNBLOCK,
        record.student_id,
        fee_record_id=record.id,
        old_values=before,
        new_values=record.snapshot(),
        amount_affected=record.balance_fee,
        actor=actor,
        notes=notes,
        academic_year_id=record.academic_year_id,
    )


def enforce_previous_year_dues_block(student_id: int, academic_year_id: int, actor: str) -> Dict[str, List[int]]:
    """Block a year's regular fees while its Previous Year Dues are unpaid.

    Runs inside the caller's transaction. Dues records themselves are never
    blocked by this rule, so they stay payable. Releasing only touches blocks
    this rule placed; manual holds stay until lifted by hand.
    """
    db.session.flush()
    records = _year_records(student_id, academic_year_id)
    dues_outstanding = any(
        is_previous_year_dues(r) and not r.is_waived and r.balance_fee > 0 for r in records
    )
    blocked: List[int] = []
    released: List[int] = []
    for record in records:
        if is_previous_year_dues(record):
            continue
        if dues_outstanding:
            if not record.payment_blocked and record.balance_fee > 0:
                _block(record, POLICY_REASON, actor)
                blocked.append(record.id)
        elif record.payment_blocked and record.blocked_reason == POLICY_REASON:
            _unblock(record, actor, "Previous year dues cleared")
            released.append(record.id)
    if blocked or released:
        current_app.logger.info(
            "Payment block for student %s year %s: blocked=%s released=%s",
            student_id, academic_year_id, blocked, released,
        )
    return {"blocked": blocked, "released": released}


def block_student(student_id: int, academic_year_id: int, reason: str, actor: str) -> List[FeeRecord]:
    """Manual hold on every record of a student's academic year."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required to block payments", field="reason")
    if not (actor or "").strip():
        raise ValidationError("actor is required", field="actor")
    with atomic():
        get_student(student_id)
        get_academic_year(academic_year_id)
        changed = []
        for record in _year_records(student_id, academic_year_id, lock=True):
            if record.payment_blocked:
                continue
            _block(record, reason, actor)
            changed.append(record)
    return changed


def unblock_student(student_id: int, academic_year_id: int, actor: str) -> List[FeeRecord]:
    """Lift every block in the year, then let the dues rule re-apply itself."""
    if not (actor or "").strip():
        raise ValidationError("actor is required", field="actor")
    with atomic():
        get_student(student_id)
        get_academic_year(academic_year_id)
        changed = []
        for record in _year_records(student_id, academic_year_id, lock=True):
            if not record.payment_blocked:
                continue
            _unblock(record, actor, "Manual unblock")
            changed.append(record)
        enforce_previous_year_dues_block(student_id, academic_year_id, actor)
    return changed


def blocked_students(academic_year_id: int) -> List[Dict[str, Any]]:
    """Students with at least one blocked record in the year."""
    rows = (
        db.session.query(FeeRecord, Student)
        .join(Student, Student.id == FeeRecord.student_id)
        .filter(FeeRecord.academic_year_id == academic_year_id, FeeRecord.payment_blocked.is_(True))
        .order_by(Student.name.asc(), FeeRecord.id.asc())
        .all()
    )
    report: Dict[int, Dict[str, Any]] = {}
    for record, student in rows:
        entry = report.setdefault(
            student.id,
            {
                "student_id": student.id,
                "admission_number": student.admission_number,
                "name": student.name,
                "class_name": student.class_name,
                "blocked_records": 0,
                "blocked_balance": Decimal("0.00"),
                "reasons": [],
            },
        )
        entry["blocked_records"] += 1
        entry["blocked_balance"] += record.balance_fee
        if record.blocked_reason and record.blocked_reason not in entry["reasons"]:
            entry["reasons"].append(record.blocked_reason)
    return list(report.values())
