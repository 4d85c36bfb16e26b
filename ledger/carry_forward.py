from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app

from extensions import db
from ledger import audit
from ledger.academic_years import get_academic_year
from ledger.clock import local_today, utc_now
from ledger.db_helpers import atomic
from ledger.errors import LedgerError, NoOutstandingBalance, NotFound, StateConflict, ValidationError
from ledger.fee_records import carried_forward_clause
from ledger.money import ZERO, as_str
from ledger.payment_block import enforce_previous_year_dues_block, previous_year_dues_type
from ledger.students import get_student
from models import FIFO_ORDER, CarryForward, FeeRecord


def get_carry_forward(carry_forward_id: int) -> CarryForward:
    cf = db.session.get(CarryForward, carry_forward_id) if carry_forward_id else None
    if cf is None:
        raise NotFound("carry_forward", carry_forward_id)
    return cf


def list_carry_forwards(
    student_id: Optional[int] = None,
    from_academic_year_id: Optional[int] = None,
    to_academic_year_id: Optional[int] = None,
    status: Optional[str] = None,
) -> List[CarryForward]:
    query = CarryForward.query
    if student_id:
        query = query.filter(CarryForward.student_id == student_id)
    if from_academic_year_id:
        query = query.filter(CarryForward.from_academic_year_id == from_academic_year_id)
    if to_academic_year_id:
        query = query.filter(CarryForward.to_academic_year_id == to_academic_year_id)
    if status:
        query = query.filter(CarryForward.status == status)
    return query.order_by(CarryForward.created_at.desc(), CarryForward.id.desc()).all()


def _carry_forward(
    student_id: int,
    from_year_id: int,
    to_year_id: int,
    cf_type: str,
    actor: str,
    notes: Optional[str],
    due_date: Optional[date],
) -> CarryForward:
    get_student(student_id)
    from_year = get_academic_year(from_year_id)
    to_year = get_academic_year(to_year_id)
    if to_year.id == from_year.id or to_year.start_date <= from_year.start_date:
        raise ValidationError(
            "destination year must start after the source year",
            from_academic_year_id=from_year_id,
            to_academic_year_id=to_year_id,
        )
    # A year's balance moves at most once, whatever the destination.
    existing = CarryForward.query.filter(
        CarryForward.student_id == student_id,
        CarryForward.from_academic_year_id == from_year_id,
        CarryForward.status != CarryForward.WAIVED,
    ).first()
    if existing is not None:
        raise StateConflict(
            "balance already carried forward",
            student_id=student_id,
            carry_forward_id=existing.id,
            to_academic_year_id=existing.to_academic_year_id,
        )

    sources = (
        FeeRecord.query.filter_by(student_id=student_id, academic_year_id=from_year_id)
        .order_by(*FIFO_ORDER)
        .with_for_update()
        .all()
    )
    open_sources = [r for r in sources if not r.is_waived and r.balance_fee > 0]
    outstanding = sum((r.balance_fee for r in open_sources), ZERO)
    if outstanding <= 0:
        raise NoOutstandingBalance(
            "no outstanding balance to carry forward",
            student_id=student_id,
            from_academic_year_id=from_year_id,
        )

    cf = CarryForward(
        student_id=student_id,
        from_academic_year_id=from_year_id,
        to_academic_year_id=to_year_id,
        original_amount=outstanding,
        carried_amount=outstanding,
        type=cf_type,
        status=CarryForward.PENDING,
        created_by=actor,
        notes=notes,
    )
    db.session.add(cf)
    db.session.flush()

    cfg = current_app.config
    dues = FeeRecord(
        student_id=student_id,
        academic_year_id=to_year_id,
        fee_type=previous_year_dues_type(),
        actual_fee=outstanding,
        discount_amount=ZERO,
        paid_amount=ZERO,
        due_date=due_date or max(to_year.start_date, local_today()),
        priority_order=cfg.get("PREVIOUS_YEAR_DUES_PRIORITY", 0),
        is_carry_forward=True,
        carry_forward_source_id=cf.id,
    )
    db.session.add(dues)
    db.session.flush()
    cf.status = CarryForward.APPLIED

    audit.log(
        audit.CARRY_FORWARD,
        student_id,
        fee_record_id=dues.id,
        old_values={
            "from_academic_year_id": from_year_id,
            "source_records": [
                {"fee_record_id": r.id, "fee_type": r.fee_type, "balance_fee": as_str(r.balance_fee)}
                for r in open_sources
            ],
        },
        new_values={
            "carry_forward_id": cf.id,
            "to_academic_year_id": to_year_id,
            "type": cf_type,
            **dues.snapshot(),
        },
        amount_affected=outstanding,
        actor=actor,
        notes=notes,
        academic_year_id=to_year_id,
    )
    enforce_previous_year_dues_block(student_id, to_year_id, actor)
    return cf


def _check_type(cf_type: str) -> str:
    cf_type = (cf_type or "manual").strip().lower()
    if cf_type not in CarryForward.TYPES:
        raise ValidationError("type must be manual, bulk or automatic", field="type", value=cf_type)
    return cf_type


def carry_forward(
    student_id: int,
    from_year_id: int,
    to_year_id: int,
    cf_type: str = "manual",
    actor: Optional[str] = None,
    notes: Optional[str] = None,
    due_date: Optional[date] = None,
) -> CarryForward:
    """Move a student's unpaid balance for one year into the next one.

    The source records keep their balances; the destination gets a single
    "Previous Year Dues" record pointing back at the CarryForward row. Until
    the carry-forward is waived the source records are not collected
    directly, so the debt is only payable once.
    """
    cf_type = _check_type(cf_type)
    if not (actor or "").strip():
        raise ValidationError("actor is required", field="actor")
    with atomic():
        cf = _carry_forward(student_id, from_year_id, to_year_id, cf_type, actor.strip(), notes, due_date)
    current_app.logger.info(
        "Carried forward %s for student %s from year %s to year %s (%s)",
        cf.carried_amount, student_id, from_year_id, to_year_id, cf_type,
    )
    return cf


def bulk_carry_forward(
    student_ids: Iterable[int],
    from_year_id: int,
    to_year_id: int,
    cf_type: str = "bulk",
    actor: Optional[str] = None,
    notes: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Carry forward per student; one failure never stops the batch."""
    cf_type = _check_type(cf_type)
    if not (actor or "").strip():
        raise ValidationError("actor is required", field="actor")
    results: List[Dict[str, Any]] = []
    for student_id in dict.fromkeys(student_ids):
        try:
            cf = carry_forward(student_id, from_year_id, to_year_id, cf_type, actor, notes)
            results.append(
                {
                    "student_id": student_id,
                    "success": True,
                    "carry_forward_id": cf.id,
                    "carried_amount": as_str(cf.carried_amount),
                }
            )
        except LedgerError as exc:
            current_app.logger.warning("Carry forward skipped for student %s: %s", student_id, exc.message)
            results.append({"student_id": student_id, "success": False, "error": exc.code, "message": exc.message})
    return results


def students_with_outstanding(academic_year_id: int) -> List[int]:
    rows = (
        db.session.query(FeeRecord.student_id)
        .filter(
            FeeRecord.academic_year_id == academic_year_id,
            FeeRecord.is_waived.is_(False),
            FeeRecord.balance_fee > 0,
            ~carried_forward_clause(),
        )
        .distinct()
        .order_by(FeeRecord.student_id.asc())
        .all()
    )
    return [row[0] for row in rows]


def carry_forward_year(from_year_id: int, to_year_id: int, actor: str) -> List[Dict[str, Any]]:
    """Automatic year-end run over every student who still owes money."""
    get_academic_year(from_year_id)
    get_academic_year(to_year_id)
    return bulk_carry_forward(students_with_outstanding(from_year_id), from_year_id, to_year_id, "automatic", actor)


def waive(carry_forward_id: int, reason: str, actor: str) -> CarryForward:
    """Cancel a carry-forward by discounting the linked dues record in full.

    The source year's records become collectable in that year again.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required", field="reason")
    if not (actor or "").strip():
        raise ValidationError("actor is required", field="actor")
    actor = actor.strip()
    with atomic():
        cf = CarryForward.query.filter_by(id=carry_forward_id).with_for_update().first()
        if cf is None:
            raise NotFound("carry_forward", carry_forward_id)
        if cf.status == CarryForward.WAIVED:
            raise StateConflict("carry forward already waived", carry_forward_id=cf.id, status=cf.status)
        dues = FeeRecord.query.filter_by(carry_forward_source_id=cf.id).with_for_update().first()
        if dues is not None and Decimal(dues.paid_amount or 0) > 0:
            raise StateConflict(
                "carried-forward dues have payments and cannot be waived",
                carry_forward_id=cf.id,
                fee_record_id=dues.id,
                paid_amount=dues.paid_amount,
            )
        before = {"status": cf.status, **(dues.snapshot() if dues is not None else {})}
        cf.status = CarryForward.WAIVED
        cf.notes = f"{cf.notes}\nWaived: {reason}" if cf.notes else f"Waived: {reason}"
        if dues is not None:
            dues.discount_amount = dues.actual_fee
            dues.is_waived = True
            dues.discount_notes = f"Carry forward waived: {reason}"
            dues.discount_updated_by = actor
            dues.discount_updated_at = utc_now()
        audit.log(
            audit.WAIVER,
            cf.student_id,
            fee_record_id=dues.id if dues is not None else None,
            old_values=before,
            new_values={"status": cf.status, **(dues.snapshot() if dues is not None else {})},
            amount_affected=cf.carried_amount,
            actor=actor,
            notes=reason,
            academic_year_id=cf.to_academic_year_id,
        )
        enforce_previous_year_dues_block(cf.student_id, cf.to_academic_year_id, actor)
    current_app.logger.info("Carry forward %s waived by %s", carry_forward_id, actor)
    return cf
