"""FIFO payment allocation.

A payment is spread over a student's outstanding, unblocked fee records in
the canonical order (priority_order, due_date, created_at). ``simulate`` is a
read-only preview; ``commit`` re-plans under row locks and writes the payment,
its allocation rows, the fee record updates and one audit row together.
"""
from __future__ import annotations

import secrets
import string
import time as _time
from datetime import date, time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from extensions import db
from ledger import audit
from ledger.clock import local_now
from ledger.db_helpers import atomic
from ledger.errors import AllocationOverflow, ConcurrentModification, NotFound, ValidationError
from ledger.fee_records import candidate_query, get_outstanding
from ledger.money import ZERO, as_str, non_negative_money, positive_money, to_money
from ledger.payment_block import enforce_previous_year_dues_block
from ledger.students import get_student
from models import FeeRecord, PaymentAllocation, PaymentRecord

Plan = List[Tuple[FeeRecord, Decimal]]


def _walk(records: Sequence[FeeRecord], amount: Decimal) -> Tuple[Plan, Decimal]:
    remaining = amount
    plan: Plan = []
    for record in records:
        if remaining <= 0:
            break
        balance = record.balance_fee
        if balance <= 0:
            continue
        allocated = min(remaining, balance)
        plan.append((record, allocated))
        remaining -= allocated
    return plan, remaining


def _describe(plan: Plan, amount: Decimal, remaining: Decimal) -> Dict[str, Any]:
    allocations = []
    for record, allocated in plan:
        balance = record.balance_fee
        allocations.append(
            {
                "fee_record_id": record.id,
                "fee_type": record.fee_type,
                "academic_year_id": record.academic_year_id,
                "due_date": record.due_date,
                "balance_before": balance,
                "allocated_amount": allocated,
                "balance_after": balance - allocated,
            }
        )
    return {
        "allocations": allocations,
        "total_allocated": amount - remaining,
        "remaining_amount": remaining,
    }


def simulate(student_id: int, amount: Any, academic_year_id: Optional[int] = None) -> Dict[str, Any]:
    """Preview how ``amount`` would be allocated. Never writes."""
    amount = positive_money(amount)
    get_student(student_id)
    plan, remaining = _walk(get_outstanding(student_id, academic_year_id), amount)
    return _describe(plan, amount, remaining)


def _plan_key(expected_plan: Any) -> List[Tuple[int, Decimal]]:
    if not isinstance(expected_plan, dict) or not isinstance(expected_plan.get("allocations") or [], list):
        raise ValidationError("expected_plan must be a simulation result object", field="expected_plan")
    try:
        return [
            (int(a["fee_record_id"]), to_money(a["allocated_amount"], "allocated_amount"))
            for a in expected_plan.get("allocations") or []
        ]
    except (KeyError, TypeError, ValueError):
        raise ValidationError("expected_plan allocations are malformed", field="expected_plan")


def generate_receipt_number() -> str:
    prefix = current_app.config.get("RECEIPT_PREFIX") or "RCP"
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f"{prefix}-{int(_time.time() * 1000)}-{suffix}"


def _payment_fields(meta: Dict[str, Any]) -> Dict[str, Any]:
    meta = dict(meta or {})
    method = (meta.get("method") or "").strip()
    if method not in PaymentRecord.METHODS:
        raise ValidationError(
            f"method must be one of: {', '.join(PaymentRecord.METHODS)}", field="method", value=method or None
        )
    receiver = (meta.get("receiver") or "").strip()
    if not receiver:
        raise ValidationError("receiver is required", field="receiver")
    now = local_now()
    payment_date = meta.get("payment_date") or now.date()
    if not isinstance(payment_date, date):
        try:
            payment_date = date.fromisoformat(str(payment_date))
        except ValueError:
            raise ValidationError("payment_date must be a YYYY-MM-DD date", field="payment_date", value=payment_date)
    payment_time = meta.get("payment_time") or now.time().replace(microsecond=0)
    if not isinstance(payment_time, time):
        try:
            payment_time = time.fromisoformat(str(payment_time))
        except ValueError:
            raise ValidationError("payment_time must be HH:MM[:SS]", field="payment_time", value=payment_time)
    return {
        "payment_date": payment_date,
        "payment_time": payment_time,
        "method": method,
        "late_fee": non_negative_money(meta.get("late_fee") or 0, "late_fee"),
        "receipt_number": (meta.get("receipt_number") or "").strip() or None,
        "receiver": receiver,
        "notes": (meta.get("notes") or "").strip() or None,
        "actor": (meta.get("actor") or "").strip() or receiver,
    }


def _commit_once(
    student_id: int,
    amount: Decimal,
    fields: Dict[str, Any],
    academic_year_id: Optional[int],
    expected_plan: Optional[Dict[str, Any]],
) -> PaymentRecord:
    get_student(student_id)
    # Lock every candidate row in canonical order before reading balances.
    records = candidate_query(student_id, academic_year_id).with_for_update().all()
    candidates = [r for r in records if not r.payment_blocked and not r.is_waived and r.balance_fee > 0]
    plan, remaining = _walk(candidates, amount)
    if remaining > 0:
        raise AllocationOverflow(
            "payment exceeds the outstanding balance",
            student_id=student_id,
            amount=amount,
            outstanding=amount - remaining,
        )
    if expected_plan is not None:
        fresh = [(r.id, a) for r, a in plan]
        if _plan_key(expected_plan) != fresh:
            current_app.logger.warning(
                "Balances for student %s changed since simulation; allocating against current balances",
                student_id,
            )

    receipt = fields["receipt_number"] or generate_receipt_number()
    if PaymentRecord.query.filter_by(student_id=student_id, receipt_number=receipt).first() is not None:
        raise ValidationError("receipt number already used for this student", field="receipt_number", value=receipt)
    payment = PaymentRecord(
        student_id=student_id,
        amount_paid=amount,
        payment_date=fields["payment_date"],
        payment_time=fields["payment_time"],
        method=fields["method"],
        late_fee=fields["late_fee"],
        receipt_number=receipt,
        receiver=fields["receiver"],
        notes=fields["notes"],
    )
    db.session.add(payment)
    try:
        db.session.flush()
    except IntegrityError:
        raise ValidationError("receipt number already used for this student", field="receipt_number", value=receipt)

    before, after = [], []
    for order, (record, allocated) in enumerate(plan, start=1):
        balance_before = record.balance_fee
        new_paid = Decimal(record.paid_amount or 0) + allocated
        if new_paid > Decimal(record.actual_fee) - Decimal(record.discount_amount or 0):
            raise ConcurrentModification(
                "allocation would overpay fee record", fee_record_id=record.id, amount=allocated, balance=balance_before
            )
        record.paid_amount = new_paid
        db.session.add(
            PaymentAllocation(
                payment_record_id=payment.id,
                fee_record=record,
                allocated_amount=allocated,
                allocation_order=order,
            )
        )
        before.append({"fee_record_id": record.id, "fee_type": record.fee_type, "balance_fee": as_str(balance_before)})
        after.append(
            {
                "fee_record_id": record.id,
                "fee_type": record.fee_type,
                "allocated_amount": as_str(allocated),
                "allocation_order": order,
                "balance_fee": as_str(record.balance_fee),
                "status": record.status,
            }
        )

    touched_years = sorted({record.academic_year_id for record, _ in plan})
    for year_id in touched_years:
        enforce_previous_year_dues_block(student_id, year_id, fields["actor"])

    audit.log(
        audit.PAYMENT,
        student_id,
        fee_record_id=plan[0][0].id if len(plan) == 1 else None,
        old_values={"allocations": before},
        new_values={"payment_record_id": payment.id, "method": payment.method, "allocations": after},
        amount_affected=amount,
        actor=fields["actor"],
        notes=fields["notes"],
        reference_number=receipt,
        academic_year_id=academic_year_id or (touched_years[0] if len(touched_years) == 1 else None),
    )
    return payment


def commit(
    student_id: int,
    amount: Any,
    payment_metadata: Dict[str, Any],
    academic_year_id: Optional[int] = None,
    expected_plan: Optional[Dict[str, Any]] = None,
) -> PaymentRecord:
    """Record a payment and allocate it FIFO, all in one transaction.

    ``expected_plan`` is the caller's earlier ``simulate`` result. It is only
    advisory: the plan is always rebuilt from locked, freshly read balances.
    Overpayment is rejected with AllocationOverflow and nothing is written.
    """
    amount = positive_money(amount)
    fields = _payment_fields(payment_metadata)
    if expected_plan is not None:
        _plan_key(expected_plan)
    attempts = max(1, int(current_app.config.get("LEDGER_MAX_REPLAN_ATTEMPTS", 3)))
    for attempt in range(1, attempts + 1):
        try:
            with atomic():
                payment = _commit_once(student_id, amount, fields, academic_year_id, expected_plan)
        except StaleDataError:
            current_app.logger.warning(
                "Fee records for student %s changed during payment commit (attempt %s/%s); re-planning",
                student_id, attempt, attempts,
            )
            continue
        current_app.logger.info(
            "Payment %s of %s recorded for student %s across %s fee record(s)",
            payment.receipt_number, amount, student_id, len(payment.allocations),
        )
        return payment
    raise ConcurrentModification(
        "fee records kept changing during payment commit, retry the payment",
        student_id=student_id,
        amount=amount,
        attempts=attempts,
    )


def get_payment(payment_id: int) -> PaymentRecord:
    payment = db.session.get(PaymentRecord, payment_id) if payment_id else None
    if payment is None:
        raise NotFound("payment_record", payment_id)
    return payment


def allocations_for_payment(payment_id: int) -> List[PaymentAllocation]:
    get_payment(payment_id)
    return (
        PaymentAllocation.query.filter_by(payment_record_id=payment_id)
        .order_by(PaymentAllocation.allocation_order.asc())
        .all()
    )


def payment_history(student_id: int) -> List[PaymentRecord]:
    get_student(student_id)
    return (
        PaymentRecord.query.filter_by(student_id=student_id)
        .order_by(PaymentRecord.payment_date.desc(), PaymentRecord.payment_time.desc(), PaymentRecord.id.desc())
        .all()
    )


def total_paid(student_id: int) -> Decimal:
    total = (
        db.session.query(db.func.coalesce(db.func.sum(PaymentRecord.amount_paid), 0))
        .filter(PaymentRecord.student_id == student_id)
        .scalar()
    )
    return to_money(total or ZERO)
