from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app

from ledger import audit
from ledger.clock import utc_now
from ledger.db_helpers import atomic
from ledger.errors import InvalidDiscount, LedgerError, NotFound, StateConflict, ValidationError
from ledger.money import CENT, to_money
from ledger.payment_block import enforce_previous_year_dues_block
from models import FeeRecord

FIXED_AMOUNT = "Fixed Amount"
PERCENTAGE = "Percentage"
DISCOUNT_TYPES = (FIXED_AMOUNT, PERCENTAGE)


def resolve_discount_amount(record: FeeRecord, discount_type: str, value: Any) -> Decimal:
    """Turn a fixed or percentage discount into an absolute amount.

    This is the only place percentages are converted; everything after it
    deals in money.
    """
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError(
            "discount_type must be 'Fixed Amount' or 'Percentage'", field="discount_type", value=discount_type
        )
    if discount_type == FIXED_AMOUNT:
        return to_money(value, "amount")
    pct = to_money(value, "percentage")
    if pct <= 0 or pct > 100:
        raise InvalidDiscount("percentage must be between 0 and 100", fee_record_id=record.id, percentage=pct)
    return (Decimal(record.actual_fee) * pct / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)


def _validate(record: FeeRecord, amount: Decimal) -> None:
    if record.is_waived:
        raise StateConflict("fee record is waived", fee_record_id=record.id)
    if amount <= 0:
        raise InvalidDiscount("discount must be greater than zero", fee_record_id=record.id, amount=amount)
    current = Decimal(record.discount_amount or 0)
    if current + amount > Decimal(record.actual_fee):
        raise InvalidDiscount(
            "discount would exceed the actual fee",
            fee_record_id=record.id,
            amount=amount,
            current_discount=current,
            actual_fee=record.actual_fee,
        )
    # Anything above the balance would push paid_amount past actual - discount.
    if amount > record.balance_fee:
        raise InvalidDiscount(
            "discount exceeds the remaining balance",
            fee_record_id=record.id,
            amount=amount,
            balance=record.balance_fee,
        )


def _apply(record: FeeRecord, amount: Decimal, reason: str, notes: Optional[str], actor: str) -> FeeRecord:
    _validate(record, amount)
    before = record.snapshot()
    record.discount_amount = Decimal(record.discount_amount or 0) + amount
    record.discount_notes = notes or reason
    record.discount_updated_by = actor
    record.discount_updated_at = utc_now()
    audit.log(
        audit.DISCOUNT,
        record.student_id,
        fee_record_id=record.id,
        old_values=before,
        new_values=record.snapshot(),
        amount_affected=amount,
        actor=actor,
        notes=f"{reason}: {notes}" if notes else reason,
        academic_year_id=record.academic_year_id,
    )
    enforce_previous_year_dues_block(record.student_id, record.academic_year_id, actor)
    return record


def _require(reason: str, actor: str) -> None:
    if not (reason or "").strip():
        raise ValidationError("reason is required", field="reason")
    if not (actor or "").strip():
        raise ValidationError("actor is required", field="actor")


def _locked(fee_record_id: int) -> FeeRecord:
    record = FeeRecord.query.filter_by(id=fee_record_id).with_for_update().first()
    if record is None:
        raise NotFound("fee_record", fee_record_id)
    return record


def apply_discount(
    fee_record_id: int,
    amount: Any,
    reason: str,
    notes: Optional[str],
    actor: str,
    discount_type: str = FIXED_AMOUNT,
) -> FeeRecord:
    _require(reason, actor)
    with atomic():
        record = _locked(fee_record_id)
        resolved = resolve_discount_amount(record, discount_type, amount)
        _apply(record, resolved, reason.strip(), notes, actor.strip())
    current_app.logger.info("Discount %s applied to fee record %s by %s", resolved, fee_record_id, actor)
    return record


def apply_bulk_discount(
    fee_record_ids: Iterable[int],
    discount_type: str,
    value: Any,
    reason: str,
    notes: Optional[str],
    actor: str,
) -> List[Dict[str, Any]]:
    """Discount many records; each one commits or fails on its own."""
    _require(reason, actor)
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError(
            "discount_type must be 'Fixed Amount' or 'Percentage'", field="discount_type", value=discount_type
        )
    results: List[Dict[str, Any]] = []
    for fee_record_id in dict.fromkeys(fee_record_ids):
        try:
            with atomic():
                record = _locked(fee_record_id)
                resolved = resolve_discount_amount(record, discount_type, value)
                _apply(record, resolved, reason.strip(), notes, actor.strip())
            results.append({"fee_record_id": fee_record_id, "success": True, "discount_amount": str(resolved)})
        except LedgerError as exc:
            current_app.logger.warning("Bulk discount skipped fee record %s: %s", fee_record_id, exc.message)
            results.append({"fee_record_id": fee_record_id, "success": False, "error": exc.code, "message": exc.message})
    return results
