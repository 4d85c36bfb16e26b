from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import case, event
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import object_session

from extensions import db
from ledger.clock import local_today, utc_now
from ledger.errors import StateConflict
from ledger.money import as_str
from ledger.status import compute_balance, derive_status

MONEY = db.Numeric(12, 2)


class AcademicYear(db.Model):
    __tablename__ = 'academic_years'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False, unique=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    is_current = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "is_current": bool(self.is_current),
        }

    def __repr__(self):
        return f'<AcademicYear {self.name}{" (current)" if self.is_current else ""}>'


class Student(db.Model):
    __tablename__ = 'students'

    id = db.Column(db.Integer, primary_key=True)
    admission_number = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(100), nullable=False)
    class_name = db.Column(db.String(50))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    fee_records = db.relationship('FeeRecord', backref='student', lazy='dynamic')

    def __repr__(self):
        return f'<Student {self.name} ({self.admission_number})>'


class FeeStructure(db.Model):
    __tablename__ = 'fee_structures'

    id = db.Column(db.Integer, primary_key=True)
    academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'), nullable=False)
    class_name = db.Column(db.String(50), nullable=False)
    fee_type = db.Column(db.String(100), nullable=False)
    amount = db.Column(MONEY, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    priority_order = db.Column(db.Integer, nullable=False, default=10)
    created_by = db.Column(db.String(150), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    academic_year = db.relationship('AcademicYear')

    __table_args__ = (
        db.UniqueConstraint('academic_year_id', 'class_name', 'fee_type', name='uq_fee_structure_class_type'),
        db.CheckConstraint('amount >= 0', name='ck_fee_structure_amount_non_negative'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "academic_year_id": self.academic_year_id,
            "class_name": self.class_name,
            "fee_type": self.fee_type,
            "amount": as_str(self.amount),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "priority_order": self.priority_order,
            "created_by": self.created_by,
        }

    def __repr__(self):
        return f'<FeeStructure {self.class_name} {self.fee_type} {self.amount}>'


class CarryForward(db.Model):
    __tablename__ = 'carry_forwards'

    TYPES = ("manual", "bulk", "automatic")
    PENDING = "pending"
    APPLIED = "applied"
    WAIVED = "waived"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    from_academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'), nullable=False)
    to_academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'), nullable=False)
    original_amount = db.Column(MONEY, nullable=False)
    carried_amount = db.Column(MONEY, nullable=False)
    type = db.Column(db.String(16), nullable=False, default="manual")
    status = db.Column(db.String(16), nullable=False, default=PENDING)
    created_by = db.Column(db.String(150), nullable=False)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        db.Index('idx_cf_student_years', 'student_id', 'from_academic_year_id', 'to_academic_year_id'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "from_academic_year_id": self.from_academic_year_id,
            "to_academic_year_id": self.to_academic_year_id,
            "original_amount": as_str(self.original_amount),
            "carried_amount": as_str(self.carried_amount),
            "type": self.type,
            "status": self.status,
            "created_by": self.created_by,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<CarryForward {self.id} Student={self.student_id} {self.carried_amount} {self.status}>'


class FeeRecord(db.Model):
    __tablename__ = 'fee_records'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False)
    academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'), nullable=False)
    fee_type = db.Column(db.String(100), nullable=False)
    actual_fee = db.Column(MONEY, nullable=False, default=Decimal("0.00"))
    discount_amount = db.Column(MONEY, nullable=False, default=Decimal("0.00"))
    paid_amount = db.Column(MONEY, nullable=False, default=Decimal("0.00"))
    due_date = db.Column(db.Date, nullable=False)
    priority_order = db.Column(db.Integer, nullable=False, default=10)
    payment_blocked = db.Column(db.Boolean, nullable=False, default=False)
    blocked_reason = db.Column(db.String(255))
    blocked_by = db.Column(db.String(150))
    blocked_at = db.Column(db.DateTime)
    is_carry_forward = db.Column(db.Boolean, nullable=False, default=False)
    carry_forward_source_id = db.Column(
        db.Integer, db.ForeignKey('carry_forwards.id', ondelete='SET NULL'), nullable=True, index=True
    )
    is_waived = db.Column(db.Boolean, nullable=False, default=False)
    discount_notes = db.Column(db.Text)
    discount_updated_by = db.Column(db.String(150))
    discount_updated_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)
    version = db.Column(db.Integer, nullable=False)

    academic_year = db.relationship('AcademicYear')
    carry_forward_source = db.relationship('CarryForward', backref=db.backref('fee_records', lazy='dynamic'))

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        db.Index('idx_fee_student_year', 'student_id', 'academic_year_id'),
        db.Index('idx_fee_fifo', 'student_id', 'priority_order', 'due_date', 'created_at'),
        db.CheckConstraint('actual_fee >= 0', name='ck_fee_actual_non_negative'),
        db.CheckConstraint('discount_amount >= 0 AND discount_amount <= actual_fee', name='ck_fee_discount_range'),
        db.CheckConstraint('paid_amount >= 0', name='ck_fee_paid_non_negative'),
    )

    @hybrid_property
    def balance_fee(self) -> Decimal:
        return compute_balance(self.actual_fee, self.discount_amount, self.paid_amount)

    @balance_fee.expression
    def balance_fee(cls):
        raw = cls.actual_fee - cls.discount_amount - cls.paid_amount
        return case((raw > 0, raw), else_=0)

    def status_on(self, today: date) -> str:
        return derive_status(
            balance=self.balance_fee,
            paid_amount=Decimal(self.paid_amount or 0),
            due_date=self.due_date,
            today=today,
            is_waived=bool(self.is_waived),
        )

    @property
    def status(self) -> str:
        return self.status_on(local_today())

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe view of the balance-affecting fields, for audit rows."""
        return {
            "actual_fee": as_str(self.actual_fee),
            "discount_amount": as_str(self.discount_amount),
            "paid_amount": as_str(self.paid_amount),
            "balance_fee": as_str(self.balance_fee),
            "status": self.status,
            "payment_blocked": bool(self.payment_blocked),
        }

    def to_dict(self, today: Optional[date] = None) -> Dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "academic_year_id": self.academic_year_id,
            "fee_type": self.fee_type,
            "actual_fee": as_str(self.actual_fee),
            "discount_amount": as_str(self.discount_amount),
            "paid_amount": as_str(self.paid_amount),
            "balance_fee": as_str(self.balance_fee),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "priority_order": self.priority_order,
            "status": self.status_on(today or local_today()),
            "payment_blocked": bool(self.payment_blocked),
            "blocked_reason": self.blocked_reason,
            "is_carry_forward": bool(self.is_carry_forward),
            "carry_forward_source_id": self.carry_forward_source_id,
            "discount_notes": self.discount_notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<FeeRecord {self.id} {self.fee_type} Student={self.student_id} Balance={self.balance_fee}>'


# The canonical collection order. Every consumer (simulation, commit,
# row locking, blocking, reporting) walks records in exactly this order.
FIFO_ORDER = (
    FeeRecord.priority_order.asc(),
    FeeRecord.due_date.asc(),
    FeeRecord.created_at.asc(),
    FeeRecord.id.asc(),
)


class PaymentRecord(db.Model):
    __tablename__ = 'payment_records'

    METHODS = ("Cash", "Card", "PhonePe", "GPay", "Online", "Cheque", "Bank Transfer")

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    amount_paid = db.Column(MONEY, nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    payment_time = db.Column(db.Time, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    late_fee = db.Column(MONEY, nullable=False, default=Decimal("0.00"))
    receipt_number = db.Column(db.String(64), nullable=False)
    receiver = db.Column(db.String(150), nullable=False)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    allocations = db.relationship(
        'PaymentAllocation', backref='payment_record', order_by='PaymentAllocation.allocation_order'
    )

    __table_args__ = (
        db.UniqueConstraint('student_id', 'receipt_number', name='uq_payment_student_receipt'),
        db.CheckConstraint('amount_paid > 0', name='ck_payment_amount_positive'),
        db.CheckConstraint('late_fee >= 0', name='ck_payment_late_fee_non_negative'),
    )

    def to_dict(self, with_allocations: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "student_id": self.student_id,
            "amount_paid": as_str(self.amount_paid),
            "payment_date": self.payment_date.isoformat(),
            "payment_time": self.payment_time.strftime("%H:%M:%S"),
            "method": self.method,
            "late_fee": as_str(self.late_fee),
            "receipt_number": self.receipt_number,
            "receiver": self.receiver,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if with_allocations:
            data["allocations"] = [a.to_dict() for a in self.allocations]
        return data

    def __repr__(self):
        return f'<PaymentRecord {self.receipt_number} StudentID={self.student_id} Paid={self.amount_paid}>'


class PaymentAllocation(db.Model):
    __tablename__ = 'payment_allocations'

    id = db.Column(db.Integer, primary_key=True)
    payment_record_id = db.Column(db.Integer, db.ForeignKey('payment_records.id'), nullable=False, index=True)
    fee_record_id = db.Column(db.Integer, db.ForeignKey('fee_records.id'), nullable=False, index=True)
    allocated_amount = db.Column(MONEY, nullable=False)
    allocation_order = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    fee_record = db.relationship('FeeRecord')

    __table_args__ = (
        db.UniqueConstraint('payment_record_id', 'allocation_order', name='uq_allocation_order'),
        db.CheckConstraint('allocated_amount > 0', name='ck_allocation_positive'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fee_record_id": self.fee_record_id,
            "fee_type": self.fee_record.fee_type if self.fee_record else None,
            "academic_year_id": self.fee_record.academic_year_id if self.fee_record else None,
            "allocated_amount": as_str(self.allocated_amount),
            "allocation_order": self.allocation_order,
        }


class AuditLogEntry(db.Model):
    __tablename__ = 'fee_audit_log'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    fee_record_id = db.Column(db.Integer, db.ForeignKey('fee_records.id'), nullable=True, index=True)
    academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'), nullable=True, index=True)
    action_type = db.Column(db.String(32), nullable=False, index=True)
    old_values = db.Column(db.JSON)
    new_values = db.Column(db.JSON)
    amount_affected = db.Column(MONEY, nullable=False, default=Decimal("0.00"))
    performed_by = db.Column(db.String(150), nullable=False)
    performed_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    notes = db.Column(db.Text)
    reference_number = db.Column(db.String(64))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "fee_record_id": self.fee_record_id,
            "academic_year_id": self.academic_year_id,
            "action_type": self.action_type,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "amount_affected": as_str(self.amount_affected),
            "performed_by": self.performed_by,
            "performed_at": self.performed_at.isoformat() if self.performed_at else None,
            "notes": self.notes,
            "reference_number": self.reference_number,
        }


# Immutable rows: corrections are new records, never edits.
def _refuse_update(kind: str):
    def _listener(mapper, connection, target):
        # Collection-only changes (e.g. allocations appended via backref) touch no columns.
        session = object_session(target)
        if session is not None and not session.is_modified(target, include_collections=False):
            return
        raise StateConflict(f"{kind} rows are immutable", entity=kind, entity_id=target.id)
    return _listener


def _refuse_delete(kind: str):
    def _listener(mapper, connection, target):
        raise StateConflict(f"{kind} rows cannot be deleted", entity=kind, entity_id=target.id)
    return _listener


for _model, _kind in ((PaymentRecord, "payment_record"), (PaymentAllocation, "payment_allocation"), (AuditLogEntry, "audit_log")):
    event.listen(_model, "before_update", _refuse_update(_kind))
    event.listen(_model, "before_delete", _refuse_delete(_kind))


@event.listens_for(FeeRecord, "before_delete")
def _refuse_paid_fee_delete(mapper, connection, target):
    if Decimal(target.paid_amount or 0) > 0:
        raise StateConflict(
            "fee record has payments and cannot be deleted",
            entity="fee_record",
            entity_id=target.id,
            paid_amount=target.paid_amount,
        )
