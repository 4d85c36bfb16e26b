from __future__ import annotations

from typing import Any, Dict, List, Optional

from flask import current_app

from extensions import db
from ledger.academic_years import get_academic_year
from ledger.db_helpers import atomic
from ledger.errors import LedgerError, ValidationError
from ledger.fee_records import as_date, insert_fee_record, resolve_priority
from ledger.money import non_negative_money
from ledger.payment_block import enforce_previous_year_dues_block
from models import FeeRecord, FeeStructure, Student


def list_fee_structures(academic_year_id: int, class_name: Optional[str] = None) -> List[FeeStructure]:
    query = FeeStructure.query.filter(FeeStructure.academic_year_id == academic_year_id)
    if class_name:
        query = query.filter(FeeStructure.class_name == class_name.strip())
    return query.order_by(
        FeeStructure.class_name.asc(), FeeStructure.priority_order.asc(), FeeStructure.due_date.asc(), FeeStructure.id.asc()
    ).all()


def create_fee_structure(
    academic_year_id: int,
    class_name: str,
    fee_type: str,
    amount: Any,
    due_date: Any,
    actor: str,
    priority_order: Optional[int] = None,
) -> FeeStructure:
    """Define one fee a class owes for a year."""
    class_name = (class_name or "").strip()
    fee_type = (fee_type or "").strip()
    if not class_name:
        raise ValidationError("class_name is required", field="class_name")
    if not fee_type:
        raise ValidationError("fee_type is required", field="fee_type")
    if not (actor or "").strip():
        raise ValidationError("actor is required", field="actor")
    amount = non_negative_money(amount, "amount")
    due = as_date(due_date, "due_date")
    priority = resolve_priority(fee_type, priority_order)
    with atomic():
        get_academic_year(academic_year_id)
        duplicate = FeeStructure.query.filter_by(
            academic_year_id=academic_year_id, class_name=class_name, fee_type=fee_type
        ).first()
        if duplicate is not None:
            raise ValidationError(
                "fee structure already defined for this class and fee type",
                field="fee_type",
                value=fee_type,
                fee_structure_id=duplicate.id,
            )
        structure = FeeStructure(
            academic_year_id=academic_year_id,
            class_name=class_name,
            fee_type=fee_type,
            amount=amount,
            due_date=due,
            priority_order=priority,
            created_by=actor.strip(),
        )
        db.session.add(structure)
    return structure


def _assign_to_student(student: Student, structures: List[FeeStructure], academic_year_id: int, actor: str) -> Dict[str, Any]:
    existing = {
        row[0]
        for row in db.session.query(FeeRecord.fee_type)
        .filter(FeeRecord.student_id == student.id, FeeRecord.academic_year_id == academic_year_id)
        .all()
    }
    created: List[int] = []
    skipped: List[str] = []
    for structure in structures:
        if structure.fee_type in existing:
            skipped.append(structure.fee_type)
            continue
        record = insert_fee_record(
            student.id,
            academic_year_id,
            structure.fee_type,
            structure.amount,
            structure.due_date,
            structure.priority_order,
            actor,
            notes=f"Assigned from fee structure {structure.id} ({structure.class_name})",
        )
        created.append(record.id)
    if created:
        enforce_previous_year_dues_block(student.id, academic_year_id, actor)
    return {"student_id": student.id, "success": True, "created": created, "skipped": skipped}


def assign_fee_structure(academic_year_id: int, class_name: str, actor: str) -> Dict[str, Any]:
    """Give every student of ``class_name`` the class's fees for the year.

    Each student is one transaction. Fee types the student already has for
    the year are skipped, so re-running the assignment is safe.
    """
    class_name = (class_name or "").strip()
    if not class_name:
        raise ValidationError("class_name is required", field="class_name")
    if not (actor or "").strip():
        raise ValidationError("actor is required", field="actor")
    actor = actor.strip()
    get_academic_year(academic_year_id)
    structures = list_fee_structures(academic_year_id, class_name)
    if not structures:
        raise ValidationError(
            "no fee structure defined for this class", field="class_name", value=class_name
        )
    students = Student.query.filter_by(class_name=class_name).order_by(Student.id.asc()).all()

    results: List[Dict[str, Any]] = []
    for student in students:
        try:
            with atomic():
                results.append(_assign_to_student(student, structures, academic_year_id, actor))
        except LedgerError as exc:
            current_app.logger.warning("Fee assignment skipped student %s: %s", student.id, exc.message)
            results.append({"student_id": student.id, "success": False, "error": exc.code, "message": exc.message})
    created = sum(len(r.get("created", [])) for r in results)
    current_app.logger.info(
        "Assigned %s fee record(s) for class %s in year %s to %s student(s)",
        created, class_name, academic_year_id, len(students),
    )
    return {
        "academic_year_id": academic_year_id,
        "class_name": class_name,
        "students": len(students),
        "created": created,
        "skipped": sum(len(r.get("skipped", [])) for r in results),
        "results": results,
    }
