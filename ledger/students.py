from __future__ import annotations

from typing import Optional

from extensions import db
from ledger.errors import NotFound
from models import Student


def get_student(student_id: int) -> Student:
    """Read-only directory lookup; the roster itself is managed elsewhere."""
    student = db.session.get(Student, student_id) if student_id else None
    if student is None:
        raise NotFound("student", student_id)
    return student


def find_by_admission_number(admission_number: str) -> Optional[Student]:
    return Student.query.filter_by(admission_number=(admission_number or "").strip()).first()
