from __future__ import annotations

from datetime import date
from typing import List, Optional

from flask import current_app

from extensions import db
from ledger.db_helpers import atomic
from ledger.errors import NotFound, StateConflict, ValidationError
from models import AcademicYear


def _as_date(value, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a YYYY-MM-DD date", field=field, value=value)


def get_academic_year(year_id: int) -> AcademicYear:
    year = db.session.get(AcademicYear, year_id) if year_id else None
    if year is None:
        raise NotFound("academic_year", year_id)
    return year


def get_current_year() -> Optional[AcademicYear]:
    return AcademicYear.query.filter_by(is_current=True).first()


def list_academic_years() -> List[AcademicYear]:
    return AcademicYear.query.order_by(AcademicYear.start_date.desc()).all()


def create_academic_year(name: str, start_date, end_date) -> AcademicYear:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", field="name")
    start = _as_date(start_date, "start_date")
    end = _as_date(end_date, "end_date")
    if end <= start:
        raise ValidationError("end_date must be after start_date", start_date=start, end_date=end)
    with atomic():
        if AcademicYear.query.filter_by(name=name).first() is not None:
            raise ValidationError("academic year name already exists", field="name", value=name)
        year = AcademicYear(name=name, start_date=start, end_date=end, is_current=False)
        db.session.add(year)
    return year


def set_current_year(year_id: int) -> AcademicYear:
    """Move the current-year flag; it only ever moves forward in time."""
    with atomic():
        target = get_academic_year(year_id)
        current = (
            AcademicYear.query.filter_by(is_current=True).with_for_update().first()
        )
        if current is not None and current.id != target.id:
            if target.start_date <= current.start_date:
                raise StateConflict(
                    "current academic year can only move forward",
                    entity_id=target.id,
                    current_year_id=current.id,
                )
            current.is_current = False
        target.is_current = True
    current_app.logger.info("Academic year %s is now current", target.name)
    return target
