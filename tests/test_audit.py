from datetime import date, timedelta
from decimal import Decimal

import pytest

from conftest import ACTOR
from extensions import db
from ledger import audit, discounts
from ledger.errors import StateConflict, ValidationError
from models import AuditLogEntry


def test_log_requires_actor_and_action(student):
    with pytest.raises(ValidationError):
        audit.log(audit.DISCOUNT, student, actor=None)
    with pytest.raises(ValidationError):
        audit.log("", student, actor=ACTOR)
    with pytest.raises(ValidationError):
        audit.log(audit.DISCOUNT, None, actor=ACTOR)


def test_log_does_not_commit(student):
    audit.log(audit.BLOCK, student, actor=ACTOR, notes="held")
    db.session.rollback()
    assert AuditLogEntry.query.count() == 0


def test_entries_are_append_only(tuition_and_library, student):
    entry = audit.fetch(student_id=student)[0]
    entry.notes = "rewritten"
    with pytest.raises(StateConflict):
        db.session.commit()
    db.session.rollback()

    entry = audit.fetch(student_id=student)[0]
    db.session.delete(entry)
    with pytest.raises(StateConflict):
        db.session.commit()
    db.session.rollback()
    assert AuditLogEntry.query.count() == 2


def test_fetch_filters_and_order(tuition_and_library, student, other_student, years, add_fee):
    year1, _ = years
    tuition, library = tuition_and_library
    add_fee(other_student, year1, "Tuition", "700")
    discounts.apply_discount(library, "100", "Concession", None, ACTOR)

    mine = audit.fetch(student_id=student)
    assert [e.action_type for e in mine] == [audit.DISCOUNT, audit.FEE_CREATED, audit.FEE_CREATED]
    assert audit.fetch(student_id=student, action_type=audit.DISCOUNT)[0].fee_record_id == library
    assert len(audit.fetch(academic_year_id=year1)) == 4
    assert len(audit.fetch(limit=1)) == 1
    assert audit.total_affected(audit.fetch(student_id=student)) == Decimal("6100.00")

    tomorrow = date.today() + timedelta(days=2)
    assert audit.fetch(date_from=tomorrow) == []
    assert len(audit.fetch(date_to=tomorrow)) == 4


def test_fetch_rejects_bad_dates(app):
    with pytest.raises(ValidationError):
        audit.fetch(date_from="last tuesday")
