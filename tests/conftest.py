import os
import sys
from datetime import date, timedelta

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app import create_app  # noqa: E402
from config import Config  # noqa: E402
from extensions import db  # noqa: E402
from ledger import academic_years, fee_records  # noqa: E402
from models import Student  # noqa: E402

ACTOR = "accounts@school"


def in_days(days):
    return date.today() + timedelta(days=days)


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test_secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    TRUST_PROXY = False
    SESSION_COOKIE_SECURE = False


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def years(app):
    """(year1_id, year2_id); year1 is current."""
    y1 = academic_years.create_academic_year("2025-26", date(2025, 4, 1), date(2026, 3, 31))
    y2 = academic_years.create_academic_year("2026-27", date(2026, 4, 1), date(2027, 3, 31))
    academic_years.set_current_year(y1.id)
    return y1.id, y2.id


def _student(admission_number, name):
    student = Student(admission_number=admission_number, name=name, class_name="5A")
    db.session.add(student)
    db.session.commit()
    return student.id


@pytest.fixture
def student(app):
    return _student("ADM-001", "Asha Rao")


@pytest.fixture
def other_student(app):
    return _student("ADM-002", "Vikram Shah")


@pytest.fixture
def add_fee(app):
    def _add(student_id, year_id, fee_type, amount, due_in_days=30, priority_order=None):
        record = fee_records.create_fee_record(
            student_id, year_id, fee_type, amount, in_days(due_in_days), ACTOR, priority_order=priority_order
        )
        return record.id
    return _add


@pytest.fixture
def tuition_and_library(years, student, add_fee):
    """Tuition 5000 due first, Library 1000 due later, both in year1."""
    year1, _ = years
    tuition = add_fee(student, year1, "Tuition", "5000", due_in_days=20)
    library = add_fee(student, year1, "Library", "1000", due_in_days=40)
    return tuition, library


@pytest.fixture
def cash():
    return {"method": "Cash", "receiver": "Front Desk"}
