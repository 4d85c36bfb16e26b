from datetime import date

import pytest

from ledger import academic_years
from ledger.errors import NotFound, StateConflict, ValidationError


def test_current_year_moves_forward_only(years):
    year1, year2 = years
    assert academic_years.get_current_year().id == year1
    academic_years.set_current_year(year2)
    assert academic_years.get_current_year().id == year2
    assert academic_years.get_academic_year(year1).is_current is False
    with pytest.raises(StateConflict):
        academic_years.set_current_year(year1)
    assert academic_years.get_current_year().id == year2


def test_create_validates_dates_and_name(years):
    with pytest.raises(ValidationError):
        academic_years.create_academic_year("2027-28", date(2028, 3, 31), date(2027, 4, 1))
    with pytest.raises(ValidationError):
        academic_years.create_academic_year("2025-26", date(2027, 4, 1), date(2028, 3, 31))
    with pytest.raises(ValidationError):
        academic_years.create_academic_year("2027-28", "April 2027", "2028-03-31")


def test_list_newest_first(years):
    year1, year2 = years
    assert [y.id for y in academic_years.list_academic_years()] == [year2, year1]


def test_missing_year(app):
    with pytest.raises(NotFound):
        academic_years.get_academic_year(42)
