from decimal import Decimal

import pytest

from conftest import ACTOR
from ledger import allocation, audit, fee_records, payment_block
from ledger.errors import AllocationOverflow, ValidationError


@pytest.fixture
def dues_and_tuition(years, student, add_fee):
    _, year2 = years
    tuition = add_fee(student, year2, "Tuition", "5000", due_in_days=20)
    dues = add_fee(student, year2, "Previous Year Dues", "2000", due_in_days=5)
    return dues, tuition


def test_scenario_d_blocked_tuition_excluded_from_simulation(dues_and_tuition, student):
    dues, tuition = dues_and_tuition
    assert fee_records.get_fee_record(tuition).payment_blocked is True
    assert fee_records.get_fee_record(dues).payment_blocked is False
    plan = allocation.simulate(student, "500")
    assert [a["fee_record_id"] for a in plan["allocations"]] == [dues]
    assert plan["total_allocated"] == Decimal("500.00")


def test_block_is_audited(dues_and_tuition, student):
    _, tuition = dues_and_tuition
    entries = audit.fetch(student_id=student, action_type=audit.BLOCK)
    assert [e.fee_record_id for e in entries] == [tuition]
    assert entries[0].notes == payment_block.POLICY_REASON


def test_blocked_balance_cannot_be_paid(dues_and_tuition, student, cash):
    with pytest.raises(AllocationOverflow):
        allocation.commit(student, "2500", cash)


def test_clearing_dues_releases_block(dues_and_tuition, student, cash):
    dues, tuition = dues_and_tuition
    allocation.commit(student, "2000", cash)
    record = fee_records.get_fee_record(tuition)
    assert record.payment_blocked is False
    assert record.blocked_reason is None
    assert len(audit.fetch(student_id=student, action_type=audit.UNBLOCK)) == 1
    payment = allocation.commit(student, "1000", cash)
    assert [a.fee_record_id for a in payment.allocations] == [tuition]


def test_fee_added_while_dues_outstanding_is_blocked(dues_and_tuition, student, years, add_fee):
    _, year2 = years
    transport = add_fee(student, year2, "Transport", "700")
    assert fee_records.get_fee_record(transport).payment_blocked is True


def test_manual_block_and_unblock(tuition_and_library, student, years):
    year1, _ = years
    tuition, library = tuition_and_library
    changed = payment_block.block_student(student, year1, "Cheque bounced", ACTOR)
    assert sorted(r.id for r in changed) == sorted([tuition, library])
    assert allocation.simulate(student, "100")["allocations"] == []

    report = payment_block.blocked_students(year1)
    assert len(report) == 1
    assert report[0]["student_id"] == student
    assert report[0]["blocked_records"] == 2
    assert report[0]["blocked_balance"] == Decimal("6000.00")
    assert report[0]["reasons"] == ["Cheque bounced"]

    payment_block.unblock_student(student, year1, ACTOR)
    assert payment_block.blocked_students(year1) == []


def test_manual_unblock_reapplies_dues_rule(dues_and_tuition, student, years):
    _, year2 = years
    _, tuition = dues_and_tuition
    payment_block.unblock_student(student, year2, ACTOR)
    assert fee_records.get_fee_record(tuition).payment_blocked is True


def test_manual_block_needs_reason(tuition_and_library, student, years):
    year1, _ = years
    with pytest.raises(ValidationError):
        payment_block.block_student(student, year1, "  ", ACTOR)


def test_block_walks_records_in_collection_order(years, student, add_fee):
    year1, _ = years
    late = add_fee(student, year1, "Transport", "300", due_in_days=40, priority_order=5)
    early = add_fee(student, year1, "Library", "200", due_in_days=10, priority_order=5)
    first = add_fee(student, year1, "Tuition", "900", due_in_days=60, priority_order=1)
    blocked = payment_block.block_student(student, year1, "Cheque bounced", ACTOR)
    assert [r.id for r in blocked] == [first, early, late]
    assert [r.id for r in blocked] == [r.id for r in fee_records.list_fee_records(student, year1)]
