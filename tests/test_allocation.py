from decimal import Decimal

import pytest

from extensions import db
from ledger import allocation, audit, fee_records
from ledger.errors import AllocationOverflow, StateConflict, ValidationError
from ledger.status import PAID, PARTIAL, PENDING
from models import PaymentAllocation, PaymentRecord


def test_scenario_a_partial_payment_hits_oldest_first(tuition_and_library, student, cash):
    tuition, library = tuition_and_library
    payment = allocation.commit(student, "4000", cash)
    tuition_rec = fee_records.get_fee_record(tuition)
    library_rec = fee_records.get_fee_record(library)
    assert tuition_rec.balance_fee == Decimal("1000.00")
    assert tuition_rec.status == PARTIAL
    assert library_rec.balance_fee == Decimal("1000.00")
    assert library_rec.status == PENDING
    assert [(a.fee_record_id, a.allocated_amount) for a in payment.allocations] == [(tuition, Decimal("4000.00"))]


def test_scenario_b_payment_spans_two_records(tuition_and_library, student, cash):
    tuition, library = tuition_and_library
    payment = allocation.commit(student, "6000", cash)
    assert fee_records.get_fee_record(tuition).status == PAID
    assert fee_records.get_fee_record(library).status == PAID
    rows = allocation.allocations_for_payment(payment.id)
    assert [(a.fee_record_id, a.allocated_amount, a.allocation_order) for a in rows] == [
        (tuition, Decimal("5000.00"), 1),
        (library, Decimal("1000.00"), 2),
    ]


def test_scenario_c_overpayment_writes_nothing(tuition_and_library, student, cash):
    tuition, library = tuition_and_library
    with pytest.raises(AllocationOverflow) as excinfo:
        allocation.commit(student, "7000", cash)
    assert excinfo.value.detail["outstanding"] == Decimal("6000.00")
    assert PaymentRecord.query.count() == 0
    assert PaymentAllocation.query.count() == 0
    assert fee_records.get_fee_record(tuition).paid_amount == Decimal("0.00")
    assert fee_records.get_fee_record(library).paid_amount == Decimal("0.00")
    assert audit.fetch(action_type=audit.PAYMENT) == []


def test_simulate_is_read_only_and_deterministic(tuition_and_library, student):
    first = allocation.simulate(student, "5500")
    second = allocation.simulate(student, "5500")
    assert first == second
    assert [a["allocated_amount"] for a in first["allocations"]] == [Decimal("5000.00"), Decimal("500.00")]
    assert first["total_allocated"] == Decimal("5500.00")
    assert first["remaining_amount"] == Decimal("0.00")
    assert PaymentRecord.query.count() == 0


def test_simulate_reports_unallocated_remainder(tuition_and_library, student):
    plan = allocation.simulate(student, "6500")
    assert plan["total_allocated"] == Decimal("6000.00")
    assert plan["remaining_amount"] == Decimal("500.00")


def test_commit_matches_simulation(tuition_and_library, student, cash):
    plan = allocation.simulate(student, "5200")
    payment = allocation.commit(student, "5200", cash, expected_plan=plan)
    assert [(a.fee_record_id, a.allocated_amount) for a in payment.allocations] == [
        (a["fee_record_id"], a["allocated_amount"]) for a in plan["allocations"]
    ]


def test_stale_plan_is_replanned(tuition_and_library, student, cash):
    tuition, library = tuition_and_library
    plan = allocation.simulate(student, "1000")
    allocation.commit(student, "5000", cash)
    payment = allocation.commit(student, "1000", cash, expected_plan=plan)
    assert [a.fee_record_id for a in payment.allocations] == [library]


def test_allocations_sum_to_amount_and_audit_once(tuition_and_library, student, cash):
    payment = allocation.commit(student, "5750.50", {**cash, "notes": "June instalment"})
    assert sum(a.allocated_amount for a in payment.allocations) == payment.amount_paid
    entries = audit.fetch(student_id=student, action_type=audit.PAYMENT)
    assert len(entries) == 1
    assert entries[0].reference_number == payment.receipt_number
    assert entries[0].amount_affected == Decimal("5750.50")
    assert len(entries[0].new_values["allocations"]) == 2


def test_receipt_number_generated_and_unique_per_student(tuition_and_library, student, cash):
    payment = allocation.commit(student, "100", cash)
    assert payment.receipt_number.startswith("RCP-")
    allocation.commit(student, "100", {**cash, "receipt_number": "R-1"})
    with pytest.raises(ValidationError):
        allocation.commit(student, "100", {**cash, "receipt_number": "R-1"})
    assert PaymentRecord.query.count() == 2


@pytest.mark.parametrize(
    "meta",
    [
        {"method": "Barter", "receiver": "Front Desk"},
        {"method": "Cash", "receiver": ""},
        {"method": "Cash", "receiver": "Front Desk", "payment_date": "18/10/2026"},
    ],
)
def test_bad_payment_metadata(tuition_and_library, student, meta):
    with pytest.raises(ValidationError):
        allocation.commit(student, "100", meta)


@pytest.mark.parametrize("amount", ["0", "-5", "ten"])
def test_non_positive_amount_rejected(tuition_and_library, student, cash, amount):
    with pytest.raises(ValidationError):
        allocation.commit(student, amount, cash)


def test_payment_rows_are_immutable(tuition_and_library, student, cash):
    payment = allocation.commit(student, "100", cash)
    payment.amount_paid = Decimal("1.00")
    with pytest.raises(StateConflict):
        db.session.commit()
    db.session.rollback()

    row = PaymentAllocation.query.first()
    db.session.delete(row)
    with pytest.raises(StateConflict):
        db.session.commit()
    db.session.rollback()


def test_payment_history_newest_first(tuition_and_library, student, cash):
    first = allocation.commit(student, "100", {**cash, "payment_date": "2026-06-01"})
    second = allocation.commit(student, "200", {**cash, "payment_date": "2026-07-01"})
    assert [p.id for p in allocation.payment_history(student)] == [second.id, first.id]
    assert allocation.total_paid(student) == Decimal("300.00")


@pytest.mark.parametrize("amount", ["1e30", "10000000000", "-1e40"])
def test_amounts_beyond_column_range_rejected(tuition_and_library, student, cash, amount):
    with pytest.raises(ValidationError):
        allocation.simulate(student, amount)
    with pytest.raises(ValidationError):
        allocation.commit(student, amount, cash)
    assert PaymentRecord.query.count() == 0


@pytest.mark.parametrize("plan", [["not", "a", "plan"], "stale", {"allocations": [{"fee_record_id": 1}]}])
def test_malformed_expected_plan_rejected(tuition_and_library, student, cash, plan):
    with pytest.raises(ValidationError):
        allocation.commit(student, "100", cash, expected_plan=plan)
    assert PaymentRecord.query.count() == 0


def test_total_paid_without_payments(student):
    assert allocation.total_paid(student) == Decimal("0.00")
