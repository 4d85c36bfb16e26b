from conftest import ACTOR, in_days
from extensions import db
from models import PaymentRecord


def _create_fee(client, student, year, fee_type, amount, days=30):
    resp = client.post(
        "/api/fees",
        json={
            "student_id": student,
            "academic_year_id": year,
            "fee_type": fee_type,
            "actual_fee": amount,
            "due_date": in_days(days).isoformat(),
            "actor": ACTOR,
        },
    )
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["fee_record"]["id"]


def test_health(client):
    assert client.get("/health").get_json() == {"ok": True}


def test_fee_lifecycle_over_http(client, years, student):
    year1, _ = years
    tuition = _create_fee(client, student, year1, "Tuition", "5000", days=10)
    library = _create_fee(client, student, year1, "Library", "1000", days=40)

    resp = client.get(f"/api/students/{student}/outstanding")
    body = resp.get_json()
    assert [r["id"] for r in body["outstanding"]] == [tuition, library]
    assert body["summary"]["balance_fee"] == "6000.00"

    resp = client.post(f"/api/fees/{library}/discount", json={"amount": "200", "reason": "Concession", "actor": ACTOR})
    assert resp.get_json()["fee_record"]["balance_fee"] == "800.00"

    resp = client.post(f"/api/students/{student}/payments/simulate", json={"amount": "5500"})
    plan = resp.get_json()["plan"]
    assert [a["allocated_amount"] for a in plan["allocations"]] == ["5000.00", "500.00"]

    resp = client.post(
        f"/api/students/{student}/payments",
        json={"amount": "5500", "method": "Cash", "receiver": "Front Desk", "expected_plan": plan},
    )
    assert resp.status_code == 201
    payment = resp.get_json()["payment"]
    assert [a["allocation_order"] for a in payment["allocations"]] == [1, 2]

    resp = client.get(f"/api/payments/{payment['id']}")
    assert resp.get_json()["payment"]["receipt_number"] == payment["receipt_number"]

    resp = client.get(f"/api/students/{student}/payments")
    assert resp.get_json()["total_paid"] == "5500.00"

    resp = client.get("/api/audit/logs", query_string={"student_id": student, "action_type": "payment"})
    items = resp.get_json()["items"]
    assert len(items) == 1
    assert items[0]["reference_number"] == payment["receipt_number"]


def test_overpayment_maps_to_422(client, years, student):
    year1, _ = years
    _create_fee(client, student, year1, "Tuition", "1000")
    resp = client.post(
        f"/api/students/{student}/payments",
        json={"amount": "1500", "method": "Cash", "receiver": "Front Desk"},
    )
    assert resp.status_code == 422
    body = resp.get_json()
    assert body["ok"] is False
    assert body["error"] == "allocation_overflow"
    assert body["detail"]["outstanding"] == "1000.00"
    db.session.expire_all()
    assert PaymentRecord.query.count() == 0


def test_errors_are_json(client, years, student):
    resp = client.get("/api/fees/999")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "not_found"

    resp = client.post("/api/fees", json={"student_id": student, "fee_type": "Tuition"})
    assert resp.status_code == 400
    assert resp.get_json()["detail"]["field"] == "academic_year_id"


def test_actor_falls_back_to_session_user(client, years, student):
    year1, _ = years
    with client.session_transaction() as sess:
        sess["username"] = "bursar"
    resp = client.post(
        "/api/fees",
        json={
            "student_id": student,
            "academic_year_id": year1,
            "fee_type": "Tuition",
            "actual_fee": "100",
            "due_date": in_days(30).isoformat(),
        },
    )
    assert resp.status_code == 201
    logs = client.get("/api/audit/logs", query_string={"student_id": student}).get_json()["items"]
    assert logs[0]["performed_by"] == "bursar"


def test_carry_forward_over_http(client, years, student):
    year1, year2 = years
    _create_fee(client, student, year1, "Library", "1500")
    tuition = _create_fee(client, student, year2, "Tuition", "4000")

    resp = client.post(
        "/api/carry-forwards",
        json={"student_id": student, "from_academic_year_id": year1, "to_academic_year_id": year2, "actor": ACTOR},
    )
    assert resp.status_code == 201
    cf = resp.get_json()["carry_forward"]
    assert cf["carried_amount"] == "1500.00"
    assert cf["status"] == "applied"

    blocked = client.get(f"/api/academic-years/{year2}/blocked").get_json()["students"]
    assert blocked[0]["blocked_balance"] == "4000.00"

    resp = client.post(
        "/api/carry-forwards",
        json={"student_id": student, "from_academic_year_id": year1, "to_academic_year_id": year2, "actor": ACTOR},
    )
    assert resp.status_code == 409

    resp = client.post(f"/api/carry-forwards/{cf['id']}/waive", json={"reason": "Hardship", "actor": ACTOR})
    assert resp.get_json()["carry_forward"]["status"] == "waived"
    assert client.get(f"/api/fees/{tuition}").get_json()["fee_record"]["payment_blocked"] is False

    listed = client.get("/api/carry-forwards", query_string={"student_id": student}).get_json()["carry_forwards"]
    assert [c["id"] for c in listed] == [cf["id"]]


def test_academic_year_routes(client):
    resp = client.post("/api/academic-years", json={"name": "2030-31", "start_date": "2030-04-01", "end_date": "2031-03-31"})
    assert resp.status_code == 201
    year_id = resp.get_json()["academic_year"]["id"]
    resp = client.post(f"/api/academic-years/{year_id}/current")
    assert resp.get_json()["academic_year"]["is_current"] is True
    assert len(client.get("/api/academic-years").get_json()["academic_years"]) == 1


def test_expected_plan_must_be_an_object(client, years, student):
    year1, _ = years
    _create_fee(client, student, year1, "Tuition", "1000")
    resp = client.post(
        f"/api/students/{student}/payments",
        json={"amount": "100", "method": "Cash", "receiver": "Front Desk", "expected_plan": [1, 2]},
    )
    assert resp.status_code == 400
    assert resp.get_json()["detail"]["field"] == "expected_plan"


def test_oversized_amount_is_a_400(client, years, student):
    resp = client.post(f"/api/students/{student}/payments/simulate", json={"amount": "1e30"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "validation_error"
