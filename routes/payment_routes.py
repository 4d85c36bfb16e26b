from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from extensions import limiter
from ledger import allocation
from ledger.errors import ValidationError
from routes.common import actor_from, int_field, money_dict, payload

payment_bp = Blueprint("payments", __name__, url_prefix="/api")


def _payment_limit() -> str:
    return current_app.config.get("PAYMENT_RATE_LIMIT") or "30 per minute"


@payment_bp.route("/students/<int:student_id>/payments/simulate", methods=["POST"])
def simulate(student_id: int):
    data = payload()
    plan = allocation.simulate(student_id, data.get("amount"), int_field(data, "academic_year_id", required=False))
    return jsonify({"ok": True, "plan": money_dict(plan)})


@payment_bp.route("/students/<int:student_id>/payments", methods=["POST"])
@limiter.limit(_payment_limit)
def record_payment(student_id: int):
    data = payload()
    expected_plan = data.get("expected_plan")
    if expected_plan is not None and not isinstance(expected_plan, dict):
        raise ValidationError("expected_plan must be the object returned by simulate", field="expected_plan")
    meta = {
        "method": data.get("method"),
        "receiver": data.get("receiver") or actor_from(data),
        "payment_date": data.get("payment_date"),
        "payment_time": data.get("payment_time"),
        "late_fee": data.get("late_fee"),
        "receipt_number": data.get("receipt_number"),
        "notes": data.get("notes"),
        "actor": actor_from(data),
    }
    payment = allocation.commit(
        student_id,
        data.get("amount"),
        meta,
        academic_year_id=int_field(data, "academic_year_id", required=False),
        expected_plan=expected_plan,
    )
    return jsonify({"ok": True, "payment": payment.to_dict()}), 201


@payment_bp.route("/students/<int:student_id>/payments", methods=["GET"])
def history(student_id: int):
    payments = allocation.payment_history(student_id)
    return jsonify(
        {
            "ok": True,
            "payments": [p.to_dict() for p in payments],
            "total_paid": str(allocation.total_paid(student_id)),
        }
    )


@payment_bp.route("/payments/<int:payment_id>", methods=["GET"])
def get_payment(payment_id: int):
    payment = allocation.get_payment(payment_id)
    data = payment.to_dict(with_allocations=False)
    data["allocations"] = [a.to_dict() for a in allocation.allocations_for_payment(payment_id)]
    return jsonify({"ok": True, "payment": data})
