from __future__ import annotations

from flask import Blueprint, jsonify, request

from ledger import discounts, fee_records, payment_block
from ledger.students import get_student
from routes.common import actor_from, id_list, int_field, payload

fee_bp = Blueprint("fees", __name__, url_prefix="/api")


@fee_bp.route("/fees", methods=["POST"])
def create_fee():
    data = payload()
    record = fee_records.create_fee_record(
        student_id=int_field(data, "student_id"),
        academic_year_id=int_field(data, "academic_year_id"),
        fee_type=data.get("fee_type"),
        actual_fee=data.get("actual_fee"),
        due_date=data.get("due_date"),
        actor=actor_from(data),
        priority_order=int_field(data, "priority_order", required=False),
    )
    return jsonify({"ok": True, "fee_record": record.to_dict()}), 201


@fee_bp.route("/fees/<int:fee_record_id>", methods=["GET"])
def get_fee(fee_record_id: int):
    return jsonify({"ok": True, "fee_record": fee_records.get_fee_record(fee_record_id).to_dict()})


@fee_bp.route("/students/<int:student_id>/fees", methods=["GET"])
def student_fees(student_id: int):
    get_student(student_id)
    year_id = request.args.get("academic_year_id", type=int)
    records = fee_records.list_fee_records(student_id, year_id)
    return jsonify({"ok": True, "fee_records": [r.to_dict() for r in records]})


@fee_bp.route("/students/<int:student_id>/outstanding", methods=["GET"])
def student_outstanding(student_id: int):
    get_student(student_id)
    year_id = request.args.get("academic_year_id", type=int)
    records = fee_records.get_outstanding(student_id, year_id)
    return jsonify(
        {
            "ok": True,
            "outstanding": [r.to_dict() for r in records],
            "summary": fee_records.student_balance_summary(student_id, year_id),
        }
    )


@fee_bp.route("/fees/<int:fee_record_id>/discount", methods=["POST"])
def discount(fee_record_id: int):
    data = payload()
    record = discounts.apply_discount(
        fee_record_id,
        data.get("amount"),
        data.get("reason"),
        data.get("notes"),
        actor_from(data),
        discount_type=data.get("discount_type") or discounts.FIXED_AMOUNT,
    )
    return jsonify({"ok": True, "fee_record": record.to_dict()})


@fee_bp.route("/fees/discounts/bulk", methods=["POST"])
def bulk_discount():
    data = payload()
    results = discounts.apply_bulk_discount(
        id_list(data, "fee_record_ids"),
        data.get("discount_type") or discounts.FIXED_AMOUNT,
        data.get("value"),
        data.get("reason"),
        data.get("notes"),
        actor_from(data),
    )
    return jsonify({"ok": True, "results": results})


@fee_bp.route("/students/<int:student_id>/block", methods=["POST"])
def block(student_id: int):
    data = payload()
    changed = payment_block.block_student(
        student_id, int_field(data, "academic_year_id"), data.get("reason"), actor_from(data)
    )
    return jsonify({"ok": True, "blocked": [r.id for r in changed]})


@fee_bp.route("/students/<int:student_id>/unblock", methods=["POST"])
def unblock(student_id: int):
    data = payload()
    year_id = int_field(data, "academic_year_id")
    changed = payment_block.unblock_student(student_id, year_id, actor_from(data))
    still_blocked = [r.id for r in fee_records.list_fee_records(student_id, year_id) if r.payment_blocked]
    return jsonify({"ok": True, "unblocked": [r.id for r in changed], "still_blocked": still_blocked})
