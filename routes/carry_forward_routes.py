from __future__ import annotations

from flask import Blueprint, jsonify, request

from ledger import carry_forward as cf_manager
from routes.common import actor_from, id_list, int_field, payload

carry_forward_bp = Blueprint("carry_forwards", __name__, url_prefix="/api/carry-forwards")


@carry_forward_bp.route("", methods=["GET"])
def list_all():
    rows = cf_manager.list_carry_forwards(
        student_id=request.args.get("student_id", type=int),
        from_academic_year_id=request.args.get("from_academic_year_id", type=int),
        to_academic_year_id=request.args.get("to_academic_year_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify({"ok": True, "carry_forwards": [cf.to_dict() for cf in rows]})


@carry_forward_bp.route("/<int:carry_forward_id>", methods=["GET"])
def get_one(carry_forward_id: int):
    return jsonify({"ok": True, "carry_forward": cf_manager.get_carry_forward(carry_forward_id).to_dict()})


@carry_forward_bp.route("", methods=["POST"])
def create():
    data = payload()
    cf = cf_manager.carry_forward(
        int_field(data, "student_id"),
        int_field(data, "from_academic_year_id"),
        int_field(data, "to_academic_year_id"),
        data.get("type") or "manual",
        actor_from(data),
        data.get("notes"),
    )
    return jsonify({"ok": True, "carry_forward": cf.to_dict()}), 201


@carry_forward_bp.route("/bulk", methods=["POST"])
def bulk():
    data = payload()
    results = cf_manager.bulk_carry_forward(
        id_list(data, "student_ids"),
        int_field(data, "from_academic_year_id"),
        int_field(data, "to_academic_year_id"),
        data.get("type") or "bulk",
        actor_from(data),
        data.get("notes"),
    )
    return jsonify({"ok": True, "results": results})


@carry_forward_bp.route("/<int:carry_forward_id>/waive", methods=["POST"])
def waive(carry_forward_id: int):
    data = payload()
    cf = cf_manager.waive(carry_forward_id, data.get("reason"), actor_from(data))
    return jsonify({"ok": True, "carry_forward": cf.to_dict()})
