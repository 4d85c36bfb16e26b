from __future__ import annotations

from flask import Blueprint, jsonify, request

from ledger import academic_years, carry_forward, fee_structures, payment_block
from ledger.money import as_str
from routes.common import actor_from, int_field, payload

academic_year_bp = Blueprint("academic_years", __name__, url_prefix="/api/academic-years")


@academic_year_bp.route("", methods=["GET"])
def list_years():
    years = academic_years.list_academic_years()
    return jsonify({"ok": True, "academic_years": [y.to_dict() for y in years]})


@academic_year_bp.route("", methods=["POST"])
def create_year():
    data = payload()
    year = academic_years.create_academic_year(data.get("name"), data.get("start_date"), data.get("end_date"))
    return jsonify({"ok": True, "academic_year": year.to_dict()}), 201


@academic_year_bp.route("/<int:year_id>/current", methods=["POST"])
def make_current(year_id: int):
    year = academic_years.set_current_year(year_id)
    return jsonify({"ok": True, "academic_year": year.to_dict()})


@academic_year_bp.route("/<int:year_id>/blocked", methods=["GET"])
def blocked(year_id: int):
    academic_years.get_academic_year(year_id)
    rows = payment_block.blocked_students(year_id)
    for row in rows:
        row["blocked_balance"] = as_str(row["blocked_balance"])
    return jsonify({"ok": True, "academic_year_id": year_id, "students": rows})


@academic_year_bp.route("/<int:year_id>/carry-forward", methods=["POST"])
def carry_forward_all(year_id: int):
    """Year-end run: carry every unpaid balance of ``year_id`` into ``to_academic_year_id``."""
    data = payload()
    to_year_id = int_field(data, "to_academic_year_id")
    results = carry_forward.carry_forward_year(year_id, to_year_id, actor_from(data))
    return jsonify({"ok": True, "results": results})


@academic_year_bp.route("/<int:year_id>/fee-structures", methods=["GET"])
def fee_structure_list(year_id: int):
    academic_years.get_academic_year(year_id)
    rows = fee_structures.list_fee_structures(year_id, request.args.get("class_name"))
    return jsonify({"ok": True, "fee_structures": [s.to_dict() for s in rows]})


@academic_year_bp.route("/<int:year_id>/fee-structures", methods=["POST"])
def fee_structure_create(year_id: int):
    data = payload()
    structure = fee_structures.create_fee_structure(
        year_id,
        data.get("class_name"),
        data.get("fee_type"),
        data.get("amount"),
        data.get("due_date"),
        actor_from(data),
        priority_order=int_field(data, "priority_order", required=False),
    )
    return jsonify({"ok": True, "fee_structure": structure.to_dict()}), 201


@academic_year_bp.route("/<int:year_id>/assign-fees", methods=["POST"])
def assign_fees(year_id: int):
    data = payload()
    summary = fee_structures.assign_fee_structure(year_id, data.get("class_name"), actor_from(data))
    return jsonify({"ok": True, **summary})
