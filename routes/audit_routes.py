from __future__ import annotations

from flask import Blueprint, jsonify, request

from ledger import audit

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.route("/logs", methods=["GET"])
def api_logs():
    limit = request.args.get("limit", 200, type=int)
    entries = audit.fetch(
        student_id=request.args.get("student_id", type=int),
        academic_year_id=request.args.get("academic_year_id", type=int),
        action_type=request.args.get("action_type"),
        date_from=request.args.get("date_from"),
        date_to=request.args.get("date_to"),
        limit=limit,
    )
    return jsonify(
        {
            "ok": True,
            "items": [e.to_dict() for e in entries],
            "total_affected": str(audit.total_affected(entries)),
        }
    )
