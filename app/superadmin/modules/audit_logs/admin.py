from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.superadmin.db import db_session
from app.superadmin.modules.audit_logs.service import (
    SORTABLE_FIELDS,
    audit_summary,
    audit_to_dict,
    distinct_actions,
    distinct_target_types,
    list_audit_logs,
)
from app.superadmin.rbac import require_superadmin
from app.superadmin.utils import pagination_meta, parse_datetime_arg, parse_int_arg

bp = Blueprint("audit_logs", __name__)


def _date_range():
    start = parse_datetime_arg(request.args.get("start_date"))
    end = parse_datetime_arg(request.args.get("end_date"), end_of_range=True)
    return start, end


@bp.get("")
@require_superadmin
def audit_logs_list():
    s = db_session()
    page = parse_int_arg(request.args.get("page"), 1)
    limit = parse_int_arg(request.args.get("limit"), 50, maximum=500)
    sort_by = (request.args.get("sort_by") or request.args.get("sortBy") or "timestamp").strip()
    sort_order = (request.args.get("sort_order") or request.args.get("sortOrder") or "desc").strip().lower()
    if sort_by not in SORTABLE_FIELDS:
        return jsonify({"message": f"Invalid sort_by. Must be one of: {', '.join(SORTABLE_FIELDS)}"}), 400
    try:
        start, end = _date_range()
    except ValueError:
        return jsonify({"message": "Invalid date format. Use YYYY-MM-DD or an ISO datetime."}), 400

    events, total = list_audit_logs(
        s,
        page=page,
        limit=limit,
        action=(request.args.get("action") or "").strip(),
        target_type=(request.args.get("target_type") or "").strip(),
        user_name=(request.args.get("user_name") or "").strip(),
        user_email=(request.args.get("user_email") or "").strip(),
        start=start,
        end=end,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return jsonify({"audit_logs": [audit_to_dict(ev) for ev in events], "pagination": pagination_meta(page, limit, total)})


@bp.get("/actions")
@require_superadmin
def audit_log_actions():
    return jsonify({"actions": distinct_actions(db_session())})


@bp.get("/target-types")
@require_superadmin
def audit_log_target_types():
    return jsonify({"target_types": distinct_target_types(db_session())})


@bp.get("/summary")
@require_superadmin
def audit_log_summary():
    try:
        start, end = _date_range()
    except ValueError:
        return jsonify({"message": "Invalid date format. Use YYYY-MM-DD or an ISO datetime."}), 400
    return jsonify(audit_summary(db_session(), start=start, end=end))
