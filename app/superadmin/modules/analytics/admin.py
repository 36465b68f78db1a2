from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.superadmin.db import db_session
from app.superadmin.modules.analytics.service import (
    get_activity_analytics,
    get_summary,
    get_user_analytics,
    parse_period,
)
from app.superadmin.rbac import require_superadmin

bp = Blueprint("analytics", __name__)


@bp.get("/summary")
@require_superadmin
def analytics_summary():
    return jsonify(get_summary(db_session()))


@bp.get("/users")
@require_superadmin
def analytics_users():
    try:
        period = parse_period(request.args.get("period"), 30)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400
    return jsonify(get_user_analytics(db_session(), period))


@bp.get("/activity")
@require_superadmin
def analytics_activity():
    try:
        period = parse_period(request.args.get("period"), 7)
    except ValueError as e:
        return jsonify({"message": str(e)}), 400
    return jsonify(get_activity_analytics(db_session(), period))
