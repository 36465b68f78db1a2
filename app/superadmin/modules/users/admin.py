from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.superadmin.db import db_session
from app.superadmin.models import User
from app.superadmin.modules.audit_logs.service import audit_to_dict
from app.superadmin.modules.users.service import (
    SORTABLE_FIELDS,
    create_user,
    delete_user,
    list_users,
    recent_activity_for,
    update_user,
    user_to_dict,
    validate_user_payload,
)
from app.superadmin.rbac import require_superadmin
from app.superadmin.utils import pagination_meta, parse_int_arg

bp = Blueprint("users", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- List ----------
@bp.get("")
@require_superadmin
def users_list():
    s = db_session()
    page = parse_int_arg(request.args.get("page"), 1)
    limit = parse_int_arg(request.args.get("limit"), 10, maximum=100)
    sort_by = (request.args.get("sort_by") or request.args.get("sortBy") or "created_at").strip()
    sort_order = (request.args.get("sort_order") or request.args.get("sortOrder") or "desc").strip().lower()
    if sort_by not in SORTABLE_FIELDS:
        return jsonify({"message": f"Invalid sort_by. Must be one of: {', '.join(SORTABLE_FIELDS)}"}), 400

    users, total = list_users(
        s,
        page=page,
        limit=limit,
        search=(request.args.get("search") or "").strip(),
        role=(request.args.get("role") or "").strip(),
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return jsonify({"users": [user_to_dict(u) for u in users], "pagination": pagination_meta(page, limit, total)})


# ---------- Detail ----------
@bp.get("/<int:user_id>")
@require_superadmin
def user_detail(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404, description="User not found")
    data = user_to_dict(user, include_permissions=True)
    data["audit_logs"] = [audit_to_dict(ev) for ev in recent_activity_for(s, user)]
    return jsonify({"user": data})


# ---------- Create ----------
@bp.post("")
@require_superadmin
def user_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}

    errors = validate_user_payload(s, payload)
    if errors:
        return jsonify({"message": errors[0], "errors": errors}), 400

    user = create_user(s, payload, _current_user())
    s.commit()
    return jsonify({"message": "User created successfully", "user": user_to_dict(user)}), 201


# ---------- Update ----------
@bp.put("/<int:user_id>")
@require_superadmin
def user_update(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404, description="User not found")
    payload = request.get_json(silent=True) or {}

    errors = validate_user_payload(s, payload, existing=user)
    if errors:
        return jsonify({"message": errors[0], "errors": errors}), 400

    try:
        update_user(s, user, payload, _current_user())
    except ValueError as e:
        s.rollback()
        return jsonify({"message": str(e)}), 400
    s.commit()
    return jsonify({"message": "User updated successfully", "user": user_to_dict(user)})


# ---------- Delete ----------
@bp.delete("/<int:user_id>")
@require_superadmin
def user_delete(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404, description="User not found")

    try:
        delete_user(s, user, _current_user())
    except ValueError as e:
        s.rollback()
        return jsonify({"message": str(e)}), 400
    s.commit()
    return jsonify({"message": "User deleted successfully"})
