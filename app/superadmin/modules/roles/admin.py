from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.superadmin.db import db_session
from app.superadmin.models import Role, User
from app.superadmin.modules.roles.service import (
    assign_role,
    create_role,
    delete_role,
    role_to_dict,
    unassign_role,
    update_role,
)
from app.superadmin.rbac import require_superadmin

bp = Blueprint("roles", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _assignment_ids(payload: dict) -> tuple[int, int] | None:
    try:
        user_id = int(payload.get("user_id") or payload.get("userId") or 0)
        role_id = int(payload.get("role_id") or payload.get("roleId") or 0)
    except (TypeError, ValueError):
        return None
    if not user_id or not role_id:
        return None
    return user_id, role_id


@bp.get("")
@require_superadmin
def roles_list():
    s = db_session()
    roles = s.query(Role).order_by(Role.created_at.desc(), Role.id.desc()).all()
    return jsonify({"roles": [role_to_dict(r) for r in roles]})


@bp.get("/<int:role_id>")
@require_superadmin
def role_detail(role_id: int):
    s = db_session()
    role = s.get(Role, role_id)
    if not role:
        abort(404, description="Role not found")
    return jsonify({"role": role_to_dict(role)})


@bp.post("")
@require_superadmin
def role_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    try:
        role = create_role(s, payload, _current_user())
    except ValueError as e:
        s.rollback()
        return jsonify({"message": str(e)}), 400
    s.commit()
    return jsonify({"message": "Role created successfully", "role": role_to_dict(role)}), 201


@bp.put("/<int:role_id>")
@require_superadmin
def role_update(role_id: int):
    s = db_session()
    role = s.get(Role, role_id)
    if not role:
        abort(404, description="Role not found")
    payload = request.get_json(silent=True) or {}
    try:
        update_role(s, role, payload, _current_user())
    except ValueError as e:
        s.rollback()
        return jsonify({"message": str(e)}), 400
    s.commit()
    return jsonify({"message": "Role updated successfully", "role": role_to_dict(role)})


@bp.delete("/<int:role_id>")
@require_superadmin
def role_delete(role_id: int):
    s = db_session()
    role = s.get(Role, role_id)
    if not role:
        abort(404, description="Role not found")
    try:
        delete_role(s, role, _current_user())
    except ValueError as e:
        s.rollback()
        return jsonify({"message": str(e)}), 400
    s.commit()
    return jsonify({"message": "Role deleted successfully"})


# ---------- Assignments ----------
@bp.post("/assign-role")
@require_superadmin
def role_assign():
    s = db_session()
    ids = _assignment_ids(request.get_json(silent=True) or {})
    if not ids:
        return jsonify({"message": "User ID and Role ID are required"}), 400
    user = s.get(User, ids[0])
    if not user:
        abort(404, description="User not found")
    role = s.get(Role, ids[1])
    if not role:
        abort(404, description="Role not found")

    try:
        assignment = assign_role(s, user, role, _current_user())
    except ValueError as e:
        s.rollback()
        return jsonify({"message": str(e)}), 400
    s.commit()
    return jsonify({"message": "Role assigned successfully", "assignment": assignment})


@bp.delete("/assign-role")
@require_superadmin
def role_unassign():
    s = db_session()
    ids = _assignment_ids(request.get_json(silent=True) or {})
    if not ids:
        return jsonify({"message": "User ID and Role ID are required"}), 400
    user = s.get(User, ids[0])
    role = s.get(Role, ids[1])
    if not user or not role or role not in user.roles:
        abort(404, description="Role assignment not found")

    try:
        removal = unassign_role(s, user, role, _current_user())
    except ValueError as e:
        s.rollback()
        return jsonify({"message": str(e)}), 400
    s.commit()
    return jsonify({"message": "Role removed successfully", "removal": removal})
