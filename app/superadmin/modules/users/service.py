from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_
from werkzeug.security import generate_password_hash

from app.superadmin.audit import record_event
from app.superadmin.constants import (
    ACTION_USER_CREATE,
    ACTION_USER_DELETE,
    ACTION_USER_UPDATE,
    ROLE_SUPERADMIN,
    TARGET_USER,
)
from app.superadmin.models import AuditLog, Role, User
from app.superadmin.modules.roles.service import superadmin_assignment_count
from app.superadmin.rbac import user_permission_names, user_role_names
from app.superadmin.utils import is_valid_email, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


SORTABLE_FIELDS = {
    "created_at": User.created_at,
    "name": User.name,
    "email": User.email,
    "last_login": User.last_login,
}
MIN_PASSWORD_LENGTH = 8


def user_to_dict(user: User, *, include_permissions: bool = False) -> dict[str, Any]:
    """Public view of a user. Never includes the password hash."""
    data: dict[str, Any] = {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "is_active": user.is_active,
        "roles": user_role_names(user),
        "created_at": iso(user.created_at),
        "updated_at": iso(user.updated_at),
        "last_login": iso(user.last_login),
        "last_activity": iso(user.last_activity),
        "last_reminder_sent": iso(user.last_reminder_sent),
        "reminder_count": user.reminder_count,
    }
    if include_permissions:
        data["permissions"] = user_permission_names(user)
    return data


def list_users(
    s: "Session",
    *,
    page: int,
    limit: int,
    search: str = "",
    role: str = "",
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> tuple[list[User], int]:
    q = s.query(User)
    if search:
        like = f"%{search.lower()}%"
        q = q.filter(or_(func.lower(User.name).like(like), func.lower(User.email).like(like)))
    if role:
        q = q.filter(User.roles.any(Role.name == role))

    total = q.count()
    column = SORTABLE_FIELDS.get(sort_by, User.created_at)
    ordering = column.asc() if sort_order == "asc" else column.desc()
    users = q.order_by(ordering, User.id.asc()).offset((page - 1) * limit).limit(limit).all()
    return users, total


def recent_activity_for(s: "Session", user: User, limit: int = 10) -> list[AuditLog]:
    return (
        s.query(AuditLog)
        .filter(AuditLog.actor_user_id == user.id)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )


def _roles_by_name(s: "Session", names: list[str]) -> list[Role]:
    """Unknown names are skipped."""
    wanted = [str(n).strip() for n in names if str(n).strip()]
    if not wanted:
        return []
    return s.query(Role).filter(Role.name.in_(wanted)).order_by(Role.name.asc()).all()


def _validate_password(password: str, errors: list[str]) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")


def validate_user_payload(s: "Session", payload: dict, *, existing: User | None = None) -> list[str]:
    """Validate user creation/update payload. Returns list of errors."""
    errors: list[str] = []
    creating = existing is None

    for field in ("name", "email", "password"):
        value = payload.get(field)
        if value is not None and not isinstance(value, str):
            errors.append(f"{field.capitalize()} must be a string.")
    if errors:
        return errors

    name = (payload.get("name") or "").strip()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if creating and not name:
        errors.append("Name is required.")
    if creating and not email:
        errors.append("Email is required.")
    if creating and not password:
        errors.append("Password is required.")

    if email:
        if not is_valid_email(email):
            errors.append("Invalid email format.")
        elif existing is None or email != existing.email:
            dup = s.query(User).filter(User.email == email).one_or_none()
            if dup:
                errors.append("User with this email already exists.")
    if password:
        _validate_password(password, errors)

    roles = payload.get("roles")
    if roles is not None and not isinstance(roles, list):
        errors.append("Roles must be a list of role names.")
    if "is_active" in payload and not isinstance(payload.get("is_active"), bool):
        errors.append("is_active must be a boolean.")
    return errors


def create_user(s: "Session", payload: dict, actor: User) -> User:
    now = datetime.utcnow()
    user = User(
        name=(payload.get("name") or "").strip(),
        email=(payload.get("email") or "").strip().lower(),
        password_hash=generate_password_hash(payload["password"]),
        is_active=payload.get("is_active", True),
        created_at=now,
        updated_at=now,
        reminder_count=0,
    )
    user.roles.extend(_roles_by_name(s, payload.get("roles") or []))
    s.add(user)
    s.flush()

    record_event(
        s,
        actor=actor,
        action=ACTION_USER_CREATE,
        target_type=TARGET_USER,
        target_id=user.id,
        details={"email": user.email, "name": user.name, "roles": user_role_names(user)},
    )
    return user


def update_user(s: "Session", user: User, payload: dict, actor: User) -> User:
    before = {"name": user.name, "email": user.email, "is_active": user.is_active, "roles": user_role_names(user)}

    name = (payload.get("name") or "").strip()
    if name:
        user.name = name
    email = (payload.get("email") or "").strip().lower()
    if email:
        user.email = email
    if payload.get("password"):
        user.password_hash = generate_password_hash(payload["password"])
    if "is_active" in payload:
        if user.id == actor.id and payload["is_active"] is False:
            raise ValueError("You cannot deactivate your own account.")
        user.is_active = payload["is_active"]

    roles = payload.get("roles")
    if roles is not None:
        new_roles = _roles_by_name(s, roles)
        losing_superadmin = ROLE_SUPERADMIN in before["roles"] and ROLE_SUPERADMIN not in {r.name for r in new_roles}
        if losing_superadmin and superadmin_assignment_count(s) <= 1:
            raise ValueError("Cannot remove the last superadmin role")
        user.roles.clear()
        user.roles.extend(new_roles)

    user.updated_at = datetime.utcnow()
    after = {"name": user.name, "email": user.email, "is_active": user.is_active, "roles": user_role_names(user)}

    record_event(
        s,
        actor=actor,
        action=ACTION_USER_UPDATE,
        target_type=TARGET_USER,
        target_id=user.id,
        details={"before": before, "after": after, "password_changed": bool(payload.get("password"))},
    )
    return user


def delete_user(s: "Session", user: User, actor: User) -> None:
    if user.id == actor.id:
        raise ValueError("Cannot delete your own account")
    if ROLE_SUPERADMIN in user_role_names(user) and superadmin_assignment_count(s) <= 1:
        raise ValueError("Cannot delete the last superadmin")

    snapshot = {"email": user.email, "name": user.name}
    user_id = user.id
    s.delete(user)
    s.flush()

    record_event(
        s,
        actor=actor,
        action=ACTION_USER_DELETE,
        target_type=TARGET_USER,
        target_id=user_id,
        details=snapshot,
    )
