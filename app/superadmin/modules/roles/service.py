from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.superadmin.audit import record_event
from app.superadmin.constants import (
    ACTION_ROLE_ASSIGN,
    ACTION_ROLE_CREATE,
    ACTION_ROLE_DELETE,
    ACTION_ROLE_UNASSIGN,
    ACTION_ROLE_UPDATE,
    ROLE_SUPERADMIN,
    TARGET_ROLE,
    TARGET_USER_ROLE,
)
from app.superadmin.models import Permission, Role, User, UserRole
from app.superadmin.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def role_to_dict(role: Role, *, include_users: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": role.id,
        "name": role.name,
        "description": role.description,
        "permissions": sorted(p.name for p in role.permissions),
        "created_at": iso(role.created_at),
        "user_count": len(role.users),
    }
    if include_users:
        data["users"] = [
            {"id": u.id, "name": u.name, "email": u.email, "created_at": iso(u.created_at)}
            for u in sorted(role.users, key=lambda u: u.email)
        ]
    return data


def _text_field(payload: dict, key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"Role {key} must be a string")
    return value.strip()


def _permission_names(raw: Any) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("Permissions must be a list of permission names.")
    return sorted({str(p).strip() for p in raw if str(p).strip()})


def ensure_permissions(s: "Session", names: list[str]) -> list[Permission]:
    """Look up permissions by name, creating any that do not exist yet."""
    existing = {p.name: p for p in s.query(Permission).filter(Permission.name.in_(names)).all()} if names else {}
    out = []
    for name in names:
        p = existing.get(name)
        if p is None:
            p = Permission(name=name)
            s.add(p)
        out.append(p)
    return out


def superadmin_assignment_count(s: "Session") -> int:
    return (
        s.query(func.count(UserRole.user_id))
        .join(Role, Role.id == UserRole.role_id)
        .filter(Role.name == ROLE_SUPERADMIN)
        .scalar()
        or 0
    )


def create_role(s: "Session", payload: dict, actor: User) -> Role:
    name = _text_field(payload, "name")
    if not name:
        raise ValueError("Role name is required")
    if s.query(Role).filter(Role.name == name).one_or_none():
        raise ValueError("Role with this name already exists")
    perm_names = _permission_names(payload.get("permissions"))

    role = Role(
        name=name,
        description=_text_field(payload, "description") or None,
        created_at=datetime.utcnow(),
    )
    role.permissions.extend(ensure_permissions(s, perm_names))
    s.add(role)
    s.flush()

    record_event(
        s,
        actor=actor,
        action=ACTION_ROLE_CREATE,
        target_type=TARGET_ROLE,
        target_id=role.id,
        details={"name": role.name, "permissions": perm_names},
    )
    return role


def update_role(s: "Session", role: Role, payload: dict, actor: User) -> Role:
    changes: dict[str, Any] = {}

    name = _text_field(payload, "name")
    if name and name != role.name:
        if role.name == ROLE_SUPERADMIN:
            raise ValueError("Cannot rename the superadmin role")
        if s.query(Role).filter(Role.name == name).one_or_none():
            raise ValueError("Role with this name already exists")
        changes["name"] = {"old": role.name, "new": name}
        role.name = name

    if "description" in payload:
        description = _text_field(payload, "description") or None
        if description != role.description:
            changes["description"] = {"old": role.description, "new": description}
            role.description = description

    if payload.get("permissions") is not None:
        perm_names = _permission_names(payload.get("permissions"))
        old = sorted(p.name for p in role.permissions)
        if perm_names != old:
            changes["permissions"] = {"old": old, "new": perm_names}
            role.permissions.clear()
            role.permissions.extend(ensure_permissions(s, perm_names))

    record_event(
        s,
        actor=actor,
        action=ACTION_ROLE_UPDATE,
        target_type=TARGET_ROLE,
        target_id=role.id,
        details={"name": role.name, "changes": changes},
    )
    return role


def delete_role(s: "Session", role: Role, actor: User) -> None:
    if role.name == ROLE_SUPERADMIN:
        raise ValueError("Cannot delete superadmin role")
    if role.users:
        raise ValueError("Cannot delete role that is assigned to users")

    role_id, name = role.id, role.name
    s.delete(role)
    s.flush()
    record_event(s, actor=actor, action=ACTION_ROLE_DELETE, target_type=TARGET_ROLE, target_id=role_id, details={"name": name})


def assign_role(s: "Session", user: User, role: Role, actor: User) -> dict[str, Any]:
    if role in user.roles:
        raise ValueError("Role is already assigned to this user")
    user.roles.append(role)
    user.updated_at = datetime.utcnow()
    s.flush()

    assignment = {"user_id": user.id, "role_id": role.id, "user_name": user.name, "role_name": role.name}
    record_event(
        s,
        actor=actor,
        action=ACTION_ROLE_ASSIGN,
        target_type=TARGET_USER_ROLE,
        target_id=f"{user.id}-{role.id}",
        details=assignment,
    )
    return assignment


def unassign_role(s: "Session", user: User, role: Role, actor: User) -> dict[str, Any]:
    """Caller guarantees the assignment exists."""
    if role.name == ROLE_SUPERADMIN and superadmin_assignment_count(s) <= 1:
        raise ValueError("Cannot remove the last superadmin role")
    user.roles.remove(role)
    user.updated_at = datetime.utcnow()
    s.flush()

    removal = {"user_id": user.id, "role_id": role.id, "user_name": user.name, "role_name": role.name}
    record_event(
        s,
        actor=actor,
        action=ACTION_ROLE_UNASSIGN,
        target_type=TARGET_USER_ROLE,
        target_id=f"{user.id}-{role.id}",
        details=removal,
    )
    return removal
