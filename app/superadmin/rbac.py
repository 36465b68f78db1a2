from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g, jsonify

from app.superadmin.constants import ROLE_SUPERADMIN
from app.superadmin.models import User


def user_role_names(user: User | None) -> list[str]:
    if not user:
        return []
    return sorted({r.name for r in (user.roles or [])})


def user_permission_names(user: User | None) -> list[str]:
    if not user:
        return []
    perms = set()
    for role in user.roles or []:
        for perm in role.permissions or []:
            perms.add(perm.name)
    return sorted(perms)


def user_has_role(user: User | None, *role_names: str) -> bool:
    if not user or not user.is_active:
        return False
    return any(role.name in role_names for role in user.roles)


def require_role(*role_names: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> 401 so the SPA can send the user to login.
            if not user or not user.is_active:
                return jsonify({"message": "Authentication required"}), 401
            # Authenticated but unauthorized -> 403
            if not user_has_role(user, *role_names):
                g.missing_role = ", ".join(role_names)
                return jsonify({"message": f"Access denied. Required roles: {', '.join(role_names)}"}), 403
            return fn(*args, **kwargs)

        return wrapped

    return decorator


require_superadmin = require_role(ROLE_SUPERADMIN)
