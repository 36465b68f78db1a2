from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.security import check_password_hash

from app.superadmin.audit import record_event
from app.superadmin.constants import ACTION_LOGIN, ACTION_LOGIN_FAILED, ACTION_LOGOUT, TARGET_USER
from app.superadmin.db import db_session
from app.superadmin.models import User
from app.superadmin.rbac import user_role_names
from app.superadmin.security import TokenError, bearer_token, decode_token, issue_token

bp = Blueprint("auth", __name__)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_ACTIVITY_TOUCH_INTERVAL = timedelta(seconds=60)


def _login_attempts() -> dict[str, list[datetime]]:
    # per-app (and per-process) attempt log
    return current_app.extensions.setdefault("login_attempts", defaultdict(list))


def _check_rate_limit(ip: str) -> bool:
    attempts = _login_attempts()
    cutoff = datetime.utcnow() - timedelta(seconds=_LOGIN_RATE_WINDOW)
    attempts[ip] = [t for t in attempts[ip] if t > cutoff]
    return len(attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts()[ip].append(datetime.utcnow())


def _touch_activity(s, user: User) -> None:
    now = datetime.utcnow()
    if user.last_activity and now - user.last_activity < _ACTIVITY_TOUCH_INTERVAL:
        return
    user.last_activity = now
    s.commit()


def load_current_user() -> None:
    """
    Loads g.current_user from the bearer token.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    g.current_user = None
    g.token_error = None

    token = bearer_token(request.headers.get("Authorization"))
    if not token:
        return

    try:
        claims = decode_token(token)
    except TokenError as e:
        g.token_error = str(e)
        return

    try:
        s = db_session()
        user = s.get(User, int(claims.get("sub") or 0))
        if not user or not user.is_active:
            g.token_error = "Invalid token"
            return
        _touch_activity(s, user)
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (ignoring token): %s", e)
        g.current_user = None


@bp.post("/login")
def login_post():
    from app.superadmin.modules.reminders.service import mark_user_active
    from app.superadmin.modules.users.service import user_to_dict

    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({"message": "Email and password are required"}), 400
    email = payload.get("email") or ""
    password = payload.get("password") or ""
    if not isinstance(email, str) or not isinstance(password, str):
        return jsonify({"message": "Email and password must be strings"}), 400
    email = email.strip().lower()
    ip = request.remote_addr or "unknown"

    if not email or not password:
        return jsonify({"message": "Email and password are required"}), 400

    if _check_rate_limit(ip):
        return jsonify({"message": "Too many login attempts. Please wait 5 minutes."}), 429

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action=ACTION_LOGIN_FAILED,
                target_type=TARGET_USER,
                target_id=email,
                details={"email": email, "reason": "Invalid credentials"},
            )
            s.commit()
            return jsonify({"message": "Invalid email or password"}), 401

        now = datetime.utcnow()
        was_reminded = user.reminder_count > 0
        user.last_login = now
        user.last_activity = now
        _login_attempts()[ip].clear()
        record_event(s, actor=user, action=ACTION_LOGIN, target_type=TARGET_USER, target_id=user.id, details={"email": user.email})
        s.commit()

        if was_reminded:
            mark_user_active(s, user, mailer=current_app.extensions["mailer"], actor=user)
            s.commit()

        token = issue_token(user, user_role_names(user))
        return jsonify({"message": "Login successful", "token": token, "user": user_to_dict(user, include_permissions=True)})
    except Exception:
        current_app.logger.exception("Login crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.get("/me")
def me():
    from app.superadmin.modules.users.service import user_to_dict

    user = getattr(g, "current_user", None)
    if not user:
        return jsonify({"message": g.token_error or "No token provided"}), 401
    return jsonify({"user": user_to_dict(user, include_permissions=True)})


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if not user:
        return jsonify({"message": g.token_error or "No token provided"}), 401
    s = db_session()
    record_event(s, actor=user, action=ACTION_LOGOUT, target_type=TARGET_USER, target_id=user.id)
    s.commit()
    return jsonify({"message": "Logged out"})
