from __future__ import annotations

from collections import Counter
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.superadmin.constants import ACTION_LOGIN
from app.superadmin.models import AuditLog, Role, User
from app.superadmin.modules.audit_logs.service import audit_to_dict, counts_by, recent_events
from app.superadmin.rbac import user_role_names
from app.superadmin.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

MAX_PERIOD_DAYS = 365


def parse_period(raw: str | None, default: int) -> int:
    """Strict: analytics periods are a positive day count, anything else is a client error."""
    raw = (raw or "").strip()
    if not raw:
        return default
    try:
        period = int(raw)
    except ValueError:
        raise ValueError("Period must be a positive integer") from None
    if period < 1:
        raise ValueError("Period must be a positive integer")
    if period > MAX_PERIOD_DAYS:
        raise ValueError(f"Period cannot exceed {MAX_PERIOD_DAYS} days")
    return period


def _count(s: "Session", column, *criteria) -> int:
    q = s.query(func.count(column))
    for c in criteria:
        q = q.filter(c)
    return int(q.scalar() or 0)


def _role_user_counts(s: "Session") -> list[dict[str, Any]]:
    roles = s.query(Role).order_by(Role.name.asc()).all()
    return [{"id": r.id, "name": r.name, "user_count": len(r.users)} for r in roles]


def _daily_buckets(stamps: list[datetime], days: list[date]) -> list[dict[str, Any]]:
    per_day = Counter(ts.date() for ts in stamps)
    return [{"date": d.isoformat(), "count": per_day.get(d, 0)} for d in days]


def get_summary(s: "Session", *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    seven_days_ago = now - timedelta(days=7)
    thirty_days_ago = now - timedelta(days=30)

    # last 7 calendar days including today, oldest first
    today = now.date()
    days = [today - timedelta(days=i) for i in range(6, -1, -1)]
    window_start = datetime.combine(days[0], time.min)
    login_stamps = [
        ts
        for (ts,) in s.query(AuditLog.timestamp)
        .filter(AuditLog.action == ACTION_LOGIN, AuditLog.timestamp >= window_start)
        .all()
    ]

    return {
        "total_users": _count(s, User.id),
        "total_roles": _count(s, Role.id),
        "total_audit_logs": _count(s, AuditLog.id),
        "active_users_last_7_days": _count(s, User.id, User.last_login >= seven_days_ago),
        "logins_last_7_days": _count(s, AuditLog.id, AuditLog.action == ACTION_LOGIN, AuditLog.timestamp >= seven_days_ago),
        "new_users_last_30_days": _count(s, User.id, User.created_at >= thirty_days_ago),
        "role_distribution": _role_user_counts(s),
        "top_actions": [{"action": a, "count": n} for a, n in counts_by(s, AuditLog.action, limit=5)],
        "daily_logins": _daily_buckets(login_stamps, days),
        "recent_activity": [audit_to_dict(ev) for ev in recent_events(s, limit=10)],
    }


def get_user_analytics(s: "Session", period: int, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    start = now - timedelta(days=period)

    per_day = Counter(
        created.date() for (created,) in s.query(User.created_at).filter(User.created_at >= start).all()
    )
    recent_logins = (
        s.query(User)
        .filter(User.last_login.isnot(None), User.last_login >= start)
        .order_by(User.last_login.desc())
        .limit(10)
        .all()
    )
    return {
        "period": period,
        # only days with at least one registration
        "user_registrations": [{"date": d.isoformat(), "count": per_day[d]} for d in sorted(per_day)],
        "users_by_role": _role_user_counts(s),
        "recent_logins": [
            {"id": u.id, "name": u.name, "email": u.email, "last_login": iso(u.last_login), "roles": user_role_names(u)}
            for u in recent_logins
        ],
    }


def get_activity_analytics(s: "Session", period: int, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    start = now - timedelta(days=period)

    cnt = func.count(AuditLog.id)
    top_actors = (
        s.query(AuditLog.actor_user_id, cnt)
        .filter(AuditLog.timestamp >= start, AuditLog.actor_user_id.isnot(None))
        .group_by(AuditLog.actor_user_id)
        .order_by(cnt.desc(), AuditLog.actor_user_id.asc())
        .limit(10)
        .all()
    )
    actors = {u.id: u for u in s.query(User).filter(User.id.in_([a for a, _ in top_actors])).all()} if top_actors else {}

    day_start = datetime.combine(now.date(), time.min)
    per_hour = Counter(
        ts.hour
        for (ts,) in s.query(AuditLog.timestamp)
        .filter(AuditLog.timestamp >= day_start, AuditLog.timestamp < day_start + timedelta(days=1))
        .all()
    )

    return {
        "period": period,
        "activity_by_action": [{"action": a, "count": n} for a, n in counts_by(s, AuditLog.action, start=start)],
        "top_users": [
            {
                "user_id": uid,
                "name": actors[uid].name if uid in actors else None,
                "email": actors[uid].email if uid in actors else None,
                "count": int(n),
            }
            for uid, n in top_actors
        ],
        "hourly_activity": [{"hour": h, "count": per_hour.get(h, 0)} for h in range(24)],
    }
