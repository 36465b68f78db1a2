from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.superadmin.models import AuditLog, User
from app.superadmin.utils import iso, loads_lenient

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session


SORTABLE_FIELDS = {
    "timestamp": AuditLog.timestamp,
    "action": AuditLog.action,
    "target_type": AuditLog.target_type,
}


def audit_to_dict(ev: AuditLog) -> dict[str, Any]:
    actor = None
    if ev.actor is not None:
        actor = {"id": ev.actor.id, "name": ev.actor.name, "email": ev.actor.email}
    return {
        "id": ev.id,
        "timestamp": iso(ev.timestamp),
        "action": ev.action,
        "target_type": ev.target_type,
        "target_id": ev.target_id,
        "details": loads_lenient(ev.details),
        "actor_user_id": ev.actor_user_id,
        "actor_email": ev.actor_email,
        "actor": actor,
        "request_id": ev.request_id,
        "client_ip": ev.client_ip,
    }


def _apply_date_range(q: "Query", start: datetime | None, end: datetime | None) -> "Query":
    if start:
        q = q.filter(AuditLog.timestamp >= start)
    if end:
        q = q.filter(AuditLog.timestamp < end)
    return q


def list_audit_logs(
    s: "Session",
    *,
    page: int,
    limit: int,
    action: str = "",
    target_type: str = "",
    user_name: str = "",
    user_email: str = "",
    start: datetime | None = None,
    end: datetime | None = None,
    sort_by: str = "timestamp",
    sort_order: str = "desc",
) -> tuple[list[AuditLog], int]:
    """
    Filtered, paginated audit trail.
    Actor name/email filters run in SQL so the total matches the filtered rows.
    """
    q = s.query(AuditLog)
    if action:
        q = q.filter(AuditLog.action == action)
    if target_type:
        q = q.filter(AuditLog.target_type == target_type)
    if user_name or user_email:
        q = q.join(User, User.id == AuditLog.actor_user_id)
        if user_name:
            q = q.filter(func.lower(User.name).like(f"%{user_name.lower()}%"))
        if user_email:
            q = q.filter(func.lower(User.email).like(f"%{user_email.lower()}%"))
    q = _apply_date_range(q, start, end)

    total = q.count()
    column = SORTABLE_FIELDS.get(sort_by, AuditLog.timestamp)
    ordering = column.asc() if sort_order == "asc" else column.desc()
    events = q.order_by(ordering, AuditLog.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return events, total


def distinct_actions(s: "Session") -> list[str]:
    rows = s.query(AuditLog.action).distinct().order_by(AuditLog.action.asc()).all()
    return [r[0] for r in rows if r[0]]


def distinct_target_types(s: "Session") -> list[str]:
    rows = (
        s.query(AuditLog.target_type)
        .filter(AuditLog.target_type.isnot(None))
        .distinct()
        .order_by(AuditLog.target_type.asc())
        .all()
    )
    return [r[0] for r in rows]


def recent_events(s: "Session", *, limit: int = 10, start: datetime | None = None, end: datetime | None = None) -> list[AuditLog]:
    q = _apply_date_range(s.query(AuditLog), start, end)
    return q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()


def counts_by(s: "Session", column, *, start: datetime | None = None, end: datetime | None = None, limit: int | None = None) -> list[tuple[Any, int]]:
    """(value, count) pairs for an AuditLog column, most frequent first."""
    cnt = func.count(AuditLog.id)
    q = _apply_date_range(s.query(column, cnt), start, end)
    q = q.group_by(column).order_by(cnt.desc(), column.asc())
    if limit:
        q = q.limit(limit)
    return [(value, int(n)) for value, n in q.all()]


def audit_summary(s: "Session", *, start: datetime | None = None, end: datetime | None = None) -> dict[str, Any]:
    total = _apply_date_range(s.query(func.count(AuditLog.id)), start, end).scalar() or 0
    return {
        "summary": {
            "total_count": int(total),
            "action_counts": [{"action": a, "count": n} for a, n in counts_by(s, AuditLog.action, start=start, end=end)],
            "target_type_counts": [
                {"target_type": t, "count": n} for t, n in counts_by(s, AuditLog.target_type, start=start, end=end)
            ],
        },
        "recent_activity": [audit_to_dict(ev) for ev in recent_events(s, start=start, end=end)],
    }
