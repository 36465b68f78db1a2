"""
Inactive-user detection and reminder bookkeeping.

A user is seen at the later of last_login and last_activity (created_at when neither is set).
Each user moves through eligible -> reminded -> eligible again once the interval has passed,
until reminder_count reaches the cap. Logging in, or being marked active, resets the cycle.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import and_, func, or_

from app.superadmin.audit import record_event
from app.superadmin.constants import (
    ACTION_REMINDER_FAILED,
    ACTION_REMINDER_RESET,
    ACTION_REMINDER_SENT,
    ACTION_WELCOME_BACK_SENT,
    TARGET_USER,
)
from app.superadmin.models import User
from app.superadmin.modules.reminders.mailer import Mailer, MailerError
from app.superadmin.rbac import user_role_names
from app.superadmin.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderPolicy:
    inactivity_threshold_days: int
    max_reminders: int
    reminder_interval_days: int
    send_delay_seconds: float

    @classmethod
    def from_config(cls, cfg: dict | None = None) -> "ReminderPolicy":
        cfg = cfg if cfg is not None else current_app.config
        return cls(
            inactivity_threshold_days=int(cfg.get("INACTIVITY_THRESHOLD_DAYS", 7)),
            max_reminders=int(cfg.get("MAX_REMINDERS", 3)),
            reminder_interval_days=int(cfg.get("REMINDER_INTERVAL_DAYS", 1)),
            send_delay_seconds=float(cfg.get("REMINDER_SEND_DELAY_SECONDS", 1.0)),
        )


def last_seen(user: User) -> datetime:
    seen = [t for t in (user.last_login, user.last_activity) if t is not None]
    return max(seen) if seen else user.created_at


def inactive_clause(cutoff: datetime):
    """SQL form of `is_active and last_seen(user) < cutoff`, NULL-safe on every backend."""
    return and_(
        User.is_active.is_(True),
        or_(User.last_login.is_(None), User.last_login < cutoff),
        or_(User.last_activity.is_(None), User.last_activity < cutoff),
        or_(User.last_login.isnot(None), User.last_activity.isnot(None), User.created_at < cutoff),
    )


def eligible_clause(policy: ReminderPolicy, now: datetime):
    cutoff = now - timedelta(days=policy.inactivity_threshold_days)
    interval_cutoff = now - timedelta(days=policy.reminder_interval_days)
    return and_(
        inactive_clause(cutoff),
        or_(User.last_reminder_sent.is_(None), User.last_reminder_sent < interval_cutoff),
        User.reminder_count < policy.max_reminders,
    )


def inactive_user_to_dict(user: User, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    seen = last_seen(user)
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "roles": user_role_names(user),
        "created_at": iso(user.created_at),
        "last_login": iso(user.last_login),
        "last_activity": iso(user.last_activity),
        "last_seen": iso(seen),
        "days_inactive": (now - seen).days,
        "last_reminder_sent": iso(user.last_reminder_sent),
        "reminder_count": user.reminder_count,
    }


def find_inactive_users(s: "Session", *, policy: ReminderPolicy | None = None, now: datetime | None = None) -> list[User]:
    """Users due for a reminder, oldest activity first."""
    policy = policy or ReminderPolicy.from_config()
    now = now or datetime.utcnow()
    users = s.query(User).filter(eligible_clause(policy, now)).all()
    return sorted(users, key=lambda u: (last_seen(u), u.id))


def list_all_inactive_users(s: "Session", *, policy: ReminderPolicy | None = None, now: datetime | None = None) -> list[User]:
    """Every inactive user, including those capped or reminded recently."""
    policy = policy or ReminderPolicy.from_config()
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=policy.inactivity_threshold_days)
    users = s.query(User).filter(inactive_clause(cutoff)).all()
    return sorted(users, key=lambda u: (last_seen(u), u.id))


def send_reminder_to_user(
    s: "Session",
    user: User,
    *,
    mailer: Mailer,
    actor: User | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Mail one reminder and record the outcome. Does not commit.
    Counters only move on success.
    """
    try:
        message_id = mailer.send_reminder(user)
    except MailerError as e:
        logger.warning("Reminder to user %s <%s> failed: %s", user.id, user.email, e)
        record_event(
            s,
            actor=actor,
            action=ACTION_REMINDER_FAILED,
            target_type=TARGET_USER,
            target_id=user.id,
            details={"email": user.email, "error": str(e), "reminder_count": user.reminder_count},
        )
        return {
            "success": False,
            "user_id": user.id,
            "email": user.email,
            "error": str(e),
            "reminder_count": user.reminder_count,
        }

    user.last_reminder_sent = now or datetime.utcnow()
    user.reminder_count = (user.reminder_count or 0) + 1
    record_event(
        s,
        actor=actor,
        action=ACTION_REMINDER_SENT,
        target_type=TARGET_USER,
        target_id=user.id,
        details={"email": user.email, "message_id": message_id, "reminder_count": user.reminder_count},
    )
    return {
        "success": True,
        "user_id": user.id,
        "email": user.email,
        "message_id": message_id,
        "reminder_count": user.reminder_count,
    }


def send_reminders_to_all(
    s: "Session",
    *,
    mailer: Mailer,
    actor: User | None = None,
    policy: ReminderPolicy | None = None,
) -> dict[str, Any]:
    """
    Remind every eligible user, committing after each one so a later failure
    never undoes an earlier send. A crash between send and commit re-sends next run.
    """
    policy = policy or ReminderPolicy.from_config()
    users = find_inactive_users(s, policy=policy)
    logger.info("Sending reminders to %d inactive users", len(users))

    results: list[dict[str, Any]] = []
    for i, user in enumerate(users):
        if i and policy.send_delay_seconds > 0:
            time.sleep(policy.send_delay_seconds)
        user_id, email = user.id, user.email
        try:
            result = send_reminder_to_user(s, user, mailer=mailer, actor=actor)
            s.commit()
        except Exception as e:
            s.rollback()
            logger.exception("Reminder bookkeeping for user %s failed", user_id)
            result = {"success": False, "user_id": user_id, "email": email, "error": str(e), "reminder_count": None}
        results.append(result)

    successful = sum(1 for r in results if r["success"])
    summary = {
        "total_users": len(users),
        "successful": successful,
        "failed": len(results) - successful,
        "results": results,
    }
    logger.info("Reminder run finished: %d sent, %d failed", successful, summary["failed"])
    return summary


def mark_user_active(s: "Session", user: User, *, mailer: Mailer, actor: User | None = None) -> dict[str, Any]:
    """
    Record activity now. A previously reminded user gets a welcome-back mail
    (failures are logged only) and re-enters the reminder cycle from zero. Does not commit.
    """
    user.last_activity = datetime.utcnow()
    was_reminded = (user.reminder_count or 0) > 0 or user.last_reminder_sent is not None
    welcome_sent = False

    if was_reminded:
        try:
            message_id = mailer.send_welcome_back(user)
        except MailerError as e:
            logger.warning("Welcome-back mail to user %s <%s> failed: %s", user.id, user.email, e)
        else:
            welcome_sent = True
            record_event(
                s,
                actor=actor,
                action=ACTION_WELCOME_BACK_SENT,
                target_type=TARGET_USER,
                target_id=user.id,
                details={"email": user.email, "message_id": message_id, "previous_reminder_count": user.reminder_count},
            )
        user.reminder_count = 0
        user.last_reminder_sent = None

    return {"user_id": user.id, "was_reminded": was_reminded, "welcome_back_sent": welcome_sent}


def reset_user_reminders(s: "Session", user: User, *, actor: User | None = None) -> None:
    previous = user.reminder_count
    user.reminder_count = 0
    user.last_reminder_sent = None
    record_event(
        s,
        actor=actor,
        action=ACTION_REMINDER_RESET,
        target_type=TARGET_USER,
        target_id=user.id,
        details={"email": user.email, "previous_reminder_count": previous},
    )


def get_inactive_user_stats(s: "Session", *, policy: ReminderPolicy | None = None, now: datetime | None = None) -> dict[str, Any]:
    policy = policy or ReminderPolicy.from_config()
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=policy.inactivity_threshold_days)

    cnt = func.count(User.id)
    breakdown = (
        s.query(User.reminder_count, cnt)
        .filter(inactive_clause(cutoff))
        .group_by(User.reminder_count)
        .order_by(User.reminder_count.asc())
        .all()
    )
    return {
        "total_inactive": sum(int(n) for _, n in breakdown),
        "eligible_for_reminder": s.query(func.count(User.id)).filter(eligible_clause(policy, now)).scalar() or 0,
        "users_with_reminders": s.query(func.count(User.id))
        .filter(User.is_active.is_(True), User.reminder_count > 0)
        .scalar()
        or 0,
        "reminder_breakdown": [{"reminder_count": rc, "count": int(n)} for rc, n in breakdown],
        "inactivity_threshold_days": policy.inactivity_threshold_days,
        "max_reminders": policy.max_reminders,
        "reminder_interval_days": policy.reminder_interval_days,
    }
