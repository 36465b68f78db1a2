from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify

from app.superadmin.constants import ROLE_ADMIN, ROLE_SUPERADMIN
from app.superadmin.db import db_session
from app.superadmin.models import User
from app.superadmin.modules.reminders.scheduler import (
    JOB_CLEANUP,
    JOB_REMINDER,
    JobAlreadyRunning,
    JobFailed,
    ReminderScheduler,
    SchedulerDisabled,
)
from app.superadmin.modules.reminders.service import (
    find_inactive_users,
    get_inactive_user_stats,
    inactive_user_to_dict,
    list_all_inactive_users,
    mark_user_active,
    reset_user_reminders,
    send_reminder_to_user,
    send_reminders_to_all,
)
from app.superadmin.rbac import require_role, require_superadmin

bp = Blueprint("reminders", __name__)
require_admin = require_role(ROLE_SUPERADMIN, ROLE_ADMIN)


def _ok(data=None, message: str | None = None, status: int = 200):
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def _fail(message: str, status: int, data=None):
    return jsonify({"success": False, "message": message, "data": data}), status


def _mailer():
    return current_app.extensions["mailer"]


def _scheduler() -> ReminderScheduler:
    return current_app.extensions["reminder_scheduler"]


def _get_user_or_404(user_id: int) -> User:
    user = db_session().get(User, user_id)
    if not user:
        abort(404, description="User not found")
    return user


# ---------- Inactive users ----------
@bp.get("/stats")
@require_admin
def reminder_stats():
    return _ok(get_inactive_user_stats(db_session()))


@bp.get("/inactive-users")
@require_admin
def inactive_users():
    users = find_inactive_users(db_session())
    return _ok({"users": [inactive_user_to_dict(u) for u in users], "count": len(users)})


@bp.get("/all-inactive-users")
@require_admin
def all_inactive_users():
    users = list_all_inactive_users(db_session())
    return _ok({"users": [inactive_user_to_dict(u) for u in users], "count": len(users)})


# ---------- Sending ----------
@bp.post("/send-reminder/<int:user_id>")
@require_admin
def send_reminder(user_id: int):
    s = db_session()
    user = _get_user_or_404(user_id)
    result = send_reminder_to_user(s, user, mailer=_mailer(), actor=g.current_user)
    s.commit()
    if not result["success"]:
        return _fail(f"Failed to send reminder: {result['error']}", 502, result)
    return _ok(result, "Reminder sent successfully")


@bp.post("/send-reminders")
@require_superadmin
def send_reminders():
    summary = send_reminders_to_all(db_session(), mailer=_mailer(), actor=g.current_user)
    return _ok(summary, f"Reminders processed: {summary['successful']} sent, {summary['failed']} failed")


@bp.put("/mark-active/<int:user_id>")
@require_admin
def mark_active(user_id: int):
    s = db_session()
    user = _get_user_or_404(user_id)
    result = mark_user_active(s, user, mailer=_mailer(), actor=g.current_user)
    s.commit()
    return _ok(result, "User marked as active")


@bp.put("/reset-reminders/<int:user_id>")
@require_superadmin
def reset_reminders(user_id: int):
    s = db_session()
    user = _get_user_or_404(user_id)
    reset_user_reminders(s, user, actor=g.current_user)
    s.commit()
    return _ok({"user_id": user.id, "reminder_count": user.reminder_count}, "User reminders reset successfully")


# ---------- Scheduler ----------
@bp.get("/cron-status")
@require_superadmin
def cron_status():
    return _ok(_scheduler().get_status())


@bp.post("/trigger-reminder-job")
@require_superadmin
def trigger_reminder_job():
    sched = _scheduler()
    try:
        result = sched.trigger_reminder_job()
    except JobAlreadyRunning as e:
        return _fail(str(e), 409)
    except JobFailed as e:
        return _fail(str(e), 500, sched.get_status()["jobs"][JOB_REMINDER])
    return _ok(result, "Reminder job executed")


@bp.post("/trigger-cleanup-job")
@require_superadmin
def trigger_cleanup_job():
    sched = _scheduler()
    try:
        result = sched.trigger_cleanup_job()
    except JobAlreadyRunning as e:
        return _fail(str(e), 409)
    except JobFailed as e:
        return _fail(str(e), 500, sched.get_status()["jobs"][JOB_CLEANUP])
    return _ok(result, "Cleanup job executed")


@bp.post("/restart-cron")
@require_superadmin
def restart_cron():
    sched = _scheduler()
    try:
        sched.restart()
    except SchedulerDisabled as e:
        return _fail(str(e), 409, sched.get_status())
    return _ok(sched.get_status(), "Scheduler restarted")


@bp.post("/stop-cron")
@require_superadmin
def stop_cron():
    sched = _scheduler()
    sched.stop_all()
    return _ok(sched.get_status(), "Scheduler stopped")


@bp.post("/start-test-job")
@require_superadmin
def start_test_job():
    sched = _scheduler()
    try:
        sched.start_test_job()
    except SchedulerDisabled as e:
        return _fail(str(e), 409, sched.get_status())
    return _ok(sched.get_status(), "Test job started (runs every minute)")


@bp.post("/stop-test-job")
@require_superadmin
def stop_test_job():
    sched = _scheduler()
    sched.stop_test_job()
    return _ok(sched.get_status(), "Test job stopped")
