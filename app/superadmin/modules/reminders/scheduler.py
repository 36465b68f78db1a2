"""
In-process cron scheduler for the reminder pipeline.

Only the process with SCHEDULER_ENABLED set may run this, and the HTTP controls that
start jobs refuse elsewhere. Every run opens its own app context and DB session, and
its outcome is kept in memory for the status endpoint.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from app.superadmin.constants import ACTION_REMINDER_SENT
from app.superadmin.db import session_scope
from app.superadmin.models import AuditLog
from app.superadmin.modules.reminders.service import get_inactive_user_stats, send_reminders_to_all
from app.superadmin.utils import iso

logger = logging.getLogger(__name__)

JOB_REMINDER = "reminder"
JOB_CLEANUP = "cleanup"
JOB_TEST = "test"
TEST_CRON_SCHEDULE = "* * * * *"

STATUS_SCHEDULED = "scheduled"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class JobAlreadyRunning(Exception):
    pass


class SchedulerDisabled(Exception):
    pass


class JobFailed(Exception):
    pass


class ReminderScheduler:
    def __init__(self, app: Flask) -> None:
        self.app = app
        self.timezone = app.config.get("SCHEDULER_TIMEZONE", "UTC")
        self._scheduler: BackgroundScheduler | None = None
        self._state_lock = threading.Lock()
        self._run_locks = {job_id: threading.Lock() for job_id in (JOB_REMINDER, JOB_CLEANUP, JOB_TEST)}
        self._jobs: dict[str, dict[str, Any]] = {
            JOB_REMINDER: self._new_status(
                app.config.get("REMINDER_CRON_SCHEDULE", "5 23 * * *"),
                "Send reminder emails to inactive users",
                self._reminder_job,
            ),
            JOB_CLEANUP: self._new_status(
                app.config.get("CLEANUP_CRON_SCHEDULE", "0 2 * * sun"),
                "Compute and log inactive-user statistics",
                self._cleanup_job,
            ),
            JOB_TEST: self._new_status(TEST_CRON_SCHEDULE, "Heartbeat job for verifying the scheduler", self._test_job),
        }

    @staticmethod
    def _new_status(cron: str, description: str, func: Callable[[], Any]) -> dict[str, Any]:
        return {
            "cron": cron,
            "description": description,
            "func": func,
            "status": None,
            "scheduled": False,
            "last_run": None,
            "result": None,
            "error": None,
        }

    # ---------- Lifecycle ----------
    @property
    def enabled(self) -> bool:
        return bool(self.app.config.get("SCHEDULER_ENABLED"))

    def _require_enabled(self) -> None:
        if not self.enabled:
            raise SchedulerDisabled("Scheduler is disabled in this process (SCHEDULER_ENABLED is not set)")

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def _ensure_started(self) -> BackgroundScheduler:
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(daemon=True, timezone=self.timezone)
            self._scheduler.start()
            logger.info("Reminder scheduler started (timezone=%s)", self.timezone)
        return self._scheduler

    def _schedule(self, job_id: str) -> bool:
        job = self._jobs[job_id]
        try:
            trigger = CronTrigger.from_crontab(job["cron"], timezone=self.timezone)
        except ValueError as e:
            logger.error("Invalid cron expression %r for %s job: %s", job["cron"], job_id, e)
            with self._state_lock:
                job.update(status=STATUS_FAILED, scheduled=False, error=f"Invalid cron expression: {job['cron']}")
            return False

        self._ensure_started().add_job(
            self._run,
            trigger=trigger,
            args=[job_id],
            id=job_id,
            name=job["description"],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        with self._state_lock:
            job.update(status=STATUS_SCHEDULED, scheduled=True, error=None)
        logger.info("Scheduled %s job with cron %r", job_id, job["cron"])
        return True

    def start(self) -> None:
        self._schedule(JOB_REMINDER)
        self._schedule(JOB_CLEANUP)
        try:
            self.update_last_run_from_audit()
        except SQLAlchemyError as e:
            # schema may not be migrated yet on first boot
            logger.warning("Could not read last reminder run from audit log: %s", e)

    def stop_job(self, job_id: str) -> None:
        if job_id not in self._jobs:
            raise ValueError(f"Unknown job: {job_id}")
        if self._scheduler is not None and self._scheduler.get_job(job_id) is not None:
            self._scheduler.remove_job(job_id)
        with self._state_lock:
            self._unschedule(self._jobs[job_id])
        logger.info("Stopped %s job", job_id)

    def stop_all(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Reminder scheduler stopped")
        with self._state_lock:
            for job in self._jobs.values():
                self._unschedule(job)

    @staticmethod
    def _unschedule(job: dict[str, Any]) -> None:
        job["scheduled"] = False
        if job["status"] == STATUS_SCHEDULED:
            job["status"] = None

    def restart(self) -> None:
        self._require_enabled()
        self.stop_all()
        self.start()

    def start_test_job(self) -> None:
        self._require_enabled()
        self._schedule(JOB_TEST)

    def stop_test_job(self) -> None:
        self.stop_job(JOB_TEST)

    # ---------- Runs ----------
    def _run(self, job_id: str) -> Any:
        """
        Run one job in this thread.

        Raises JobAlreadyRunning if a run is in progress and JobFailed if the work raised.
        """
        lock = self._run_locks[job_id]
        if not lock.acquire(blocking=False):
            raise JobAlreadyRunning(f"{job_id} job is already running")
        job = self._jobs[job_id]
        try:
            with self._state_lock:
                job.update(status=STATUS_RUNNING, last_run=datetime.utcnow(), error=None)
            logger.info("Running %s job", job_id)
            try:
                with self.app.app_context():
                    result = job["func"]()
            except Exception as e:
                logger.exception("%s job failed", job_id)
                with self._state_lock:
                    job.update(status=STATUS_FAILED, error=str(e), result=None)
                raise JobFailed(f"{job_id} job failed: {e}") from e
            with self._state_lock:
                job.update(status=STATUS_COMPLETED, result=result)
            logger.info("%s job completed", job_id)
            return result
        finally:
            lock.release()

    def trigger_reminder_job(self) -> Any:
        return self._run(JOB_REMINDER)

    def trigger_cleanup_job(self) -> Any:
        return self._run(JOB_CLEANUP)

    def _reminder_job(self) -> dict[str, Any]:
        with session_scope(self.app) as s:
            summary = send_reminders_to_all(s, mailer=self.app.extensions["mailer"])
        # per-user results stay in the audit trail
        return {k: summary[k] for k in ("total_users", "successful", "failed")}

    def _cleanup_job(self) -> dict[str, Any]:
        with session_scope(self.app) as s:
            stats = get_inactive_user_stats(s)
        logger.info(
            "Inactive users: %d total, %d with reminders, %d eligible",
            stats["total_inactive"],
            stats["users_with_reminders"],
            stats["eligible_for_reminder"],
        )
        return stats

    def _test_job(self) -> dict[str, Any]:
        now = datetime.utcnow()
        logger.info("Scheduler test job heartbeat at %s", now.isoformat())
        return {"message": "Test job executed", "time": iso(now)}

    # ---------- Status ----------
    def update_last_run_from_audit(self) -> None:
        """Seed the reminder job's last run from the newest reminder.sent event."""
        with session_scope(self.app) as s:
            last = (
                s.query(AuditLog.timestamp)
                .filter(AuditLog.action == ACTION_REMINDER_SENT)
                .order_by(AuditLog.timestamp.desc())
                .limit(1)
                .scalar()
            )
        if last is not None:
            with self._state_lock:
                job = self._jobs[JOB_REMINDER]
                if job["last_run"] is None or job["last_run"] < last:
                    job["last_run"] = last

    def _next_run(self, job_id: str) -> str | None:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(job_id)
        if job is None or job.next_run_time is None:
            return None
        return job.next_run_time.isoformat()

    def get_status(self) -> dict[str, Any]:
        jobs = {}
        with self._state_lock:
            for job_id, job in self._jobs.items():
                jobs[job_id] = {
                    "status": job["status"],
                    "scheduled": job["scheduled"],
                    "cron": job["cron"],
                    "timezone": self.timezone,
                    "description": job["description"],
                    "last_run": iso(job["last_run"]),
                    "next_run": None,
                    "result": job["result"],
                    "error": job["error"],
                }
        for job_id, data in jobs.items():
            data["next_run"] = self._next_run(job_id)
        return {"enabled": self.enabled, "running": self.running, "timezone": self.timezone, "jobs": jobs}
