"""Tests for inactive-user detection, reminder mails and the reminder scheduler."""
from datetime import datetime, timedelta

import pytest

from app.superadmin import create_app
from app.superadmin.db import session_scope
from app.superadmin.models import AuditLog, Base, User
from app.superadmin.modules.reminders.mailer import Mailer, MailerError
from app.superadmin.modules.reminders.service import (
    ReminderPolicy,
    find_inactive_users,
    last_seen,
    list_all_inactive_users,
)
from scripts.init_db import seed


class FakeMailer(Mailer):
    def __init__(self):
        super().__init__(host="smtp.test", port=587, user="bot", password="pw", sender="bot@example.com", frontend_url="http://app.test")
        self.sent = []
        self.fail_for = set()

    def send(self, to, subject, text, html=None):
        if to in self.fail_for:
            raise MailerError("mailbox unavailable")
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})
        return f"<msg-{len(self.sent)}@test>"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("SCHEDULER_ENABLED", "0")
    monkeypatch.setenv("REMINDER_SEND_DELAY_SECONDS", "0")
    monkeypatch.setenv("SCHEDULER_TIMEZONE", "UTC")

    app = create_app()
    app.extensions["mailer"] = FakeMailer()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    now = datetime.utcnow()
    with session_scope(app) as s:
        seed(s, admin_email="admin@example.com", admin_password="password123")

        def add(email, **kw):
            kw.setdefault("created_at", now - timedelta(days=30))
            kw.setdefault("is_active", True)
            kw.setdefault("reminder_count", 0)
            s.add(User(name=email.split("@")[0].title(), email=email, password_hash="x", **kw))

        # inactive, never reminded
        add("stale@example.com", last_login=now - timedelta(days=20))
        # never logged in, account older than the threshold
        add("ghost@example.com")
        # login is old but recent activity keeps the user active
        add("busy@example.com", last_login=now - timedelta(days=20), last_activity=now - timedelta(hours=2))
        # reminded a few hours ago: inactive but not due yet
        add("recent@example.com", last_login=now - timedelta(days=20), last_reminder_sent=now - timedelta(hours=3), reminder_count=1)
        # reached the cap
        add("capped@example.com", last_login=now - timedelta(days=40), last_reminder_sent=now - timedelta(days=5), reminder_count=3)
        # deactivated accounts are never reminded
        add("disabled@example.com", last_login=now - timedelta(days=20), is_active=False)
        # brand new account
        add("fresh@example.com", created_at=now - timedelta(days=1))

    yield app
    app.extensions["reminder_scheduler"].stop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


def _auth(client, email="admin@example.com"):
    r = client.post("/api/v1/auth/login", json={"email": email, "password": "password123"})
    return {"Authorization": f"Bearer {r.json['token']}"}


def _user(app, email):
    with session_scope(app) as s:
        return s.query(User).filter(User.email == email).one()


POLICY = ReminderPolicy(inactivity_threshold_days=7, max_reminders=3, reminder_interval_days=1, send_delay_seconds=0)


def test_last_seen_prefers_latest_timestamp():
    created = datetime(2024, 1, 1)
    u = User(created_at=created, last_login=None, last_activity=None)
    assert last_seen(u) == created
    u.last_login = datetime(2024, 2, 1)
    u.last_activity = datetime(2024, 3, 1)
    assert last_seen(u) == datetime(2024, 3, 1)


def test_find_eligible_and_all_inactive(app):
    with session_scope(app) as s:
        eligible = [u.email for u in find_inactive_users(s, policy=POLICY)]
        inactive = {u.email for u in list_all_inactive_users(s, policy=POLICY)}
    # oldest activity first: stale logged in 20 days ago, ghost was created 30 days ago
    assert eligible == ["ghost@example.com", "stale@example.com"]
    assert inactive == {"ghost@example.com", "stale@example.com", "recent@example.com", "capped@example.com"}


def test_endpoints_list_inactive_users(client):
    headers = _auth(client)
    r = client.get("/api/v1/superadmin/email-reminders/inactive-users", headers=headers)
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["data"]["count"] == 2

    r = client.get("/api/v1/superadmin/email-reminders/all-inactive-users", headers=headers)
    assert r.json["data"]["count"] == 4
    ghost = next(u for u in r.json["data"]["users"] if u["email"] == "ghost@example.com")
    assert ghost["days_inactive"] >= 29


def test_stats(client):
    headers = _auth(client)
    r = client.get("/api/v1/superadmin/email-reminders/stats", headers=headers)
    data = r.json["data"]
    assert data["total_inactive"] == 4
    assert data["eligible_for_reminder"] == 2
    assert data["users_with_reminders"] == 2
    assert data["reminder_breakdown"] == [
        {"reminder_count": 0, "count": 2},
        {"reminder_count": 1, "count": 1},
        {"reminder_count": 3, "count": 1},
    ]
    assert data["inactivity_threshold_days"] == 7
    assert data["max_reminders"] == 3


def test_send_reminder_to_one_user(app, client):
    headers = _auth(client)
    stale = _user(app, "stale@example.com")
    r = client.post(f"/api/v1/superadmin/email-reminders/send-reminder/{stale.id}", headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["reminder_count"] == 1
    assert r.json["data"]["message_id"] == "<msg-1@test>"

    mail = app.extensions["mailer"].sent[0]
    assert mail["to"] == "stale@example.com"
    assert "http://app.test" in mail["text"]
    assert "Stale" in mail["html"]

    stale = _user(app, "stale@example.com")
    assert stale.reminder_count == 1
    assert stale.last_reminder_sent is not None


def test_send_failure_is_audited_without_counter_change(app, client):
    headers = _auth(client)
    app.extensions["mailer"].fail_for.add("stale@example.com")
    stale = _user(app, "stale@example.com")
    r = client.post(f"/api/v1/superadmin/email-reminders/send-reminder/{stale.id}", headers=headers)
    assert r.status_code == 502
    assert r.json["success"] is False

    assert _user(app, "stale@example.com").reminder_count == 0
    with session_scope(app) as s:
        ev = s.query(AuditLog).filter(AuditLog.action == "reminder.failed").one()
        assert "mailbox unavailable" in ev.details


def test_send_reminders_to_all_continues_past_failures(app, client):
    headers = _auth(client)
    app.extensions["mailer"].fail_for.add("ghost@example.com")
    r = client.post("/api/v1/superadmin/email-reminders/send-reminders", headers=headers)
    assert r.status_code == 200
    data = r.json["data"]
    assert (data["total_users"], data["successful"], data["failed"]) == (2, 1, 1)

    assert _user(app, "stale@example.com").reminder_count == 1
    assert _user(app, "ghost@example.com").reminder_count == 0

    # stale was just reminded, so only ghost is still due
    r = client.get("/api/v1/superadmin/email-reminders/inactive-users", headers=headers)
    assert [u["email"] for u in r.json["data"]["users"]] == ["ghost@example.com"]


def test_mark_active_sends_welcome_back_and_resets(app, client):
    headers = _auth(client)
    recent = _user(app, "recent@example.com")
    r = client.put(f"/api/v1/superadmin/email-reminders/mark-active/{recent.id}", headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["welcome_back_sent"] is True

    assert app.extensions["mailer"].sent[0]["subject"].startswith("Welcome Back")
    recent = _user(app, "recent@example.com")
    assert recent.reminder_count == 0
    assert recent.last_reminder_sent is None
    assert recent.last_activity is not None


def test_login_of_reminded_user_triggers_welcome_back(app, client):
    from werkzeug.security import generate_password_hash

    with session_scope(app) as s:
        u = s.query(User).filter(User.email == "capped@example.com").one()
        u.password_hash = generate_password_hash("password123")

    r = client.post("/api/v1/auth/login", json={"email": "capped@example.com", "password": "password123"})
    assert r.status_code == 200
    assert r.json["user"]["reminder_count"] == 0
    assert [m["to"] for m in app.extensions["mailer"].sent] == ["capped@example.com"]

    with session_scope(app) as s:
        assert s.query(AuditLog).filter(AuditLog.action == "reminder.welcome_back_sent").count() == 1


def test_reset_reminders_requires_superadmin(app, client):
    headers = _auth(client)
    capped = _user(app, "capped@example.com")
    r = client.put(f"/api/v1/superadmin/email-reminders/reset-reminders/{capped.id}", headers=headers)
    assert r.status_code == 200
    assert _user(app, "capped@example.com").reminder_count == 0

    client.post(
        "/api/v1/superadmin/users",
        json={"name": "Ada", "email": "ada@example.com", "password": "password123", "roles": ["admin"]},
        headers=headers,
    )
    admin_headers = _auth(client, "ada@example.com")
    assert client.get("/api/v1/superadmin/email-reminders/stats", headers=admin_headers).status_code == 200
    r = client.put(f"/api/v1/superadmin/email-reminders/reset-reminders/{capped.id}", headers=admin_headers)
    assert r.status_code == 403


def test_trigger_reminder_job_records_status(app, client):
    headers = _auth(client)
    r = client.post("/api/v1/superadmin/email-reminders/trigger-reminder-job", headers=headers)
    assert r.status_code == 200
    assert r.json["data"] == {"total_users": 2, "successful": 2, "failed": 0}

    r = client.get("/api/v1/superadmin/email-reminders/cron-status", headers=headers)
    job = r.json["data"]["jobs"]["reminder"]
    assert job["status"] == "completed"
    assert job["last_run"] is not None
    assert job["cron"] == "5 23 * * *"
    assert r.json["data"]["running"] is False

    with session_scope(app) as s:
        sent = s.query(AuditLog).filter(AuditLog.action == "reminder.sent").all()
        assert len(sent) == 2
        assert all(ev.actor_user_id is None for ev in sent)


def test_trigger_cleanup_job(client):
    headers = _auth(client)
    r = client.post("/api/v1/superadmin/email-reminders/trigger-cleanup-job", headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["total_inactive"] == 4


def test_scheduler_start_restart_and_stop(app, client):
    headers = _auth(client)
    scheduler = app.extensions["reminder_scheduler"]
    app.config["SCHEDULER_ENABLED"] = True

    r = client.post("/api/v1/superadmin/email-reminders/restart-cron", headers=headers)
    assert r.status_code == 200
    jobs = r.json["data"]["jobs"]
    assert r.json["data"]["running"] is True
    assert jobs["reminder"]["status"] == "scheduled"
    assert jobs["reminder"]["next_run"] is not None
    assert jobs["cleanup"]["cron"] == "0 2 * * sun"

    r = client.post("/api/v1/superadmin/email-reminders/start-test-job", headers=headers)
    assert r.json["data"]["jobs"]["test"]["scheduled"] is True
    r = client.post("/api/v1/superadmin/email-reminders/stop-test-job", headers=headers)
    assert r.json["data"]["jobs"]["test"]["scheduled"] is False
    assert r.json["data"]["jobs"]["test"]["status"] is None

    r = client.post("/api/v1/superadmin/email-reminders/stop-cron", headers=headers)
    assert r.json["data"]["running"] is False
    assert scheduler.get_status()["jobs"]["reminder"]["next_run"] is None
    assert scheduler.get_status()["jobs"]["reminder"]["status"] is None


def test_start_restores_last_run_from_audit(app):
    with session_scope(app) as s:
        s.add(AuditLog(action="reminder.sent", target_type="User", target_id="1", timestamp=datetime(2024, 5, 1, 23, 5)))

    scheduler = app.extensions["reminder_scheduler"]
    scheduler.start()
    assert scheduler.get_status()["jobs"]["reminder"]["last_run"] == "2024-05-01T23:05:00"


def test_invalid_cron_expression_marks_job_failed(app):
    app.config["REMINDER_CRON_SCHEDULE"] = "not a cron"
    from app.superadmin.modules.reminders.scheduler import ReminderScheduler

    scheduler = ReminderScheduler(app)
    try:
        scheduler.start()
        status = scheduler.get_status()["jobs"]
        assert status["reminder"]["status"] == "failed"
        assert "Invalid cron expression" in status["reminder"]["error"]
        assert status["cleanup"]["status"] == "scheduled"
    finally:
        scheduler.stop_all()


def test_scheduler_controls_refuse_when_disabled_in_this_process(app, client):
    headers = _auth(client)
    scheduler = app.extensions["reminder_scheduler"]

    r = client.post("/api/v1/superadmin/email-reminders/restart-cron", headers=headers)
    assert r.status_code == 409
    assert r.json["success"] is False
    assert r.json["data"]["enabled"] is False
    assert r.json["data"]["running"] is False

    r = client.post("/api/v1/superadmin/email-reminders/start-test-job", headers=headers)
    assert r.status_code == 409
    assert scheduler.running is False
    assert scheduler.get_status()["jobs"]["test"]["scheduled"] is False

    # manual runs stay available without a live scheduler
    r = client.post("/api/v1/superadmin/email-reminders/trigger-cleanup-job", headers=headers)
    assert r.status_code == 200


def test_template_error_is_audited_as_failed_send(app, client):
    from jinja2 import DictLoader

    headers = _auth(client)
    app.jinja_env.loader = DictLoader({})
    stale = _user(app, "stale@example.com")

    r = client.post(f"/api/v1/superadmin/email-reminders/send-reminder/{stale.id}", headers=headers)
    assert r.status_code == 502
    assert "email/reminder.txt" in r.json["message"]
    assert app.extensions["mailer"].sent == []

    assert _user(app, "stale@example.com").reminder_count == 0
    with session_scope(app) as s:
        ev = s.query(AuditLog).filter(AuditLog.action == "reminder.failed").one()
        assert ev.target_id == str(stale.id)


def test_failed_manual_job_returns_error_envelope(app, client, monkeypatch):
    def broken_stats(s):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr("app.superadmin.modules.reminders.scheduler.get_inactive_user_stats", broken_stats)
    headers = _auth(client)

    r = client.post("/api/v1/superadmin/email-reminders/trigger-cleanup-job", headers=headers)
    assert r.status_code == 500
    assert r.json["success"] is False
    assert "database unavailable" in r.json["message"]
    assert r.json["data"]["status"] == "failed"
    assert r.json["data"]["error"] == "database unavailable"
