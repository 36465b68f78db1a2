"""Tests for analytics aggregation."""
from datetime import datetime, timedelta

import pytest

from app.superadmin import create_app
from app.superadmin.db import session_scope
from app.superadmin.models import Base, Role, User
from scripts.init_db import seed


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("SCHEDULER_ENABLED", "0")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    now = datetime.utcnow()
    with session_scope(app) as s:
        seed(s, admin_email="admin@example.com", admin_password="password123")
        user_role = s.query(Role).filter(Role.name == "user").one()
        old = User(
            name="Old Timer",
            email="old@example.com",
            password_hash="x",
            is_active=True,
            reminder_count=0,
            created_at=now - timedelta(days=90),
            last_login=now - timedelta(days=60),
        )
        old.roles.append(user_role)
        s.add(old)

    return app.test_client()


def _auth(client):
    r = client.post("/api/v1/auth/login", json={"email": "admin@example.com", "password": "password123"})
    return {"Authorization": f"Bearer {r.json['token']}"}


def test_summary(client):
    headers = _auth(client)
    r = client.get("/api/v1/superadmin/analytics/summary", headers=headers)
    assert r.status_code == 200
    data = r.json
    assert data["total_users"] == 2
    assert data["total_roles"] == 3
    assert data["active_users_last_7_days"] == 1
    assert data["logins_last_7_days"] == 1
    assert data["new_users_last_30_days"] == 1
    assert {x["name"]: x["user_count"] for x in data["role_distribution"]} == {"admin": 0, "superadmin": 1, "user": 1}
    assert data["top_actions"] == [{"action": "auth.login", "count": 1}]

    daily = data["daily_logins"]
    assert len(daily) == 7
    assert daily[-1] == {"date": datetime.utcnow().date().isoformat(), "count": 1}
    assert sum(d["count"] for d in daily) == 1
    assert data["recent_activity"][0]["action"] == "auth.login"


def test_user_analytics(client):
    headers = _auth(client)
    r = client.get("/api/v1/superadmin/analytics/users", headers=headers)
    assert r.status_code == 200
    assert r.json["period"] == 30
    assert r.json["user_registrations"] == [{"date": datetime.utcnow().date().isoformat(), "count": 1}]
    assert [u["email"] for u in r.json["recent_logins"]] == ["admin@example.com"]

    r = client.get("/api/v1/superadmin/analytics/users?period=120", headers=headers)
    assert sum(x["count"] for x in r.json["user_registrations"]) == 2
    assert [u["email"] for u in r.json["recent_logins"]] == ["admin@example.com", "old@example.com"]


def test_activity_analytics(client):
    headers = _auth(client)
    r = client.get("/api/v1/superadmin/analytics/activity", headers=headers)
    assert r.status_code == 200
    assert r.json["activity_by_action"] == [{"action": "auth.login", "count": 1}]
    assert r.json["top_users"][0]["email"] == "admin@example.com"
    hourly = r.json["hourly_activity"]
    assert [h["hour"] for h in hourly] == list(range(24))
    assert sum(h["count"] for h in hourly) == 1


@pytest.mark.parametrize("period", ["0", "-3", "abc", "366"])
def test_invalid_period_is_rejected(client, period):
    headers = _auth(client)
    r = client.get(f"/api/v1/superadmin/analytics/activity?period={period}", headers=headers)
    assert r.status_code == 400
