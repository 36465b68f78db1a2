"""Tests for user management."""
import pytest

from app.superadmin import create_app
from app.superadmin.db import session_scope
from app.superadmin.models import AuditLog, Base, User
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

    with session_scope(app) as s:
        seed(s, admin_email="admin@example.com", admin_password="password123")

    return app.test_client()


def _auth(client):
    r = client.post("/api/v1/auth/login", json={"email": "admin@example.com", "password": "password123"})
    return {"Authorization": f"Bearer {r.json['token']}"}


def _create(client, headers, **overrides):
    payload = {"name": "Jane Doe", "email": "jane@example.com", "password": "password123", "roles": ["user"]}
    payload.update(overrides)
    return client.post("/api/v1/superadmin/users", json=payload, headers=headers)


def test_create_user_and_audit(client):
    headers = _auth(client)
    r = _create(client, headers, email="Jane@Example.com")
    assert r.status_code == 201
    user = r.json["user"]
    assert user["email"] == "jane@example.com"
    assert user["roles"] == ["user"]
    assert user["reminder_count"] == 0

    with session_scope(client.application) as s:
        ev = s.query(AuditLog).filter(AuditLog.action == "user.create").one()
        assert ev.actor_email == "admin@example.com"
        assert ev.target_type == "User"
        assert ev.target_id == str(user["id"])


def test_create_user_validation(client):
    headers = _auth(client)
    r = client.post("/api/v1/superadmin/users", json={"email": "not-an-email"}, headers=headers)
    assert r.status_code == 400
    assert "Name is required." in r.json["errors"]
    assert "Invalid email format." in r.json["errors"]

    r = _create(client, headers, password="short")
    assert r.status_code == 400

    assert _create(client, headers).status_code == 201
    r = _create(client, headers)
    assert r.status_code == 400
    assert r.json["message"] == "User with this email already exists."


def test_list_users_search_filter_and_paging(client):
    headers = _auth(client)
    _create(client, headers, name="Alice", email="alice@example.com")
    _create(client, headers, name="Bob", email="bob@example.com", roles=["admin"])
    _create(client, headers, name="Carol", email="carol@example.com")

    r = client.get("/api/v1/superadmin/users?search=ali", headers=headers)
    assert [u["email"] for u in r.json["users"]] == ["alice@example.com"]

    r = client.get("/api/v1/superadmin/users?role=admin", headers=headers)
    assert [u["email"] for u in r.json["users"]] == ["bob@example.com"]

    r = client.get("/api/v1/superadmin/users?sort_by=email&sort_order=asc&limit=2&page=2", headers=headers)
    assert r.status_code == 200
    assert r.json["pagination"] == {"page": 2, "limit": 2, "total": 4, "pages": 2}
    assert [u["email"] for u in r.json["users"]] == ["bob@example.com", "carol@example.com"]

    r = client.get("/api/v1/superadmin/users?sort_by=password_hash", headers=headers)
    assert r.status_code == 400


def test_user_detail_includes_recent_activity(client):
    headers = _auth(client)
    with session_scope(client.application) as s:
        admin_id = s.query(User).filter(User.email == "admin@example.com").one().id

    r = client.get(f"/api/v1/superadmin/users/{admin_id}", headers=headers)
    assert r.status_code == 200
    assert r.json["user"]["audit_logs"][0]["action"] == "auth.login"

    r = client.get("/api/v1/superadmin/users/9999", headers=headers)
    assert r.status_code == 404
    assert r.json["message"] == "User not found"


def test_update_user(client):
    headers = _auth(client)
    user_id = _create(client, headers).json["user"]["id"]

    r = client.put(
        f"/api/v1/superadmin/users/{user_id}",
        json={"name": "Jane Smith", "roles": ["admin", "user"], "is_active": False},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json["user"]["name"] == "Jane Smith"
    assert r.json["user"]["roles"] == ["admin", "user"]
    assert r.json["user"]["is_active"] is False

    r = client.put(f"/api/v1/superadmin/users/{user_id}", json={"is_active": "no"}, headers=headers)
    assert r.status_code == 400


def test_cannot_deactivate_or_delete_self(client):
    headers = _auth(client)
    with session_scope(client.application) as s:
        admin_id = s.query(User).filter(User.email == "admin@example.com").one().id

    r = client.put(f"/api/v1/superadmin/users/{admin_id}", json={"is_active": False}, headers=headers)
    assert r.status_code == 400

    r = client.put(f"/api/v1/superadmin/users/{admin_id}", json={"roles": ["user"]}, headers=headers)
    assert r.status_code == 400
    assert r.json["message"] == "Cannot remove the last superadmin role"

    r = client.delete(f"/api/v1/superadmin/users/{admin_id}", headers=headers)
    assert r.status_code == 400


def test_delete_user(client):
    headers = _auth(client)
    user_id = _create(client, headers).json["user"]["id"]

    r = client.delete(f"/api/v1/superadmin/users/{user_id}", headers=headers)
    assert r.status_code == 200

    r = client.get(f"/api/v1/superadmin/users/{user_id}", headers=headers)
    assert r.status_code == 404

    with session_scope(client.application) as s:
        ev = s.query(AuditLog).filter(AuditLog.action == "user.delete").one()
        assert ev.target_id == str(user_id)


@pytest.mark.parametrize("field, value", [("name", 123), ("email", ["jane@example.com"]), ("password", 12345678)])
def test_non_string_fields_are_rejected(client, field, value):
    headers = _auth(client)
    r = _create(client, headers, **{field: value})
    assert r.status_code == 400
    assert r.json["message"] == f"{field.capitalize()} must be a string."

    with session_scope(client.application) as s:
        admin_id = s.query(User.id).filter(User.email == "admin@example.com").scalar()
    r = client.put(f"/api/v1/superadmin/users/{admin_id}", json={field: value}, headers=headers)
    assert r.status_code == 400
