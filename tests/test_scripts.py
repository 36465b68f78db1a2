"""Tests for the release and startup helpers."""
import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session

from app.superadmin.models import Base
from scripts.init_db import seed
from scripts.release import schema_problems, seed_summary
from scripts.start import gunicorn_argv, resolve_port


def test_scheduler_process_runs_a_single_worker():
    argv = gunicorn_argv("8080", {"SCHEDULER_ENABLED": "true", "WEB_CONCURRENCY": "4"})
    assert argv[:4] == ["gunicorn", "app.wsgi:app", "--bind", "0.0.0.0:8080"]
    assert argv[argv.index("--workers") + 1] == "1"
    assert "--preload" not in argv
    assert argv[argv.index("--worker-class") + 1] == "gthread"


def test_web_only_process_scales_workers():
    argv = gunicorn_argv("9000", {"SCHEDULER_ENABLED": "0", "WEB_CONCURRENCY": "4"})
    assert argv[argv.index("--workers") + 1] == "4"
    assert "--preload" in argv

    argv = gunicorn_argv("9000", {})
    assert argv[argv.index("--workers") + 1] == "2"


def test_resolve_port():
    assert resolve_port(None) == "8080"
    assert resolve_port(" 5000 ") == "5000"
    for bad in ("0", "70000", "http"):
        with pytest.raises(ValueError):
            resolve_port(bad)


def test_schema_problems_and_seed_summary(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path/'release.db'}")
    try:
        assert "missing table users" in schema_problems(engine)

        Base.metadata.create_all(bind=engine)
        assert schema_problems(engine) == []

        with Session(engine) as s:
            seed(s, admin_email="admin@example.com", admin_password="password123")
            s.commit()
        assert seed_summary(engine) == {"roles": 3, "users": 1, "settings": 2}

        with engine.begin() as conn:
            conn.execute(text("DROP TABLE settings"))
        assert schema_problems(engine) == ["missing table settings"]
    finally:
        engine.dispose()
