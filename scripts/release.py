"""
Release phase: migrate, verify the console schema, seed.

- DATABASE_URL is required; sqlite is refused when ENV is production.
- After `alembic upgrade head` every table the models declare must exist, with the
  reminder bookkeeping columns on users. A partial schema would otherwise only fail
  later, inside a scheduler run.
- Seeding is idempotent and never overwrites an existing admin password.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

REMINDER_COLUMNS = ("last_login", "last_activity", "last_reminder_sent", "reminder_count")


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise RuntimeError(f"Missing required environment variable {name}.")
    return v


def schema_problems(engine) -> list[str]:
    """Tables or reminder columns the models expect but the database lacks."""
    from sqlalchemy import inspect

    from app.superadmin.models import Base

    insp = inspect(engine)
    present = set(insp.get_table_names())
    problems = [f"missing table {name}" for name in sorted(Base.metadata.tables) if name not in present]
    if "users" in present:
        columns = {c["name"] for c in insp.get_columns("users")}
        problems += [f"missing column users.{c}" for c in REMINDER_COLUMNS if c not in columns]
    return problems


def seed_summary(engine) -> dict[str, int]:
    from sqlalchemy import func, select

    from app.superadmin.models import Role, Setting, User

    with engine.connect() as conn:
        return {
            "roles": conn.execute(select(func.count()).select_from(Role)).scalar_one(),
            "users": conn.execute(select(func.count()).select_from(User)).scalar_one(),
            "settings": conn.execute(select(func.count()).select_from(Setting)).scalar_one(),
        }


def run_release() -> None:
    db_url = _require_env("DATABASE_URL")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")

    print(f"=== SuperAdmin release (ENV={env or '(unset)'}) ===", flush=True)

    from alembic import command
    from alembic.config import Config
    from sqlalchemy import create_engine

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")
    print("Migrations at head.", flush=True)

    engine = create_engine(db_url, pool_pre_ping=True)
    try:
        problems = schema_problems(engine)
        if problems:
            raise RuntimeError("Schema incomplete after migrations: " + "; ".join(problems))

        from scripts import init_db

        init_db.seed_only(database_url=db_url)
        counts = seed_summary(engine)
    finally:
        engine.dispose()
    print(f"Seed complete: {counts['roles']} roles, {counts['users']} users, {counts['settings']} settings.", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
