import sys
from pathlib import Path
import os
from datetime import datetime

from werkzeug.security import generate_password_hash
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.superadmin.constants import DEFAULT_ROLE_PERMISSIONS, DEFAULT_SETTINGS, ROLE_SUPERADMIN
from app.superadmin.models import Permission, Role, Setting, User
from app.superadmin.utils import dumps_value

ROLE_DESCRIPTIONS = {
    "superadmin": "Full system access",
    "admin": "Administrative access",
    "user": "Basic user access",
}


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed(s: Session, *, admin_email: str, admin_password: str, admin_name: str = "Super Admin") -> User:
    """
    Seed permissions, roles, the superadmin account and critical settings.
    Idempotent. Does NOT overwrite an existing admin user's password.
    """
    perms: dict[str, Permission] = {}

    def ensure_perm(name: str) -> Permission:
        if name in perms:
            return perms[name]
        p = s.query(Permission).filter(Permission.name == name).one_or_none()
        if not p:
            p = Permission(name=name)
            s.add(p)
        perms[name] = p
        return p

    roles: dict[str, Role] = {}
    for role_name, perm_names in DEFAULT_ROLE_PERMISSIONS.items():
        role = s.query(Role).filter(Role.name == role_name).one_or_none()
        if not role:
            role = Role(name=role_name, description=ROLE_DESCRIPTIONS.get(role_name))
            s.add(role)
        for perm_name in perm_names:
            p = ensure_perm(perm_name)
            if p not in role.permissions:
                role.permissions.append(p)
        roles[role_name] = role

    user = s.query(User).filter(User.email == admin_email).one_or_none()
    if not user:
        user = User(
            name=admin_name,
            email=admin_email,
            password_hash=generate_password_hash(admin_password),
            is_active=True,
            reminder_count=0,
        )
        s.add(user)
    if roles[ROLE_SUPERADMIN] not in user.roles:
        user.roles.append(roles[ROLE_SUPERADMIN])

    now = datetime.utcnow()
    for key, value in DEFAULT_SETTINGS.items():
        if s.get(Setting, key) is None:
            s.add(Setting(key=key, value=dumps_value(value), created_at=now, updated_at=now))

    s.flush()
    return user


def seed_only(*, database_url: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "superadmin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    admin_name = (os.environ.get("ADMIN_NAME") or "Super Admin").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///superadmin.db").strip()

    # Use direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with _session_scope(db_url) as s:
        seed(s, admin_email=admin_email, admin_password=admin_password, admin_name=admin_name)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
