from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from flask import current_app

from app.superadmin.models import User

_ALGORITHM = "HS256"


class TokenError(Exception):
    pass


def issue_token(user: User, role_names: list[str]) -> str:
    """Signed bearer token for the SPA. Stateless: logout only discards it client-side."""
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "roles": role_names,
        "iat": now,
        "exp": now + timedelta(hours=int(current_app.config["JWT_EXPIRES_HOURS"])),
    }
    return jwt.encode(payload, current_app.config["JWT_SECRET"], algorithm=_ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, current_app.config["JWT_SECRET"], algorithms=[_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e


def bearer_token(auth_header: str | None) -> str | None:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
