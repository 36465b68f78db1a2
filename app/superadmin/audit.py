import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.superadmin.models import AuditLog, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    target_type: str | None = None,
    target_id: str | int | None = None,
    details: dict[str, Any] | str | None = None,
    request_id: str | None = None,
) -> AuditLog:
    """
    Append-only audit event helper.
    Added to the caller's session so it commits (or rolls back) with the change it describes.
    Outside a request (scheduled jobs) there is no request id or client ip.
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    if isinstance(details, dict):
        details_json: str | None = json.dumps(details, sort_keys=True, default=str)
    else:
        details_json = details
    ev = AuditLog(
        request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_email=actor.email if actor else None,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        details=details_json,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev
