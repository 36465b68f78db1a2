from __future__ import annotations

import json
import math
import re
from datetime import date, datetime, time, timedelta
from typing import Any

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def iso(dt: datetime | date | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def parse_datetime_arg(raw: str | None, *, end_of_range: bool = False) -> datetime | None:
    """
    Parse an ISO date or datetime query arg.
    A bare date used as the end of a range covers the whole day (returns the next midnight).
    Raises ValueError on malformed input.
    """
    raw = (raw or "").strip()
    if not raw:
        return None
    if len(raw) == 10:
        d = date.fromisoformat(raw)
        if end_of_range:
            return datetime.combine(d + timedelta(days=1), time.min)
        return datetime.combine(d, time.min)
    dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        # stored timestamps are naive UTC
        dt = (dt - dt.utcoffset()).replace(tzinfo=None)  # type: ignore[operator]
    return dt


def parse_int_arg(raw: str | None, default: int, *, minimum: int = 1, maximum: int | None = None) -> int:
    """Lenient int parsing for paging args: bad input falls back to default, then clamps."""
    try:
        value = int((raw or "").strip())
    except ValueError:
        value = default
    value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def pagination_meta(page: int, limit: int, total: int) -> dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def loads_lenient(raw: str | None) -> Any:
    """Return parsed JSON when `raw` is JSON, the raw string otherwise."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def dumps_value(value: Any) -> str:
    """Objects/arrays are JSON-encoded, scalars stored as their string form."""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
