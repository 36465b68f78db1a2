from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.superadmin.audit import record_event
from app.superadmin.constants import (
    ACTION_FEATURE_TOGGLES_UPDATE,
    ACTION_SETTING_CREATE,
    ACTION_SETTING_DELETE,
    ACTION_SETTING_UPDATE,
    CRITICAL_SETTING_KEYS,
    FEATURE_TOGGLES_KEY,
    TARGET_SETTING,
)
from app.superadmin.models import Setting, User
from app.superadmin.utils import dumps_value, iso, loads_lenient

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def setting_to_dict(setting: Setting) -> dict[str, Any]:
    return {
        "key": setting.key,
        "value": loads_lenient(setting.value),
        "created_at": iso(setting.created_at),
        "updated_at": iso(setting.updated_at),
    }


def list_settings(s: "Session") -> list[Setting]:
    return s.query(Setting).order_by(Setting.key.asc()).all()


def get_setting(s: "Session", key: str) -> Setting | None:
    return s.get(Setting, key)


def create_setting(s: "Session", key: str, value: Any, actor: User | None) -> Setting:
    if key is not None and not isinstance(key, str):
        raise ValueError("Key must be a string")
    key = (key or "").strip()
    if not key:
        raise ValueError("Key is required")
    if value is None:
        raise ValueError("Value is required")
    if get_setting(s, key) is not None:
        raise ValueError("Setting with this key already exists")

    now = datetime.utcnow()
    setting = Setting(key=key, value=dumps_value(value), created_at=now, updated_at=now)
    s.add(setting)
    s.flush()
    record_event(s, actor=actor, action=ACTION_SETTING_CREATE, target_type=TARGET_SETTING, target_id=key, details={"key": key, "value": value})
    return setting


def upsert_setting(s: "Session", key: str, value: Any, actor: User | None) -> tuple[Setting, bool]:
    """Returns (setting, created)."""
    if value is None:
        raise ValueError("Value is required")
    setting = get_setting(s, key)
    if setting is None:
        return create_setting(s, key, value, actor), True

    old = loads_lenient(setting.value)
    setting.value = dumps_value(value)
    setting.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action=ACTION_SETTING_UPDATE,
        target_type=TARGET_SETTING,
        target_id=key,
        details={"key": key, "old_value": old, "new_value": value},
    )
    return setting, False


def delete_setting(s: "Session", setting: Setting, actor: User | None) -> None:
    if setting.key in CRITICAL_SETTING_KEYS:
        raise ValueError("Cannot delete critical system setting")
    key, old = setting.key, loads_lenient(setting.value)
    s.delete(setting)
    s.flush()
    record_event(s, actor=actor, action=ACTION_SETTING_DELETE, target_type=TARGET_SETTING, target_id=key, details={"key": key, "value": old})


def get_feature_toggles(s: "Session") -> dict[str, Any]:
    setting = get_setting(s, FEATURE_TOGGLES_KEY)
    value = loads_lenient(setting.value) if setting else None
    return value if isinstance(value, dict) else {}


def update_feature_toggles(s: "Session", toggles: Any, actor: User | None) -> dict[str, Any]:
    if not isinstance(toggles, dict):
        raise ValueError("Feature toggles must be an object")
    old = get_feature_toggles(s)
    now = datetime.utcnow()
    setting = get_setting(s, FEATURE_TOGGLES_KEY)
    if setting is None:
        setting = Setting(key=FEATURE_TOGGLES_KEY, value=dumps_value(toggles), created_at=now, updated_at=now)
        s.add(setting)
    else:
        setting.value = dumps_value(toggles)
        setting.updated_at = now
    record_event(
        s,
        actor=actor,
        action=ACTION_FEATURE_TOGGLES_UPDATE,
        target_type=TARGET_SETTING,
        target_id=FEATURE_TOGGLES_KEY,
        details={"old_toggles": old, "new_toggles": toggles},
    )
    return toggles
