from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.superadmin.db import db_session
from app.superadmin.modules.system_settings.service import (
    create_setting,
    delete_setting,
    get_feature_toggles,
    get_setting,
    list_settings,
    setting_to_dict,
    update_feature_toggles,
    upsert_setting,
)
from app.superadmin.rbac import require_superadmin

bp = Blueprint("system_settings", __name__)


# Registered before "/<key>" so the literal path wins.
@bp.get("/feature-toggles")
@require_superadmin
def feature_toggles_get():
    return jsonify({"feature_toggles": get_feature_toggles(db_session())})


@bp.put("/feature-toggles")
@require_superadmin
def feature_toggles_put():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    try:
        toggles = update_feature_toggles(s, payload.get("feature_toggles"), g.current_user)
    except ValueError as e:
        s.rollback()
        return jsonify({"message": str(e)}), 400
    s.commit()
    return jsonify({"message": "Feature toggles updated successfully", "feature_toggles": toggles})


@bp.get("")
@require_superadmin
def settings_list():
    return jsonify({"settings": [setting_to_dict(x) for x in list_settings(db_session())]})


@bp.get("/<key>")
@require_superadmin
def setting_detail(key: str):
    setting = get_setting(db_session(), key)
    if not setting:
        abort(404, description="Setting not found")
    return jsonify({"setting": setting_to_dict(setting)})


@bp.post("")
@require_superadmin
def setting_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    try:
        setting = create_setting(s, payload.get("key") or "", payload.get("value"), g.current_user)
    except ValueError as e:
        s.rollback()
        return jsonify({"message": str(e)}), 400
    s.commit()
    return jsonify({"message": "Setting created successfully", "setting": setting_to_dict(setting)}), 201


@bp.put("/<key>")
@require_superadmin
def setting_upsert(key: str):
    s = db_session()
    payload = request.get_json(silent=True) or {}
    try:
        setting, created = upsert_setting(s, key, payload.get("value"), g.current_user)
    except ValueError as e:
        s.rollback()
        return jsonify({"message": str(e)}), 400
    s.commit()
    message = "Setting created successfully" if created else "Setting updated successfully"
    return jsonify({"message": message, "setting": setting_to_dict(setting)})


@bp.delete("/<key>")
@require_superadmin
def setting_delete(key: str):
    s = db_session()
    setting = get_setting(s, key)
    if not setting:
        abort(404, description="Setting not found")
    try:
        delete_setting(s, setting, g.current_user)
    except ValueError as e:
        s.rollback()
        return jsonify({"message": str(e)}), 400
    s.commit()
    return jsonify({"message": "Setting deleted successfully"})
