"""
Central constants for the SuperAdmin console.
"""
from __future__ import annotations

# Roles
ROLE_SUPERADMIN = "superadmin"
ROLE_ADMIN = "admin"
ROLE_USER = "user"
ADMIN_ROLES = (ROLE_SUPERADMIN, ROLE_ADMIN)

# Seeded permissions per role
DEFAULT_ROLE_PERMISSIONS = {
    ROLE_SUPERADMIN: ("all",),
    ROLE_ADMIN: ("read", "write"),
    ROLE_USER: ("read",),
}

# Settings that must always exist
CRITICAL_SETTING_KEYS = frozenset({"feature_toggles", "system_config"})
FEATURE_TOGGLES_KEY = "feature_toggles"

DEFAULT_SETTINGS = {
    "feature_toggles": {"new_ui": True, "beta_features": False},
    "system_config": {"maintenance_mode": False, "max_users": 1000},
}

# Audit actions
ACTION_LOGIN = "auth.login"
ACTION_LOGIN_FAILED = "auth.login_failed"
ACTION_LOGOUT = "auth.logout"

ACTION_USER_CREATE = "user.create"
ACTION_USER_UPDATE = "user.update"
ACTION_USER_DELETE = "user.delete"

ACTION_ROLE_CREATE = "role.create"
ACTION_ROLE_UPDATE = "role.update"
ACTION_ROLE_DELETE = "role.delete"
ACTION_ROLE_ASSIGN = "role.assign"
ACTION_ROLE_UNASSIGN = "role.unassign"

ACTION_SETTING_CREATE = "setting.create"
ACTION_SETTING_UPDATE = "setting.update"
ACTION_SETTING_DELETE = "setting.delete"
ACTION_FEATURE_TOGGLES_UPDATE = "setting.feature_toggles_update"

ACTION_REMINDER_SENT = "reminder.sent"
ACTION_REMINDER_FAILED = "reminder.failed"
ACTION_REMINDER_RESET = "reminder.reset"
ACTION_WELCOME_BACK_SENT = "reminder.welcome_back_sent"

# Audit target types
TARGET_USER = "User"
TARGET_ROLE = "Role"
TARGET_USER_ROLE = "UserRole"
TARGET_SETTING = "Setting"
