import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    jwt_secret: str
    jwt_expires_hours: int
    cors_origins: str
    frontend_url: str

    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    smtp_from: str
    smtp_use_tls: bool

    inactivity_threshold_days: int
    max_reminders: int
    reminder_interval_days: int
    reminder_send_delay_seconds: float

    scheduler_enabled: bool
    scheduler_timezone: str
    reminder_cron_schedule: str
    cleanup_cron_schedule: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    secret_key = _getenv("SECRET_KEY", "change-me")
    env = _getenv("ENV", "development")
    return Settings(
        secret_key=secret_key,
        env=env,
        database_url=_getenv("DATABASE_URL", "sqlite:///superadmin.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        jwt_secret=_getenv("JWT_SECRET", secret_key),
        jwt_expires_hours=_getenv_int("JWT_EXPIRES_HOURS", 24),
        cors_origins=_getenv("CORS_ORIGINS", "*"),
        frontend_url=_getenv("FRONTEND_URL", "http://localhost:3000"),
        smtp_host=_getenv("SMTP_HOST", "smtp.gmail.com"),
        smtp_port=_getenv_int("SMTP_PORT", 587),
        smtp_user=_getenv("SMTP_USER", ""),
        smtp_password=_getenv("SMTP_PASSWORD") or _getenv("SMTP_PASS", ""),
        smtp_from=_getenv("SMTP_FROM", ""),
        smtp_use_tls=_getenv_bool("SMTP_USE_TLS", True),
        inactivity_threshold_days=_getenv_int("INACTIVITY_THRESHOLD_DAYS", 7),
        max_reminders=_getenv_int("MAX_REMINDERS", 3),
        reminder_interval_days=_getenv_int("REMINDER_INTERVAL_DAYS", 1),
        reminder_send_delay_seconds=_getenv_float("REMINDER_SEND_DELAY_SECONDS", 1.0),
        # Off unless asked for: with several gunicorn workers only one may run the jobs.
        scheduler_enabled=_getenv_bool("SCHEDULER_ENABLED", False),
        scheduler_timezone=_getenv("SCHEDULER_TIMEZONE") or _getenv("TZ", "Asia/Kolkata"),
        reminder_cron_schedule=_getenv("REMINDER_CRON_SCHEDULE", "5 23 * * *"),
        # APScheduler numbers weekdays from Monday, so name the day explicitly.
        cleanup_cron_schedule=_getenv("CLEANUP_CRON_SCHEDULE", "0 2 * * sun"),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "JWT_SECRET": s.jwt_secret,
        "JWT_EXPIRES_HOURS": s.jwt_expires_hours,
        "CORS_ORIGINS": s.cors_origins,
        "FRONTEND_URL": s.frontend_url,
        "SMTP_HOST": s.smtp_host,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USER": s.smtp_user,
        "SMTP_PASSWORD": s.smtp_password,
        "SMTP_FROM": s.smtp_from or s.smtp_user,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "INACTIVITY_THRESHOLD_DAYS": s.inactivity_threshold_days,
        "MAX_REMINDERS": s.max_reminders,
        "REMINDER_INTERVAL_DAYS": s.reminder_interval_days,
        "REMINDER_SEND_DELAY_SECONDS": s.reminder_send_delay_seconds,
        "SCHEDULER_ENABLED": s.scheduler_enabled,
        "SCHEDULER_TIMEZONE": s.scheduler_timezone,
        "REMINDER_CRON_SCHEDULE": s.reminder_cron_schedule,
        "CLEANUP_CRON_SCHEDULE": s.cleanup_cron_schedule,
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
