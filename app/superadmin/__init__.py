import logging
import os

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from app.superadmin.auth import bp as auth_bp, load_current_user
from app.superadmin.config import load_config
from app.superadmin.db import init_db, teardown_db_session
from app.superadmin.modules.analytics.admin import bp as analytics_bp
from app.superadmin.modules.audit_logs.admin import bp as audit_logs_bp
from app.superadmin.modules.reminders.admin import bp as reminders_bp
from app.superadmin.modules.reminders.mailer import Mailer
from app.superadmin.modules.reminders.scheduler import ReminderScheduler
from app.superadmin.modules.roles.admin import bp as roles_bp
from app.superadmin.modules.system_settings.admin import bp as settings_bp
from app.superadmin.modules.users.admin import bp as users_bp
from app.superadmin.routes import bp as routes_bp

API_PREFIX = "/api/v1"
SUPERADMIN_PREFIX = f"{API_PREFIX}/superadmin"


def _check_production_config(app: Flask) -> None:
    env = (app.config.get("ENV") or "").strip().lower()
    if env not in ("prod", "production"):
        return
    if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
        raise RuntimeError("DATABASE_URL is required in production.")
    if str(app.config["DATABASE_URL"]).startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
    if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
        raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
    if str(app.config.get("JWT_SECRET") or "") in ("", "change-me"):
        raise RuntimeError("JWT_SECRET must be set to a strong value in production (not default).")
    if app.config.get("CORS_ORIGINS") == "*":
        app.logger.warning("CORS_ORIGINS is '*' in production; restrict it to the frontend origin.")


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 403:
            app.logger.warning(
                "Forbidden: missing_role=%s request_id=%s",
                getattr(g, "missing_role", None),
                getattr(g, "request_id", None),
            )
        return jsonify({"message": e.description or e.name}), e.code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"message": "Internal server error"}), 500


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates")
    app.config.from_mapping(load_config())
    app.json.sort_keys = False
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    _check_production_config(app)

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    origins = [o.strip() for o in str(app.config.get("CORS_ORIGINS") or "*").split(",") if o.strip()]
    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=False,
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix=f"{API_PREFIX}/auth")
    app.register_blueprint(users_bp, url_prefix=f"{SUPERADMIN_PREFIX}/users")
    app.register_blueprint(roles_bp, url_prefix=f"{SUPERADMIN_PREFIX}/roles")
    app.register_blueprint(audit_logs_bp, url_prefix=f"{SUPERADMIN_PREFIX}/audit-logs")
    app.register_blueprint(analytics_bp, url_prefix=f"{SUPERADMIN_PREFIX}/analytics")
    app.register_blueprint(settings_bp, url_prefix=f"{SUPERADMIN_PREFIX}/settings")
    app.register_blueprint(reminders_bp, url_prefix=f"{SUPERADMIN_PREFIX}/email-reminders")

    def _load_user_wrapper():
        if request.path.startswith(("/api/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    _register_error_handlers(app)

    app.extensions["mailer"] = Mailer.from_app(app)
    if not app.extensions["mailer"].is_configured:
        app.logger.warning("SMTP not configured (SMTP_USER/SMTP_PASSWORD); reminder emails will fail.")

    scheduler = ReminderScheduler(app)
    app.extensions["reminder_scheduler"] = scheduler
    if app.config.get("SCHEDULER_ENABLED"):
        scheduler.start()
    else:
        app.logger.info("Reminder scheduler disabled (SCHEDULER_ENABLED not set)")

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")
    return app
