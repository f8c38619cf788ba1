import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from app.fellowship.auth import bp as auth_bp, load_current_user
from app.fellowship.config import load_config
from app.fellowship.db import init_db, teardown_db_session
from app.fellowship.errors import ServiceError
from app.fellowship.modules.attendance.admin import bp as attendance_bp
from app.fellowship.modules.leadership.admin import bp as leadership_bp
from app.fellowship.modules.profile_edits.admin import bp as members_bp
from app.fellowship.modules.tags.admin import bp as tags_bp
from app.fellowship.notifications import init_notifier
from app.fellowship.routes import bp as routes_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    level = app.config.get("LOG_LEVEL") or "INFO"
    app.logger.setLevel(level)
    logging.getLogger("app.fellowship").setLevel(level)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if app.config.get("NOTIFICATIONS_ENABLED") and not app.config.get("SMTP_HOST"):
            app.logger.warning("NOTIFICATIONS_ENABLED but SMTP_HOST is unset; outbox will fill without delivery.")

    init_db(app)
    init_notifier(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(members_bp, url_prefix="/members")
    app.register_blueprint(attendance_bp)
    app.register_blueprint(tags_bp, url_prefix="/tags")
    app.register_blueprint(leadership_bp, url_prefix="/leadership")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.after_request
    def _attach_request_id(resp):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp

    @app.errorhandler(ServiceError)
    def _err_service(e: ServiceError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.error("%s (request_id=%s)", e.message, getattr(g, "request_id", None))
        else:
            app.logger.info(
                "%s %s -> %s: %s (request_id=%s)",
                request.method,
                request.path,
                e.status_code,
                e.message,
                getattr(g, "request_id", None),
            )
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return jsonify({"error": e.description or e.name}), e.code

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
