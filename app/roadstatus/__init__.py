import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from app.roadstatus.admin import bp as admin_bp
from app.roadstatus.audit import register_immutability_listeners
from app.roadstatus.auth import bp as auth_bp, load_current_user
from app.roadstatus.config import load_config
from app.roadstatus.db import init_db, teardown_db_session
from app.roadstatus.errors import RoadStatusError
from app.roadstatus.modules.reports.admin import bp as reports_admin_bp
from app.roadstatus.modules.reports.notifications import init_notifications
from app.roadstatus.modules.reports.public import bp as reports_public_bp
from app.roadstatus.routes import bp as routes_bp
from app.roadstatus.security import validate_csrf

# Mutating endpoints reachable without a CSRF token
_CSRF_EXEMPT_ENDPOINTS = {"reports_public.submit_report"}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    level = logging.getLevelName(app.config["LOG_LEVEL"])
    if isinstance(level, int):
        logging.getLogger("app.roadstatus").setLevel(level)
        app.logger.setLevel(level)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)
    register_immutability_listeners()
    init_notifications(app)

    if hasattr(os, "register_at_fork"):
        def _after_fork_child():
            engine = app.extensions.get("sqlalchemy_engine")
            if engine:
                engine.dispose()

        os.register_at_fork(after_in_child=_after_fork_child)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(reports_admin_bp, url_prefix="/admin")
    app.register_blueprint(reports_public_bp, url_prefix="/api/v1")

    app.before_request(load_current_user)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            endpoint = request.endpoint or ""
            if endpoint.startswith("auth.") or endpoint in _CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                return jsonify({"error": "csrf_failed", "message": "CSRF token missing or invalid."}), 400
        return None

    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(RoadStatusError)
    def _err_domain(e: RoadStatusError):
        if e.http_status >= 500:
            app.logger.error("%s (request_id=%s): %s", e.code, getattr(g, "request_id", None), e.message)
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):
        code = (e.name or "error").lower().replace(" ", "_")
        return jsonify({"error": code, "message": e.description}), e.code

    @app.errorhandler(Exception)
    def _err_500(e: Exception):
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")
    return app
