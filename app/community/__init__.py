import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from sqlalchemy import inspect as sa_inspect

from app.community.config import load_config
from app.community.db import dispose_engine, init_db, teardown_db_session
from app.community.errors import register_error_handlers
from app.community.utils import BoundedIntConverter
from app.community.auth import bp as auth_bp, load_current_user
from app.community.routes import bp as routes_bp
from app.community.admin import bp as admin_bp
from app.community.modules.scopes.api import bp as scopes_bp
from app.community.modules.posts.api import bp as posts_bp
from app.community.modules.events.api import bp as events_bp
from app.community.modules.schedules.api import bp as schedules_bp
from app.community.modules.teachers.api import bp as teachers_bp
from app.community.modules.profiles.api import bp as profiles_bp
from app.community.modules.study_sources.api import bp as study_sources_bp

# Tables the API cannot serve without; checked once against the live schema.
REQUIRED_TABLES = (
    "users",
    "scopes",
    "digital_keys",
    "posts",
    "events",
    "schedules",
    "teachers",
    "peer_ratings",
    "study_sources",
    "admin_student_ids",
    "settings",
    "audit_events",
)


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    app.logger.setLevel(level)
    logging.getLogger("app.community").setLevel(level)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False
    app.url_map.converters["int"] = BoundedIntConverter
    _configure_logging(app)

    from app.community.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Auth endpoints (login/register/visitor/logout/reset) establish the session themselves.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid."}), 400
        return None

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

    if hasattr(os, "register_at_fork"):
        os.register_at_fork(after_in_child=lambda: dispose_engine(app))

    # Storage config check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    register_error_handlers(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(scopes_bp, url_prefix="/api")
    app.register_blueprint(posts_bp, url_prefix="/api")
    app.register_blueprint(events_bp, url_prefix="/api")
    app.register_blueprint(schedules_bp, url_prefix="/api")
    app.register_blueprint(teachers_bp, url_prefix="/api")
    app.register_blueprint(profiles_bp, url_prefix="/api")
    app.register_blueprint(study_sources_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            g.current_user = None
            g.is_visitor = False
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect a database that was never migrated.
    app.config.setdefault("_schema_health_checked", False)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> list[str]:
        engine = app.extensions.get("sqlalchemy_engine")
        if engine is None:
            raise RuntimeError("sqlalchemy_engine not initialized")
        insp = sa_inspect(engine)
        missing = [t for t in REQUIRED_TABLES if not insp.has_table(t)]
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
        return missing

    @app.before_request
    def _schema_health_guardrail():
        if not request.path.startswith("/api"):
            return None
        if not app.config.get("_schema_health_checked") or app.config.get("_schema_health_missing"):
            app.config["_schema_health_missing"] = _run_schema_health_check()
            app.config["_schema_health_checked"] = True
        missing = app.config.get("_schema_health_missing") or []
        if missing:
            return jsonify({"error": "Database schema is out of date.", "missing": missing}), 503
        return None

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")
    return app
