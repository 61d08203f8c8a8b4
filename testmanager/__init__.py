"""
Playwright Test Manager
Flask Application Factory.

Usage:
    from testmanager import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from testmanager.auth import init_auth
from testmanager.config import config
from testmanager.middleware.jwt_auth import init_jwt_middleware
from testmanager.middleware.logging_config import configure_logging
from testmanager.middleware.rate_limiter import init_rate_limits
from testmanager.middleware.timing import init_request_timing
from testmanager.models import db

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import engine as _sa_engine, event as _sa_event


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request hooks (order matters: JWT before the API-key gate) ──────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_auth(app)
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from testmanager.models import auth as _auth_models         # noqa: F401
    from testmanager.models import project as _project_models   # noqa: F401
    from testmanager.models import release as _release_models   # noqa: F401
    from testmanager.models import run as _run_models           # noqa: F401
    from testmanager.models import setting as _setting_models   # noqa: F401
    from testmanager.models import testing as _testing_models   # noqa: F401

    with app.app_context():
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in app.config[
            "SQLALCHEMY_DATABASE_URI"
        ]:
            os.makedirs(app.instance_path, exist_ok=True)
        try:
            db.create_all()
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from testmanager.blueprints import register_blueprints
    register_blueprints(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-roles")
    def seed_roles_cmd():
        """Seed the default permission catalogue and roles."""
        from testmanager.services.permission_service import seed_default_roles
        created = seed_default_roles()
        db.session.commit()
        logger.info("Seeded roles: %s", created)

    @app.cli.command("seed-tags")
    def seed_tags_cmd():
        """Seed the default global tags."""
        from testmanager.services.user_service import seed_tags
        count = seed_tags()
        db.session.commit()
        logger.info("Seeded %s new global tags.", count)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Playwright Test Manager"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return {"error": "Not found", "path": request.path}, 404
        return {"error": "Not found"}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
