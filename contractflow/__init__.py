"""
Contract Management Platform
Flask Application Factory.

Usage:
    from contractflow import create_app
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
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from contractflow.config import basedir, config
from contractflow.middleware.logging_config import configure_logging
from contractflow.middleware.rate_limiter import init_rate_limits
from contractflow.middleware.timing import init_request_timing
from contractflow.models import db
from contractflow.services.event_bus import create_default_bus

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
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
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    # ProductionConfig validates required env vars on instantiation
    app.config.from_object(config_cls())

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

    # ── Event bus (one per app; services receive it explicitly) ─────────
    app.extensions["event_bus"] = create_default_bus()

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from contractflow.models import approval as _approval_models    # noqa: F401
    from contractflow.models import programme as _programme_models  # noqa: F401
    from contractflow.models import project as _project_models      # noqa: F401

    # ── Local SQLite: create tables directly (Postgres uses flask db upgrade) ──
    if (app.config.get("SQLALCHEMY_DATABASE_URI") or "").startswith("sqlite:///") and not app.testing:
        os.makedirs(os.path.join(basedir, "instance"), exist_ok=True)
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from contractflow.blueprints.approval_bp import approval_bp
    from contractflow.blueprints.health_bp import health_bp
    from contractflow.blueprints.programme_bp import programme_bp

    app.register_blueprint(programme_bp)
    app.register_blueprint(approval_bp)
    app.register_blueprint(health_bp)

    init_rate_limits(app, limiter)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "detail": str(e.description)}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app
