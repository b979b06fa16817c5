"""
Organisation Administrator Management
Flask Application Factory.

Usage:
    from orgadmin import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")  # explicit config

Wiring order: logging, extensions, identity middleware, models, blueprints,
CLI jobs, app-level error handlers, rate limits (which need the registered
blueprints).
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event

from orgadmin.config import config
from orgadmin.middleware.jwt_auth import init_jwt_middleware
from orgadmin.middleware.logging_config import configure_logging
from orgadmin.middleware.rate_limiter import init_rate_limits
from orgadmin.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ships with foreign keys off; parent pointers rely on them."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, else "development".

    Returns:
        Configured Flask application instance.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    # ProductionConfig validates its environment on instantiation
    app.config.from_object(cfg() if config_name == "production" else cfg)

    configure_logging(app)
    _init_extensions(app)
    init_jwt_middleware(app)
    _init_schema(app)
    _register_blueprints(app)
    _register_cli(app)
    _register_app_handlers(app)
    init_rate_limits(app, limiter)

    logger.debug("orgadmin app created (config=%s)", config_name)
    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _init_schema(app):
    """Import every model module, then create missing tables."""
    from orgadmin.models import admin as _admin_models                # noqa: F401
    from orgadmin.models import audit as _audit_models                # noqa: F401
    from orgadmin.models import organisation as _organisation_models  # noqa: F401

    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            # Migrations own the schema in deployed environments
            app.logger.warning("db.create_all() failed: %s", e)


def _register_blueprints(app):
    from orgadmin.blueprints.admins_bp import admins_bp
    from orgadmin.blueprints.audit_bp import audit_bp

    app.register_blueprint(admins_bp)
    app.register_blueprint(audit_bp)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "orgadmin"}


def _register_cli(app):
    @app.cli.command("audit-cleanup")
    def audit_cleanup_cmd():
        """Remove audit log entries older than AUDIT_RETENTION_DAYS."""
        from orgadmin.services.audit_service import cleanup_old_logs

        removed = cleanup_old_logs(app.config["AUDIT_RETENTION_DAYS"])
        logger.info("Removed %s audit log entries.", removed)

    @app.cli.command("expire-scopes")
    def expire_scopes_cmd():
        """Deactivate scope assignments whose expiry has passed."""
        from orgadmin.services.scope_service import expire_scope_assignments

        result = expire_scope_assignments()
        logger.info("Expired %s scope assignments.", result["expired_assignments"])


def _register_app_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429
