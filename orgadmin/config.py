"""
Organisation Administrator Management
Configuration classes for the Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])

Every value can be overridden through an environment variable of the same
name. Policy switches for the administrator engine live on ``Config`` so
services read them through ``current_app.config``.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'orgadmin_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random per-process key for development; production requires SECRET_KEY
_DEV_SECRET = secrets.token_hex(32)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in ("1", "true", "yes")


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _database_url(fallback):
    """DATABASE_URL with the Heroku-style ``postgres://`` scheme fixed for SQLAlchemy 2."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return fallback
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False
    LOG_LEVEL = os.getenv("LOG_LEVEL")

    # ── Identity (bearer tokens) ─────────────────────────────────────────
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")            # falls back to SECRET_KEY
    JWT_ACCESS_EXPIRES = _env_int("JWT_ACCESS_EXPIRES", 900)  # seconds

    # ── SQLAlchemy ───────────────────────────────────────────────────────
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # ── HTTP surface ─────────────────────────────────────────────────────
    REDIS_URL = os.getenv("REDIS_URL", "memory://")  # Flask-Limiter storage
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    ADMIN_PAGE_SIZE_MAX = _env_int("ADMIN_PAGE_SIZE_MAX", 200)

    # ── Administrator policy ─────────────────────────────────────────────
    AUDIT_RETENTION_DAYS = _env_int("AUDIT_RETENTION_DAYS", 365)
    SUB_ENTITY_SEES_ENTITY_ADMINS = _env_bool("SUB_ENTITY_SEES_ENTITY_ADMINS", True)


class DevelopmentConfig(Config):
    """Local development: SQLite file unless DATABASE_URL is set."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    """pytest: in-memory SQLite, fixed secret, no rate limits."""

    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    SUB_ENTITY_SEES_ENTITY_ADMINS = True


class ProductionConfig(Config):
    """PostgreSQL with a statement timeout; refuses to start half-configured."""

    SQLALCHEMY_DATABASE_URI = _database_url(None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": _env_int("DB_POOL_SIZE", 5),
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
