"""
Contract Management Platform
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import json
import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'contractflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _json_env(name, default):
    raw = os.getenv(name)
    if not raw:
        return default
    return json.loads(raw)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # Redis (rate-limiter storage)
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Approval routing defaults (used when a project has no policy row) ──
    APPROVAL_T1 = float(os.getenv("APPROVAL_T1", "1000"))
    APPROVAL_T2 = float(os.getenv("APPROVAL_T2", "5000"))
    APPROVAL_T3 = float(os.getenv("APPROVAL_T3", "25000"))

    # ── Impact analysis ──────────────────────────────────────────────────
    # NEC4 clause family -> £ per day of delay
    IMPACT_CLAUSE_DAY_RATES = _json_env(
        "IMPACT_CLAUSE_DAY_RATES", {"60.1(12)": 2000, "60.1(1)": 5000},
    )
    IMPACT_CRITICAL_KEYWORDS = _json_env(
        "IMPACT_CRITICAL_KEYWORDS", ["critical", "foundation", "structure"],
    )
    IMPACT_CONFIDENCE = float(os.getenv("IMPACT_CONFIDENCE", "0.8"))

    # ── Programme import limits ──────────────────────────────────────────
    PROGRAMME_MAX_FILE_BYTES = int(os.getenv("PROGRAMME_MAX_FILE_BYTES", str(20 * 1024 * 1024)))
    PROGRAMME_MAX_TASKS = int(os.getenv("PROGRAMME_MAX_TASKS", "50000"))
    PROGRAMME_PARSE_TIMEOUT_SECONDS = float(os.getenv("PROGRAMME_PARSE_TIMEOUT_SECONDS", "120"))

    MAX_CONTENT_LENGTH = PROGRAMME_MAX_FILE_BYTES + 1024 * 1024


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )
    RATELIMIT_STORAGE_URI = "memory://"


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = "memory://"


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
