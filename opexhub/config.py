"""
OpEx Hub configuration.

Selected by ``APP_ENV`` (development | testing | production) in
``create_app``. Every value can be overridden from the environment:

    DATABASE_URL            SQLAlchemy URL (postgres:// is rewritten)
    SECRET_KEY              required in production
    CORS_ORIGINS            comma list, "*" in development
    LOG_LEVEL / LOG_FORMAT  DEBUG..CRITICAL / "json" | "readable"
    SLOW_REQUEST_MS         timing middleware warning threshold
    WORKFLOW_REJECT_STAGES  stages offering "reject", default "2,3"
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'opexhub_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _database_url(default: str | None) -> str | None:
    # SQLAlchemy 2.x only accepts the postgresql:// scheme
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    return raw.replace("postgres://", "postgresql://", 1)


def _parse_stage_list(raw: str) -> tuple[int, ...]:
    """Parse "2,3" into (2, 3). Stage 1 is registration and cannot be rejected."""
    stages = tuple(sorted({int(part) for part in raw.split(",") if part.strip()}))
    bad = [s for s in stages if not 2 <= s <= 11]
    if bad:
        raise RuntimeError(f"WORKFLOW_REJECT_STAGES contains invalid stages: {bad}")
    return stages


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024

    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_FORMAT = os.getenv("LOG_FORMAT")
    SLOW_REQUEST_MS = int(os.getenv("SLOW_REQUEST_MS", "1000"))

    # Stage 8 always offers "drop"; this only governs "reject".
    WORKFLOW_REJECT_STAGES = _parse_stage_list(os.getenv("WORKFLOW_REJECT_STAGES", "2,3"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    WORKFLOW_REJECT_STAGES = (2, 3)


class ProductionConfig(Config):
    """Postgres with a statement timeout; refuses to start half-configured."""

    SQLALCHEMY_DATABASE_URI = _database_url(None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
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
