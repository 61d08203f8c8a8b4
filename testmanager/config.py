"""
Playwright Test Manager configuration.

One class per environment, selected by APP_ENV:

    app.config.from_object(config[os.getenv("APP_ENV", "development")]())

Everything that differs between machines comes from environment variables.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
instance_dir = os.path.join(basedir, "instance")


def _database_url(default=None):
    """DATABASE_URL with Heroku-style ``postgres://`` rewritten for SQLAlchemy 2."""
    url = os.getenv("DATABASE_URL", "")
    if not url:
        return default
    return url.replace("postgres://", "postgresql://", 1)


def _int_env(name, default):
    return int(os.getenv(name, str(default)))


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = _int_env("JWT_ACCESS_EXPIRES", 900)
    JWT_REFRESH_EXPIRES = _int_env("JWT_REFRESH_EXPIRES", 604800)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
    }

    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "true")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    REDIS_URL = os.getenv("REDIS_URL", "memory://")  # rate-limit storage

    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_FORMAT = os.getenv("LOG_FORMAT")

    # Playwright runner
    PLAYWRIGHT_PROJECTS_ROOT = os.getenv(
        "PLAYWRIGHT_PROJECTS_ROOT", os.path.join(basedir, "playwright-projects"),
    )
    PLAYWRIGHT_RUN_TIMEOUT = _int_env("PLAYWRIGHT_RUN_TIMEOUT", 1800)
    PLAYWRIGHT_DEFAULT_BROWSER = os.getenv("PLAYWRIGHT_BROWSER", "chromium")
    RUN_OUTPUT_LIMIT = 10000

    AI_DEFAULT_PROVIDER = os.getenv("AI_PROVIDER", "gemini")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(instance_dir, 'test_manager_dev.db')}"
    )
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        # QueuePool sizing arguments are rejected by SQLite
        SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = "testing-secret-key-with-enough-length-for-hs256"
    API_AUTH_ENABLED = "false"
    RATELIMIT_ENABLED = False
    LOG_LEVEL = "WARNING"
    PLAYWRIGHT_PROJECTS_ROOT = os.path.join(instance_dir, "test-playwright-projects")


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # explicit origins only

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
