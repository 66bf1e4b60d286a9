"""
Project Tracker settings, one class per environment.

    app.config.from_object(config[os.getenv("APP_ENV", "development")]())

Every value can be overridden through the environment variable of the same
name. Paths default to folders under ``instance/``.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
instance_dir = os.path.join(basedir, "instance")


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


def _database_url(default=None):
    # Hosted Postgres still hands out postgres://, which SQLAlchemy 2 rejects
    url = os.getenv("DATABASE_URL", "")
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url or default


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = _env_int("JWT_ACCESS_EXPIRES", 8 * 3600)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")
    LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "10 per minute")
    WRITE_RATE_LIMIT = os.getenv("WRITE_RATE_LIMIT", "60 per minute")

    # Project files and JSON collections
    PROJECT_FILES_BASE_DIR = os.getenv(
        "PROJECT_FILES_BASE_DIR", os.path.join(instance_dir, "project_files"),
    )
    LEGACY_DATA_DIR = os.getenv("LEGACY_DATA_DIR", os.path.join(instance_dir, "data"))
    MAX_CONTENT_LENGTH = 50 * 1024 * 1024
    MAX_FILES_PER_UPLOAD = _env_int("MAX_FILES_PER_UPLOAD", 10)

    NOTIFICATION_LIMIT = _env_int("NOTIFICATION_LIMIT", 300)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(instance_dir, 'tracker_dev.db')}",
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    RATELIMIT_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    # tests/conftest.py points this at a tmp dir per session
    PROJECT_FILES_BASE_DIR = os.path.join(instance_dir, "test_project_files")


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
    }

    def __init__(self):
        missing = [
            name for name, present in (
                ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
                ("SECRET_KEY", os.getenv("SECRET_KEY")),
            ) if not present
        ]
        if missing:
            raise RuntimeError(f"Production requires {', '.join(missing)} to be set")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
