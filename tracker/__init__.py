"""
Project Tracker
Flask Application Factory.

Usage:
    from tracker import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from tracker.config import config
from tracker.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    TrackerError,
    ValidationError,
)
from tracker.middleware.jwt_auth import init_jwt_middleware
from tracker.middleware.logging_config import configure_logging
from tracker.middleware.rate_limiter import init_rate_limits
from tracker.middleware.timing import init_request_timing
from tracker.models import db
from tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine
from sqlalchemy.orm.exc import StaleDataError


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

# Exception family → HTTP status; first match wins
_ERROR_STATUS = (
    (NotFoundError, 404),
    (PermissionDenied, 403),
    (ConflictError, 409),
    (ValidationError, 400),
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
    # Instantiate so ProductionConfig can refuse to start without its env vars
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

    # ── Request timing + JWT auth middleware ─────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from tracker.models import notification as _notification_models  # noqa: F401
    from tracker.models import project as _project_models            # noqa: F401
    from tracker.models import user as _user_models                  # noqa: F401
    from tracker.models import workflow as _workflow_models          # noqa: F401

    os.makedirs(app.config["PROJECT_FILES_BASE_DIR"], exist_ok=True)

    # ── Tables + default workflow ────────────────────────────────────────
    with app.app_context():
        from tracker.services import workflow_service

        db.create_all()
        workflow_service.ensure_default_workflow()
        # A stored workflow with a broken table stops startup
        count = workflow_service.validate_stored_workflows()
        db.session.commit()
        app.logger.info("Database ready, %d workflow(s) validated", count)

    # ── Blueprints ───────────────────────────────────────────────────────
    from tracker.blueprints.auth_bp import auth_bp
    from tracker.blueprints.health_bp import health_bp
    from tracker.blueprints.notification_bp import notification_bp
    from tracker.blueprints.project_bp import project_bp
    from tracker.blueprints.report_bp import report_bp
    from tracker.blueprints.user_bp import user_bp
    from tracker.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(project_bp)
    app.register_blueprint(report_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(workflow_bp)

    _register_error_handlers(app)
    _register_cli(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app


def _register_error_handlers(app):
    from tracker.services import file_storage

    @app.before_request
    def _reset_saved_files():
        file_storage.forget_saved()

    @app.errorhandler(TrackerError)
    def tracker_error(e):
        db.session.rollback()
        file_storage.discard_saved()
        status = next((s for cls, s in _ERROR_STATUS if isinstance(e, cls)), 500)
        if status == 500:
            logger.error("Unhandled service error: %s", e, exc_info=True)
        else:
            logger.info("%s %s -> %s %s", request.method, request.path, status, e.code)
        return api_error(e.code, e.message, status=status, details=e.details or None)

    @app.errorhandler(StaleDataError)
    def stale_write(e):
        db.session.rollback()
        file_storage.discard_saved()
        logger.warning("%s %s -> 409 stale write: %s", request.method, request.path, e)
        return api_error(
            E.CONFLICT_STALE,
            "Record was modified by another request; reload and try again",
        )

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.METHOD_NOT_ALLOWED, "Method not allowed")

    @app.errorhandler(413)
    def payload_too_large(e):
        return api_error(E.PAYLOAD_TOO_LARGE, "Request body too large")

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        file_storage.discard_saved()
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def _register_cli(app):
    @app.cli.command("export-json")
    @click.argument("directory", required=False)
    def export_json_cmd(directory):
        """Write projects, users, notifications and workflows as JSON files."""
        from tracker.services import json_store
        directory = directory or app.config["LEGACY_DATA_DIR"]
        counts = json_store.export_all(directory)
        click.echo(f"Exported {counts} to {directory}")

    @app.cli.command("import-json")
    @click.argument("directory", required=False)
    def import_json_cmd(directory):
        """Upsert JSON collection files into the database."""
        from tracker.services import json_store, workflow_service
        directory = directory or app.config["LEGACY_DATA_DIR"]
        counts = json_store.import_all(directory)
        workflow_service.validate_stored_workflows()
        db.session.commit()
        click.echo(f"Imported {counts} from {directory}")

    @app.cli.command("create-user")
    @click.argument("username")
    @click.argument("role")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--email", default=None)
    def create_user_cmd(username, role, password, email):
        """Create an account; the only way to create an Admin Developer."""
        from tracker.services import user_service
        try:
            user = user_service.create_user(
                username, password, role, email=email, allow_admin_developer=True,
            )
        except TrackerError as e:
            db.session.rollback()
            raise click.ClickException(f"{e.code}: {e.message}")
        db.session.commit()
        click.echo(f"Created {user.role} user {user.username} ({user.id})")
