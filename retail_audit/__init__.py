"""
Retail Audit Platform
Flask Application Factory.

Usage:
    from retail_audit import create_app
    app = create_app()           # defaults to APP_ENV or "development"
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

from retail_audit.config import config
from retail_audit.core.exceptions import ConflictError, NotFoundError, ValidationError
from retail_audit.middleware.logging_config import configure_logging
from retail_audit.middleware.rate_limiter import init_rate_limits
from retail_audit.middleware.session_context import init_session_context
from retail_audit.middleware.timing import init_request_timing
from retail_audit.models import db
from retail_audit.services.audit_lifecycle import TransitionError
from retail_audit.services.permission import PermissionDenied
from retail_audit.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


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
    default_limits=[],                     # no global limit - apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _register_error_handlers(app):
    """Map domain exceptions to the standard ``api_error`` JSON shape."""

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error):
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(error))

    @app.errorhandler(ValidationError)
    def _handle_validation(error):
        db.session.rollback()
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @app.errorhandler(ConflictError)
    def _handle_conflict(error):
        db.session.rollback()
        return api_error(
            E.CONFLICT_DUPLICATE, str(error),
            details={"resource": error.resource, "field": error.field},
        )

    @app.errorhandler(PermissionDenied)
    def _handle_forbidden(error):
        db.session.rollback()
        return api_error(E.FORBIDDEN, str(error), details={"capability": error.capability})

    @app.errorhandler(TransitionError)
    def _handle_transition(error):
        db.session.rollback()
        return api_error(
            E.CONFLICT_STATE, str(error),
            details={
                "action": error.action,
                "current_status": error.current_status,
                "reason": error.reason,
                "permission_denied": error.permission_denied,
            },
        )

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


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

    # ── Request middleware ───────────────────────────────────────────────
    init_request_timing(app)
    init_session_context(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from retail_audit.models import user as _user_models              # noqa: F401
    from retail_audit.models import checklist as _checklist_models    # noqa: F401
    from retail_audit.models import audit as _audit_models            # noqa: F401
    from retail_audit.models import action_plan as _action_models     # noqa: F401
    from retail_audit.models import activity_log as _activity_models  # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from retail_audit.blueprints.audit_bp import audit_bp
    from retail_audit.blueprints.action_bp import action_bp
    from retail_audit.blueprints.visit_bp import visit_bp
    from retail_audit.blueprints.store_bp import store_bp
    from retail_audit.blueprints.checklist_bp import checklist_bp
    from retail_audit.blueprints.health_bp import health_bp
    from retail_audit.blueprints.me_bp import me_bp

    app.register_blueprint(audit_bp)
    app.register_blueprint(action_bp)
    app.register_blueprint(visit_bp)
    app.register_blueprint(store_bp)
    app.register_blueprint(checklist_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(me_bp)

    _register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-checklist")
    @click.option("--name", default=None, help="Name of the seeded checklist.")
    def seed_checklist_cmd(name):
        """Seed the default store-visit checklist if none exists."""
        from retail_audit.services.checklist_service import (
            DEFAULT_CHECKLIST_NAME,
            seed_default_checklist,
        )
        checklist = seed_default_checklist(name or DEFAULT_CHECKLIST_NAME)
        db.session.commit()
        if checklist is None:
            click.echo("A checklist already exists; nothing seeded.")
        else:
            click.echo(f"Seeded checklist #{checklist.id} '{checklist.name}'.")

    @app.cli.command("init-db")
    def init_db_cmd():
        """Create all tables (development shortcut for `flask db upgrade`)."""
        db.create_all()
        click.echo("Database tables created.")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
