"""
Project Tracker Core
Flask Application Factory.

Usage:
    from tracker import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from tracker.config import config
from tracker.core.exceptions import ConflictError, NotFoundError, UnknownRole, ValidationError
from tracker.middleware.jwt_auth import init_jwt_middleware
from tracker.middleware.logging_config import configure_logging
from tracker.middleware.timing import init_request_timing
from tracker.models import db
from tracker.utils.errors import E, api_error

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


def _register_error_handlers(app):
    """Map service-layer exceptions to JSON errors once, for every blueprint."""

    @app.errorhandler(NotFoundError)
    def _not_found_error(e):
        logger.debug("Not found: %s", e)
        return api_error(E.NOT_FOUND, f"{e.resource} not found")

    @app.errorhandler(ValidationError)
    def _validation_error(e):
        return api_error(E.VALIDATION_CONSTRAINT, str(e), details=e.details)

    @app.errorhandler(ConflictError)
    def _conflict_error(e):
        return api_error(E.CONFLICT_DUPLICATE, str(e))

    @app.errorhandler(UnknownRole)
    def _unknown_role(e):
        logger.error("Membership row holds an unknown role: %r", e.value)
        return api_error(e.code.value, str(e), status=500)

    @app.errorhandler(SQLAlchemyError)
    def _database_error(e):
        db.session.rollback()
        logger.exception("Database error on %s", request.path)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500


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
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing + bearer-token actor ──────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from tracker.models import auth as _auth_models           # noqa: F401
    from tracker.models import billing as _billing_models     # noqa: F401
    from tracker.models import workflow as _workflow_models   # noqa: F401
    from tracker.models import audit as _audit_models         # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ───────────────────────
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and not app.config["TESTING"]:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from tracker.blueprints.access_bp import access_bp
    from tracker.blueprints.health_bp import health_bp
    from tracker.blueprints.invoice_bp import invoice_bp
    from tracker.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(access_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(invoice_bp)

    _register_error_handlers(app)

    return app
