"""
Annual Report Portal
Flask Application Factory.

Usage:
    from portal import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from portal.config import config
from portal.models import db
from portal.integrations.attachment_gateway import init_attachment_gateway
from portal.middleware.jwt_auth import init_jwt_middleware
from portal.middleware.logging_config import configure_logging
from portal.middleware.rate_limiter import init_rate_limits
from portal.middleware.security_headers import init_security_headers
from portal.middleware.timing import init_request_timing
from portal.utils.errors import register_error_handlers

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
    default_limits=[],                     # no global limit — apply per-blueprint
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
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

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
    init_jwt_middleware(app)
    init_security_headers(app)

    # ── Error handlers (domain exceptions → JSON) ────────────────────────
    register_error_handlers(app)

    # ── Attachment storage backend ───────────────────────────────────────
    init_attachment_gateway(app)

    # ── Models (register tables before create_all) ───────────────────────
    from portal.models import auth as _auth_models      # noqa: F401
    from portal.models import report as _report_models  # noqa: F401

    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from portal.blueprints.analytics_bp import analytics_bp
    from portal.blueprints.auth_bp import auth_bp
    from portal.blueprints.integration_bp import integration_bp
    from portal.blueprints.reports_bp import reports_bp
    from portal.blueprints.users_bp import users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(analytics_bp)
    app.register_blueprint(integration_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-admin")
    @click.option("--username", required=True)
    @click.option("--email", required=True)
    @click.option("--password", required=True, prompt=True, hide_input=True)
    @click.option("--department", default=None)
    def create_admin_cmd(username, email, password, department):
        """Create an active admin account with every permission."""
        from portal.core.exceptions import ConflictError, ValidationError
        from portal.models.auth import Role
        from portal.services.user_service import create_user

        try:
            user = create_user(username, email, password, department=department, role=Role.ADMIN.value)
        except ValidationError as e:
            raise click.ClickException(
                f"{e}: " + "; ".join(f"{err['field']}: {err['message']}" for err in e.errors)
            ) from e
        except ConflictError as e:
            raise click.ClickException(str(e)) from e
        click.echo(f"Created admin {user.username} (id={user.id})")

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Annual Report Portal"}

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
