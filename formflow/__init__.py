"""
Form distribution & approval service
Flask Application Factory.

Usage:
    from formflow import create_app
    app = create_app()           # defaults to APP_ENV, else "development"
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
from sqlalchemy.exc import SQLAlchemyError

from formflow.config import config
from formflow.models import db
from formflow.middleware.logging_config import configure_logging
from formflow.middleware.timing import init_request_timing
from formflow.middleware.jwt_auth import init_jwt_middleware
from formflow.middleware.rate_limiter import init_rate_limits
from formflow.utils.errors import register_error_handlers

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
    default_limits=[],                     # limits are applied per blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",
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

    # ── Error envelope ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── Request timing + JWT identity ────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    @app.before_request
    def _guard_request():
        from flask import abort, request
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    @app.before_request
    def _fresh_config_snapshot():
        # One snapshot per request; admin edits apply to the next request.
        from formflow.services.system_config_service import invalidate_snapshot
        invalidate_snapshot()

    # ── Import all models so Alembic can detect them ─────────────────────
    from formflow.models import auth as _auth_models                  # noqa: F401
    from formflow.models import form as _form_models                  # noqa: F401
    from formflow.models import workflow as _workflow_models          # noqa: F401
    from formflow.models import notification as _notification_models  # noqa: F401
    from formflow.models import audit as _audit_models                # noqa: F401
    from formflow.models import system_config as _system_config_models  # noqa: F401
    from formflow.models import scheduling as _scheduling_models      # noqa: F401

    # ── Auto-create tables + default configuration rows ──────────────────
    with app.app_context():
        try:
            db.create_all()
            from formflow.services.system_config_service import initialize_defaults
            initialize_defaults()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as e:
            db.session.rollback()
            app.logger.warning("Database bootstrap failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from formflow.blueprints.workflow_bp import workflow_bp
    from formflow.blueprints.template_bp import template_bp
    from formflow.blueprints.submission_bp import submission_bp
    from formflow.blueprints.config_bp import config_bp
    from formflow.blueprints.user_bp import user_bp
    from formflow.blueprints.admin_bp import admin_bp
    from formflow.blueprints.notification_bp import notification_bp
    from formflow.blueprints.audit_bp import audit_bp
    from formflow.blueprints.health_bp import health_bp

    app.register_blueprint(workflow_bp)
    app.register_blueprint(template_bp)
    app.register_blueprint(submission_bp)
    app.register_blueprint(config_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-config")
    def seed_config_cmd():
        """Insert missing system configuration keys with their defaults."""
        from formflow.services.system_config_service import initialize_defaults
        count = initialize_defaults()
        logger.info("Seeded %s configuration keys.", count)
        click.echo(f"Seeded {count} configuration keys.")

    @app.cli.command("issue-token")
    @click.argument("username")
    @click.option("--expires-in", type=int, default=None, help="Lifetime in seconds.")
    def issue_token_cmd(username, expires_in):
        """Print an access token for USERNAME (local development)."""
        from formflow.models.auth import User
        from formflow.services.jwt_service import generate_access_token
        user = User.query.filter_by(username=username).first()
        if user is None:
            raise click.ClickException(f"Unknown user: {username}")
        click.echo(generate_access_token(user.id, role=user.role, expires_in=expires_in))

    @app.cli.command("run-job")
    @click.argument("job_name")
    @click.option("--force", is_flag=True, help="Run even when the job is disabled.")
    def run_job_cmd(job_name, force):
        """Run a registered maintenance job once."""
        from formflow.services.scheduler_service import SchedulerService
        result = SchedulerService.run_job(job_name, force=force)
        click.echo(f"{job_name}: {result['status']}")
        if result["status"] in ("failed", "error"):
            raise click.ClickException(result.get("error") or "job failed")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    from formflow.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    return app
