"""
OpEx Hub application factory.

Usage:
    from opexhub import create_app
    app = create_app()           # APP_ENV, default "development"
    app = create_app("testing")

CLI (via ``flask --app wsgi``):
    flask create-user <email> <full_name> <site> <role> [--discipline D]
    flask set-approver <site> <stage> <email>
    flask stages
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from opexhub.config import config
from opexhub.core.exceptions import ConflictError, ValidationError
from opexhub.middleware.logging_config import configure_logging
from opexhub.middleware.timing import init_request_timing
from opexhub.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """Build the app for ``config_name`` (development | testing | production)."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    _init_request_guard(app)
    _init_schema(app)
    _register_blueprints(app)
    _register_cli(app)
    _register_error_handlers(app)

    logger.debug("OpEx Hub app created (config=%s)", config_name)
    return app


def _init_extensions(app):
    os.makedirs(app.instance_path, exist_ok=True)
    db.init_app(app)
    migrate.init_app(app, db)
    origins = app.config.get("CORS_ORIGINS") or ""
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _init_request_guard(app):
    """Reject oversize bodies (413) and non-JSON bodies on /api/ writes (415)."""

    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413)
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            if request.data and "json" not in (request.content_type or ""):
                abort(415)


def _init_schema(app):
    # model modules register their tables on db.metadata when imported
    from opexhub.models import auth, initiative, monitoring, timeline, workflow  # noqa: F401

    with app.app_context():
        db.create_all()


def _register_blueprints(app):
    from opexhub.blueprints.health_bp import health_bp
    from opexhub.blueprints.initiative_bp import initiative_bp
    from opexhub.blueprints.monitoring_bp import monitoring_bp
    from opexhub.blueprints.timeline_bp import timeline_bp
    from opexhub.blueprints.workflow_bp import workflow_bp

    for bp in (health_bp, initiative_bp, workflow_bp, timeline_bp, monitoring_bp):
        app.register_blueprint(bp)


def _register_cli(app):
    @app.cli.command("create-user")
    @click.argument("email")
    @click.argument("full_name")
    @click.argument("site")
    @click.argument("role")
    @click.option("--discipline", default=None, help="Operation, Safety, Quality, ...")
    def create_user_cmd(email, full_name, site, role, discipline):
        """Add a user to the directory (roles: IL, STLD, HOD, SH, CTSD, F&A, ...)."""
        from opexhub.services.user_service import create_user

        try:
            user = create_user(email, full_name, site, role, discipline=discipline)
            db.session.commit()
        except (ValidationError, ConflictError) as exc:
            db.session.rollback()
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Created user id={user.id} {user.email} ({user.role}@{user.site})")

    @app.cli.command("set-approver")
    @click.argument("site")
    @click.argument("stage_number", type=int)
    @click.argument("email")
    def set_approver_cmd(site, stage_number, email):
        """Name the approver a stage is pending with at a site."""
        from opexhub.services.stage_approver_service import set_approver

        try:
            row = set_approver(site.upper(), stage_number, email)
            db.session.commit()
        except (ValidationError, ConflictError) as exc:
            db.session.rollback()
            raise click.ClickException(str(exc)) from exc
        click.echo(f"{row.site} stage {row.stage_number} ({row.role_code}) -> {row.user_email}")

    @app.cli.command("stages")
    def stages_cmd():
        """Print the workflow stage catalog with the configured actions."""
        from opexhub.services.workflow_engine import get_stage_catalog

        for stage in get_stage_catalog():
            actions = ", ".join(stage.allowed_actions)
            click.echo(f"{stage.number:>2}  {stage.name:<40} {stage.required_role or '-':<5} {actions}")


def _register_error_handlers(app):
    """JSON bodies for errors raised outside any blueprint handler."""

    def _body(message, code):
        return {"error": message, "code": code}

    @app.errorhandler(404)
    def not_found(e):
        return {**_body("Not found", "ERR_NOT_FOUND"), "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return _body("Method not allowed", "ERR_METHOD_NOT_ALLOWED"), 405

    @app.errorhandler(413)
    def too_large(e):
        return _body("Request body too large", "ERR_PAYLOAD_TOO_LARGE"), 413

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return _body("Content-Type must be application/json", "ERR_UNSUPPORTED_MEDIA_TYPE"), 415

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return _body("Internal server error", "ERR_INTERNAL"), 500
