"""
Compliance Hub
Flask Application Factory.

Usage:
    from compliance_hub import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from compliance_hub.config import config
from compliance_hub.middleware.logging_config import configure_logging
from compliance_hub.middleware.rate_limiter import init_rate_limits
from compliance_hub.middleware.timing import init_request_timing
from compliance_hub.models import db

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
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit — apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
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
    # Instantiated so ProductionConfig can refuse a missing DATABASE_URL / SECRET_KEY
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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from compliance_hub.models import organization as _organization_models  # noqa: F401
    from compliance_hub.models import deliverable as _deliverable_models    # noqa: F401
    from compliance_hub.models import compliance as _compliance_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from compliance_hub.blueprints.compliance_bp import compliance_bp
    from compliance_hub.blueprints.deliverable_bp import deliverable_bp
    from compliance_hub.blueprints.health_bp import health_bp

    app.register_blueprint(compliance_bp)
    app.register_blueprint(deliverable_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-compliance-template")
    @click.option("--org-id", type=int, required=True, help="Organization to seed.")
    def seed_compliance_template_cmd(org_id):
        """Seed the generic organization-wide default compliance template."""
        from compliance_hub.models.organization import Organization
        from compliance_hub.services.compliance_template_service import seed_default_template
        if db.session.get(Organization, org_id) is None:
            raise click.ClickException(f"Organization {org_id} does not exist.")
        template = seed_default_template(org_id)
        if template is None:
            logger.info("Organization %s already has a default compliance template.", org_id)
        else:
            logger.info("Seeded compliance template %s for organization %s.", template.id, org_id)

    # ── Health check (short form — detailed version at /health/live) ─────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Compliance Hub"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
