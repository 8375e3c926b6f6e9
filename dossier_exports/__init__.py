"""
Dossier Exports
Flask Application Factory.

Usage:
    from dossier_exports import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import json
import logging
import os

import click
from flask import Flask

from dossier_exports.config import config
from dossier_exports.middleware.logging_config import configure_logging
from dossier_exports.models import db

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
    config_class = config[config_name]
    app.config.from_object(config_class() if config_name == "production" else config_class)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)

    # ── Import all models so create_all sees them ────────────────────────
    from dossier_exports.models import accounts as _accounts_models          # noqa: F401
    from dossier_exports.models import procedure as _procedure_models        # noqa: F401
    from dossier_exports.models import dossier as _dossier_models            # noqa: F401
    from dossier_exports.models import presentation as _presentation_models  # noqa: F401
    from dossier_exports.models import export as _export_models              # noqa: F401
    from dossier_exports.models import notification as _notification_models  # noqa: F401
    from dossier_exports.models import scheduling as _scheduling_models      # noqa: F401

    db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
        os.makedirs(app.instance_path, exist_ok=True)

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("run-job")
    @click.argument("name")
    def run_job_cmd(name):
        """Run a scheduled job (purge_stale_exports, reclaim_stuck_exports)."""
        from dossier_exports.services.scheduler_service import SchedulerService
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job(name)
        click.echo(json.dumps(result, default=str, ensure_ascii=False))
        if result["status"] != "success":
            raise SystemExit(1)

    @app.cli.command("generate-export")
    @click.argument("export_id", type=int)
    def generate_export_cmd(export_id):
        """Generate a pending export synchronously."""
        from dossier_exports.services.export_service import generate_export
        export = generate_export(export_id)
        click.echo(json.dumps(export.to_dict(), default=str, ensure_ascii=False))

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("dossier_exports.services.scheduled_jobs")  # registers @register_job handlers
    from dossier_exports.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    return app
