"""
salvage_finance/__init__.py

Flask application factory for the Salvage Finance document engine.

Requirements:
- Production mindset: clear architecture, stable imports, server-side permission checks.
- PostgreSQL-ready (SQLAlchemy + migrations) but SQLite is used for dev and tests.
- Every quotation/invoice transition runs in one database transaction by default
  (see steps.StepRunner); on SQLite this needs real SAVEPOINT support, which is
  switched on below.

HTTP surface:
- /quotations and /invoices JSON blueprints (login required). The login screen itself
  belongs to the integrating application; unauthenticated calls get 401.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import click
from flask import Flask, jsonify
from sqlalchemy import event
from sqlalchemy.orm.exc import StaleDataError

from .errors import LifecycleError
from .extensions import csrf, db, login_manager, migrate
from .journal import init_journal
from .models import User

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


# -------------------------------------------------------------------
# Logging
# -------------------------------------------------------------------
def _configure_logging(app: Flask) -> logging.Logger:
    """Configure package-wide logging with file and console handlers (once per process)."""
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    if app.config.get("LOG_TO_FILE", True) and not app.testing:
        log_file = Path(app.config["LOG_DIR"]) / "salvage_finance.log"
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as exc:
            print(f"Warning: unable to initialize log file at '{log_file}': {exc}", file=sys.stderr)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


# -------------------------------------------------------------------
# SQLite: let SQLAlchemy own BEGIN so SAVEPOINT / ROLLBACK TO work
# -------------------------------------------------------------------
def _enable_sqlite_savepoints(engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_app(config_object: str = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    log = _configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login (inactive users are treated as logged out)."""
        if not str(user_id).isdigit():
            return None
        user = db.session.get(User, int(user_id))
        if user is None or not user.is_active:
            return None
        return user

    with app.app_context():
        if db.engine.url.get_backend_name() == "sqlite":
            _enable_sqlite_savepoints(db.engine)

    init_journal(app)

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.invoices import invoices_bp
    from .blueprints.quotations import quotations_bp

    app.register_blueprint(quotations_bp)
    app.register_blueprint(invoices_bp)

    # ----------------------------------------------------------------------
    # Errors -> JSON
    # ----------------------------------------------------------------------
    @app.errorhandler(LifecycleError)
    def handle_lifecycle_error(exc: LifecycleError):
        db.session.rollback()
        return jsonify(exc.to_dict()), exc.http_status

    @app.errorhandler(StaleDataError)
    def handle_version_conflict(exc: StaleDataError):
        db.session.rollback()
        log.warning("Version conflict: %s", exc)
        return jsonify({"error": "stale_record", "message": "The document was changed by someone else."}), 409

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("expire-quotations")
    @click.option("--today", "as_of", default=None, help="Reference date YYYY-MM-DD (default: today).")
    def expire_quotations_command(as_of):
        """Expire draft/sent quotations whose valid_until has passed."""
        from .quotations import expire_quotations
        from .utils import parse_date

        expired = expire_quotations(parse_date(as_of))
        for number in expired:
            click.echo(number)
        click.echo(f"{len(expired)} quotation(s) expired.")

    @app.cli.command("mark-overdue")
    @click.option("--today", "as_of", default=None, help="Reference date YYYY-MM-DD (default: today).")
    def mark_overdue_command(as_of):
        """Mark sent invoices past their due date as overdue."""
        from .invoices import mark_overdue_invoices
        from .utils import parse_date

        marked = mark_overdue_invoices(parse_date(as_of))
        for number in marked:
            click.echo(number)
        click.echo(f"{len(marked)} invoice(s) marked overdue.")

    return app
