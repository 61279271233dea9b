"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Register a custom JSON provider to serialise Decimal as string
     (monetary amounts are transmitted as strings, never JS numbers)
  7. Register the `flask init-db` and `flask reconcile-pending-user` commands

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is complete before db.create_all() or any query runs. They are
  not used directly here — the import side-effect is sufficient.
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

import click
from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from splitplus.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Flask's default JSON encoder does not handle Decimal.
# All monetary amounts are serialised as strings to preserve precision.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from splitplus.app.extensions import db
    db.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from splitplus.app.models import (  # noqa: F401
            category,
            expense,
            group,
            membership,
            settlement,
            split,
            user,
        )

    # ── Blueprints ─────────────────────────────────────────────────────────
    _register_blueprints(app)

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)
    _register_cors(app)
    _register_commands(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Applies LOG_LEVEL to the Flask app logger and to the `splitplus` logger
    tree, so module loggers in services and the ledger package emit at the
    same level as the HTTP edge.
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    app.logger.setLevel(level)
    package_logger = logging.getLogger("splitplus")
    package_logger.setLevel(level)
    if not package_logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
        package_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    Every blueprint owns paths under more than one resource (/groups,
    /friends, /expenses, /settlements, /users, /categories), so each is
    mounted at the bare /api/v1 prefix and spells out its full relative
    paths.
    """
    from splitplus.app.routes.balances import balances_bp
    from splitplus.app.routes.categories import categories_bp
    from splitplus.app.routes.expenses import expenses_bp
    from splitplus.app.routes.settlements import settlements_bp

    app.register_blueprint(expenses_bp,    url_prefix="/api/v1")
    app.register_blueprint(balances_bp,    url_prefix="/api/v1")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1")
    app.register_blueprint(categories_bp,  url_prefix="/api/v1")


def _first_validation_message(messages, field=None):
    """
    Walks marshmallow's nested messages to the first leaf.

    Returns (top-level field name or None, message string).
    Nested list/dict errors such as {"splits": {0: {"split_type": [...]}}}
    report the top-level field ("splits").
    """
    if isinstance(messages, dict):
        for key, value in messages.items():
            if field is None and isinstance(key, str) and key != "_schema":
                return _first_validation_message(value, key)
            return _first_validation_message(value, field)
        return field, "Invalid input."
    if isinstance(messages, list):
        if not messages:
            return field, "Invalid value."
        return _first_validation_message(messages[0], field)
    return field, str(messages)


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct status
      ValidationError → marshmallow schema errors as a single MISSING_FIELD /
                        INVALID_FIELD / <registered code> response (400)
      Exception       → generic INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server. Only
    {"error": {"code": "INTERNAL_ERROR", "message": "..."}} is returned.
    """
    from splitplus.app.errors import AppError, ErrorCode, is_error_code

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, ledger, route) into the standard envelope.

        Routes never catch AppError — they let it propagate here.
        """
        if error.http_status >= 500:
            app.logger.error(
                "%s %s failed with %s",
                request.method,
                request.path,
                error.code.value,
            )
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Returns the FIRST error only: one error, not many. A message that is
        itself a registered ErrorCode (e.g. INVALID_AMOUNT_PRECISION) becomes
        the response code.
        """
        field, raw_message = _first_validation_message(error.messages)

        if is_error_code(raw_message):
            code = ErrorCode(raw_message)
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        return jsonify(AppError(code, message, 400, field=field).to_dict()), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.

        The full traceback is logged to the application logger. Werkzeug
        HTTP errors (unknown route, wrong method) keep their own status.
        """
        if isinstance(error, HTTPException):
            return error

        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API with Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _register_commands(app: Flask) -> None:
    """
    Registers the operator commands.

      flask init-db
          Creates missing tables (db.create_all()).
      flask reconcile-pending-user PENDING_USER_ID USER_ID
          Run by the account service once an invited person registers.
          Commits on success; any AppError is reported and nothing is written.
    """
    from splitplus.app.errors import AppError

    @app.cli.command("init-db")
    def init_db_command() -> None:
        """Creates any missing tables for the configured database."""
        from splitplus.app.extensions import db

        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("reconcile-pending-user")
    @click.argument("pending_user_id", type=int)
    @click.argument("user_id", type=int)
    def reconcile_pending_user_command(pending_user_id: int, user_id: int) -> None:
        from splitplus.app.extensions import db
        from splitplus.app.services import membership_service

        try:
            membership_service.reconcile_pending_user(pending_user_id, user_id, db.session)
        except AppError as exc:
            db.session.rollback()
            raise click.ClickException(f"{exc.code.value}: {exc.message}")
        db.session.commit()
        click.echo(f"Pending user {pending_user_id} reconciled into user {user_id}.")


def _code_to_message(code) -> str:
    """
    Human-readable default message for a code raised as a ValidationError
    message (e.g. INVALID_AMOUNT_PRECISION in schemas).
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_CATEGORY_NAME": "Category name must contain at least one letter or digit.",
        "INVALID_SPLIT_TYPE": "split_type must be one of: equal, exact, percentage, shares.",
        "INVALID_STATUS": "status must be one of: pending, completed, cancelled.",
    }
    return _messages.get(str(code), "Invalid input.")
