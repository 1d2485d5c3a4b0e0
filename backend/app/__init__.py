"""
app/__init__.py - Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time - this enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - Alembic to import the metadata without starting the server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow, Cloudinary)
  4. Register the users blueprint under /api/v1/users
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Add CORS headers for the configured frontend origin(s)

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic inspects it.
"""

from __future__ import annotations

import logging
import traceback

from flask import Flask, jsonify, request
from marshmallow import ValidationError as SchemaValidationError
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from backend.config import config_by_name, validate_production_config


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

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.app.extensions import db, ma
    from backend.app.services import storage_service
    db.init_app(app)
    ma.init_app(app)
    storage_service.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from backend.app.models import (  # noqa: F401
            subscription,
            user,
            video,
            watch_history,
        )

    # ── Blueprints ─────────────────────────────────────────────────────────
    from backend.app.routes.users import users_bp
    app.register_blueprint(users_bp, url_prefix="/api/v1/users")

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)
    _register_cors(app)

    return app


def _configure_logging(app: Flask) -> None:
    """Applies LOG_LEVEL to the app logger and to every backend.* logger."""
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("backend").setLevel(level)
    app.logger.setLevel(level)


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError              → structured JSON error envelope with its HTTP status
      marshmallow errors    → VALIDATION envelope (400), every field listed in `errors`
      RequestEntityTooLarge → PAYLOAD_TOO_LARGE (413)
      HTTPException         → envelope with the exception's own status
      Exception             → generic INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server.
    """
    from backend.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        if error.http_status >= 500:
            app.logger.error("%r", error)
        else:
            app.logger.info("%s %s -> %s", request.method, request.path, error.code)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(SchemaValidationError)
    def handle_validation_error(error: SchemaValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        The first field's message becomes the top-level message; all field
        messages are listed in `errors`.
        """
        messages = error.messages
        sub_errors: list[dict] = []

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                if not isinstance(field_errors, list):
                    field_errors = [str(field_errors)]
                for message in field_errors:
                    sub_errors.append({
                        "field": None if field_name == "_schema" else field_name,
                        "message": str(message),
                    })
        else:
            sub_errors = [{"field": None, "message": str(m)} for m in messages]

        first = sub_errors[0] if sub_errors else {"field": None, "message": "Invalid input."}
        code = (
            ErrorCode.MISSING_FIELD
            if first["message"].startswith("Missing data for required field")
            else ErrorCode.INVALID_FIELD
        )

        body = {
            "error": {
                "code": code,
                "message": first["message"],
                "errors": sub_errors,
            }
        }
        if first["field"] is not None:
            body["error"]["field"] = first["field"]
        return jsonify(body), 400

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(error: RequestEntityTooLarge):
        return jsonify({
            "error": {
                "code": ErrorCode.PAYLOAD_TOO_LARGE,
                "message": "The uploaded payload is too large.",
                "errors": [],
            }
        }), 413

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        code = (
            ErrorCode.RESOURCE_NOT_FOUND
            if error.code == 404
            else error.name.upper().replace(" ", "_")
        )
        return jsonify({
            "error": {
                "code": code,
                "message": error.description,
                "errors": [],
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
                "errors": [],
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers with credentials allowed (tokens travel in cookies).

    CORS_ORIGIN is a comma-separated allow-list. In DEBUG / TESTING any
    origin is reflected so a local frontend on another port works.
    """
    allowed = {
        origin.strip()
        for origin in str(app.config.get("CORS_ORIGIN", "")).split(",")
        if origin.strip()
    }

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if not origin:
            return response

        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))
        if allow_all or origin in allowed or "*" in allowed:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response
