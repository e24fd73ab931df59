# scanworker/__init__.py
"""
App factory for the scan worker.

The Flask app carries configuration, the database session and the queue
handle. The same app serves the small JSON API (/health, /scans) and backs
the worker process (flask worker / scanworker-worker), which runs each job
inside its own app context.

Configuration is read from the environment; create_app(test_config) overrides
any key after the environment is read.
"""

from __future__ import annotations

import logging
import os
import traceback
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from flask_migrate import Migrate

from .extensions import db, init_extensions
from . import models
from .cli import register_commands
from .jobqueue import RedisJobQueue
from .scans import scans_bp

logger = logging.getLogger(__name__)
error_logger = logging.getLogger("scanworker.errors")

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations")


def _is_production() -> bool:
    return os.getenv("APP_ENV", "development").lower() == "production"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring malformed {name}={raw!r}, using {default}")
        return default


def _env_list(name: str, default: str = "") -> list:
    return [p.strip() for p in os.getenv(name, default).split(",") if p.strip()]


def _load_config() -> Dict[str, Any]:
    return {
        "SQLALCHEMY_DATABASE_URI": os.getenv("SQLALCHEMY_DATABASE_URI"),
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "REDIS_URL": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        "SCAN_QUEUE_NAME": os.getenv("SCAN_QUEUE_NAME", "scans"),
        "SCAN_NOTIFICATION_QUEUE_NAME": os.getenv(
            "SCAN_NOTIFICATION_QUEUE_NAME", "scan-notifications"
        ),
        "WORKER_CONCURRENCY": _env_int("WORKER_CONCURRENCY", 10),
        "JOB_MAX_ATTEMPTS": _env_int("JOB_MAX_ATTEMPTS", 3),
        "SCAN_ADAPTERS": _env_list("SCAN_ADAPTERS", "zap"),
        "ZAP_API_URL": os.getenv("ZAP_API_URL", "http://127.0.0.1:8080"),
        "ZAP_API_KEY": os.getenv("ZAP_API_KEY", ""),
        "ZAP_REQUEST_TIMEOUT": _env_int("ZAP_REQUEST_TIMEOUT", 30),
        "POLL_MAX_ATTEMPTS": _env_int("POLL_MAX_ATTEMPTS", 100),
        "POLL_INTERVAL_MS": _env_int("POLL_INTERVAL_MS", 2000),
        "NUCLEI_TEMPLATES": _env_list("NUCLEI_TEMPLATES"),
        "KATANA_DEPTH": _env_int("KATANA_DEPTH", 2),
    }


def create_app(test_config: Optional[Dict[str, Any]] = None) -> Flask:
    app = Flask(__name__)

    is_prod = _is_production()

    # ── Logging ──────────────────────────────────────────────────────
    if is_prod:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        app.logger.setLevel(logging.INFO)
    else:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )
        app.logger.setLevel(logging.DEBUG)

    logging.getLogger("werkzeug").setLevel(logging.INFO)
    # Quieten noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    # ─────────────────────────────────────────────────────────────────

    # ── Config ───────────────────────────────────────────────────────
    app.config.update(_load_config())
    if test_config:
        app.config.update(test_config)

    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise RuntimeError(
            "SQLALCHEMY_DATABASE_URI environment variable is not set. "
            "Set it to a database connection string, e.g.: "
            "postgresql://scanworker:PASSWORD@db:5432/scanworker"
        )

    # ── Extensions ───────────────────────────────────────────────────
    init_extensions(app)
    Migrate(app, db, directory=MIGRATIONS_DIR)

    # redis-py connects lazily; nothing is contacted until the first command
    app.extensions["scan_queue"] = RedisJobQueue.from_url(
        app.config["REDIS_URL"],
        queue_name=app.config["SCAN_QUEUE_NAME"],
        notification_queue=app.config["SCAN_NOTIFICATION_QUEUE_NAME"],
        max_attempts=app.config["JOB_MAX_ATTEMPTS"],
    )

    # ── Blueprints & commands ────────────────────────────────────────
    app.register_blueprint(scans_bp)
    register_commands(app)

    # ── Global Error Handlers ────────────────────────────────────────
    # Clean JSON for all errors; tracebacks are only logged server-side.

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({
            "error": "Bad request",
            "message": str(e.description) if hasattr(e, "description") else "The request was malformed or invalid.",
        }), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({
            "error": "Not found",
            "message": "The requested resource was not found.",
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({
            "error": "Method not allowed",
            "message": "This HTTP method is not allowed for this endpoint.",
        }), 405

    @app.errorhandler(500)
    def internal_error(e):
        error_logger.error(
            "500 Internal Server Error:\n%s", traceback.format_exc()
        )
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    @app.errorhandler(Exception)
    def catch_all(e):
        """Catch-all for any unhandled exception; never leak tracebacks."""
        error_logger.error(
            "Unhandled exception: %s\n%s", str(e), traceback.format_exc()
        )
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    # Health check
    @app.get("/health")
    def health():
        return jsonify(status="up and running"), 200

    return app


__all__ = ["create_app", "db", "models"]
