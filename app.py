# app.py

import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from sqlalchemy import event, text

# Load environment variables from .env file first
load_dotenv()

# Module imports after load_dotenv() - E402 is intentional
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.validation import validate_and_exit  # noqa: E402
from b2bsync.models import db  # noqa: E402
from b2bsync.sync import SYNC_EXTENSION_KEY, init_sync  # noqa: E402
from b2bsync.utils.logging_config import setup_logging  # noqa: E402

logger = logging.getLogger(__name__)


def _configure_sqlite_connection_factory(*, enable_foreign_keys: bool):
    """Return a connection hook applying concurrency-friendly pragmas."""

    def _configure_sqlite_connection(dbapi_connection, connection_record):  # pragma: no cover - instrumentation
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            if enable_foreign_keys:
                cursor.execute("PRAGMA foreign_keys=ON")
        except Exception as exc:
            logger.warning("Failed to apply SQLite PRAGMAs: %s", exc)
        finally:
            cursor.close()

    return _configure_sqlite_connection


def _load_config(app: Flask, flask_env: str) -> None:
    if flask_env == "production":
        app.config.from_object(ProductionConfig)
    elif flask_env == "testing":
        app.config.from_object(TestingConfig)
    else:
        app.config.from_object(DevelopmentConfig)


def create_app(config_overrides=None) -> Flask:
    """Build the Flask app hosting the canonical store and the sync worker."""
    flask_app = Flask(__name__)

    flask_env = os.environ.get("FLASK_ENV", "development")
    if flask_env == "production":
        validate_and_exit(flask_env)

    _load_config(flask_app, flask_env)
    if config_overrides:
        flask_app.config.update(config_overrides)

    db.init_app(flask_app)
    setup_logging(flask_app)

    with flask_app.app_context():
        engine = db.engine
        if engine.url.drivername.startswith("sqlite"):
            if not getattr(engine, "_sqlite_pragmas_configured", False):
                pragma_hook = _configure_sqlite_connection_factory(
                    enable_foreign_keys=not flask_app.config.get("TESTING", False)
                )
                event.listen(engine, "connect", pragma_hook)
                engine._sqlite_pragmas_configured = True  # type: ignore[attr-defined]
        # Create the database tables only if not in testing mode
        if not flask_app.config.get("TESTING", False):
            db.create_all()

    init_sync(flask_app)

    @flask_app.get("/health")
    def health():
        state = flask_app.extensions.get(SYNC_EXTENSION_KEY, {})
        try:
            db.session.execute(text("SELECT 1"))
            database = "ok"
        except Exception:
            logger.exception("Health check could not reach the canonical store")
            db.session.rollback()
            database = "unavailable"
        payload = {
            "status": "ok" if database == "ok" else "degraded",
            "database": database,
            "sync_enabled": bool(state.get("enabled")),
            "sync_worker_enabled": bool(state.get("worker_enabled")),
        }
        return jsonify(payload), 200 if database == "ok" else 503

    return flask_app


app = create_app()

# Celery worker entry point: celery -A app.celery worker
celery = app.extensions[SYNC_EXTENSION_KEY].get("celery_app")


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)
