"""
Celery worker for tenant syncs.

The worker exists only when ``SYNC_WORKER_ENABLED`` is set. Every ``sync.*``
task is routed to the ``sync`` queue and runs inside the Flask application
context. Without ``CELERY_BROKER_URL``/``CELERY_RESULT_BACKEND`` one SQLite
file in the instance folder serves as both transport and result store.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from celery import Celery
from flask import Flask
from kombu import Queue
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

DEFAULT_QUEUE_NAME = "sync"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"
EXTENSION_KEY = "sync"
TASK_MODULES = ("b2bsync.sync.tasks",)


def _sqlite_transport_path(app: Flask) -> Path:
    configured = app.config.get("CELERY_SQLITE_PATH") or DEFAULT_SQLITE_FILENAME
    path = Path(configured)
    if not path.is_absolute():
        path = Path(app.instance_path) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def worker_urls(app: Flask) -> tuple[str, str]:
    """``(broker_url, result_backend)`` for the sync worker."""
    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if broker_url and result_backend:
        return broker_url, result_backend

    # kombu and the database backend both want forward slashes
    sqlite_file = _sqlite_transport_path(app).as_posix()
    return broker_url or f"sqla+sqlite:///{sqlite_file}", result_backend or f"db+sqlite:///{sqlite_file}"


def _overrides(app: Flask) -> dict[str, Any]:
    raw = app.config.get("CELERY_CONFIG")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.")
            return {}
    return dict(raw) if isinstance(raw, dict) else {}


def sync_worker_settings(app: Flask) -> dict[str, Any]:
    """Celery settings for one-tenant-at-a-time sync tasks.

    A tenant sync holds one source connection for its whole run, so each
    worker process prefetches a single task and acknowledges it only once the
    run has finished. ``CELERY_CONFIG`` entries win over these defaults.
    """
    settings: dict[str, Any] = {
        "task_default_queue": DEFAULT_QUEUE_NAME,
        "task_queues": [Queue(DEFAULT_QUEUE_NAME)],
        "task_routes": {"sync.*": {"queue": DEFAULT_QUEUE_NAME}},
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
        "task_track_started": True,
        "result_extended": True,
        "broker_connection_retry_on_startup": True,
        "task_time_limit": app.config.get("SYNC_TASK_TIME_LIMIT", 60 * 60),
        "task_soft_time_limit": app.config.get("SYNC_TASK_SOFT_TIME_LIMIT", 55 * 60),
        # root handlers belong to setup_logging
        "worker_hijack_root_logger": False,
    }
    settings.update(_overrides(app))
    return settings


def _safe_url(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except (ArgumentError, ValueError):  # kombu accepts URLs SQLAlchemy cannot parse
        return url.split("@")[-1]


def create_celery_app(app: Flask) -> Celery:
    """Build the Celery app whose tasks run inside ``app``'s context."""
    broker_url, result_backend = worker_urls(app)
    celery_app = Celery(app.import_name, broker=broker_url, backend=result_backend, include=TASK_MODULES)
    celery_app.conf.update(sync_worker_settings(app))

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()
    app.logger.info(
        "Sync worker configured",
        extra={
            "sync_celery_queue": celery_app.conf.task_default_queue,
            "sync_celery_broker": _safe_url(broker_url),
            "sync_celery_time_limit": celery_app.conf.task_time_limit,
        },
    )
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    """Return the worker cached in the sync extension state, creating it once."""
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None:
        celery_app = create_celery_app(app)
        state["celery_app"] = celery_app
    return celery_app


def get_celery_app(app: Flask) -> Celery | None:
    """The sync worker for ``app``, or ``None`` when the worker is disabled."""
    state: dict[str, Any] | None = app.extensions.get(EXTENSION_KEY)  # type: ignore[arg-type]
    if not state or not state.get("worker_enabled"):
        return None
    return ensure_celery_app(app, state)
