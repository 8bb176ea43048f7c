"""
Incremental sync engine.

``sync(tenant_id, force_full_resync)`` is the entry point; :func:`init_sync`
records the engine state on a Flask app and configures the Celery worker when
``SYNC_WORKER_ENABLED`` is set.
"""

from __future__ import annotations

from typing import Any

from flask import Flask

from .celery_app import EXTENSION_KEY, ensure_celery_app, get_celery_app
from .errors import (
    ConfigurationError,
    ConstraintConflictError,
    RowLevelError,
    SyncError,
    TransientConnectivityError,
)
from .http import fetch_json
from .schema_config import ENTITY_ORDER
from .service import SyncSummary, select_entities, sync

SYNC_EXTENSION_KEY = EXTENSION_KEY

__all__ = [
    "init_sync",
    "SYNC_EXTENSION_KEY",
    "get_celery_app",
    "sync",
    "select_entities",
    "SyncSummary",
    "SyncError",
    "ConfigurationError",
    "ConstraintConflictError",
    "RowLevelError",
    "TransientConnectivityError",
    "fetch_json",
]


def _ensure_extension_state(app: Flask) -> dict[str, Any]:
    return app.extensions.setdefault(
        SYNC_EXTENSION_KEY,
        {
            "enabled": False,
            "entities": (),
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def init_sync(app: Flask) -> None:
    """
    Record sync state inside ``app.extensions['sync']``.

    The Celery app is only built when both the engine and the worker are
    enabled; otherwise ``sync()`` is still callable in-process.
    """
    state = _ensure_extension_state(app)
    enabled = bool(app.config.get("SYNC_ENABLED", True))
    entities = tuple(app.config.get("SYNC_ENTITIES") or ENTITY_ORDER)
    worker_enabled = enabled and bool(app.config.get("SYNC_WORKER_ENABLED", False))
    state.update({"enabled": enabled, "entities": entities, "worker_enabled": worker_enabled})

    if not enabled:
        app.logger.info("Sync disabled via SYNC_ENABLED flag; skipping worker registration.")
        return

    if worker_enabled:
        ensure_celery_app(app, state)
    app.logger.info(
        "Sync engine initialised",
        extra={"sync_entities": entities, "sync_worker_enabled": worker_enabled},
    )
