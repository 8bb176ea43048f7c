"""Celery tasks exposing the sync entry point to external schedulers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task

from .service import sync


@shared_task(name="sync.healthcheck", bind=True)
def sync_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by worker health checks."""
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="sync.tenant", bind=True)
def sync_tenant(
    self,
    *,
    tenant_id: int,
    force_full_resync: bool = False,
    entities: list[str] | str | None = None,
) -> dict[str, Any]:
    """Run one tenant sync and return its summary."""
    summary = sync(tenant_id, force_full_resync, entities=entities)
    payload = summary.to_dict()
    payload["task_id"] = self.request.id
    return payload
