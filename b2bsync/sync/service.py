"""
Run entry point: ``sync(tenant_id, force_full_resync)``.

Entities run in dependency order (groups and representatives before the
customers that reference them, products before the order items that
reference them). A failure in one entity aborts the run; everything already
committed stays committed and each watermark only covers written rows.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from ..models import Tenant, db
from .context import SyncContext, SyncSettings
from .errors import ConfigurationError
from .pipeline import SYNCHRONIZERS, EntitySyncSummary
from .resilience import SOURCE_RETRY_POLICY
from .schema_config import ENTITY_ORDER, SCHEMA_KEYS, TenantSyncConfig, describe_sync_config
from .source import SourceConnection

SourceFactory = Callable[..., SourceConnection]


@dataclass
class SyncSummary:
    tenant_id: int
    tenant_slug: str | None = None
    force_full_resync: bool = False
    status: str = "running"
    entities: dict[str, EntitySyncSummary] = field(default_factory=dict)
    duration_seconds: float = 0.0
    error: str | None = None

    @property
    def upserted(self) -> int:
        return sum(entity.upserted for entity in self.entities.values())

    @property
    def skipped(self) -> int:
        return sum(entity.skipped for entity in self.entities.values())

    @property
    def conflicts(self) -> int:
        return sum(entity.total_conflicts for entity in self.entities.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "tenant_slug": self.tenant_slug,
            "force_full_resync": self.force_full_resync,
            "status": self.status,
            "upserted": self.upserted,
            "skipped": self.skipped,
            "conflicts": self.conflicts,
            "duration": round(self.duration_seconds, 3),
            "error": self.error,
            "entities": {name: entity.to_dict() for name, entity in self.entities.items()},
        }


def _parse_entities(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return tuple(dict.fromkeys(str(item).strip() for item in items if str(item).strip()))


def select_entities(
    config: TenantSyncConfig,
    requested: Iterable[str] | str | None = None,
    *,
    enabled: Iterable[str] | str | None = None,
) -> list[str]:
    """Entities to run, in dependency order.

    Explicitly requested entities must exist and are run even when their
    schema is missing (which then fails loudly). Otherwise every enabled
    entity whose schema the tenant configured is run.
    """

    names = _parse_entities(requested)
    unknown = [name for name in names if name not in SCHEMA_KEYS]
    if unknown:
        raise ConfigurationError(
            f"Unknown entities requested: {', '.join(unknown)}. Expected any of {', '.join(ENTITY_ORDER)}.",
            config_key="entities",
        )
    if names:
        return [name for name in ENTITY_ORDER if name in names]

    allowed = set(_parse_entities(enabled) or ENTITY_ORDER)
    return [name for name in ENTITY_ORDER if name in allowed and config.has_schema(SCHEMA_KEYS[name])]


def _default_source_factory(
    settings: Mapping[str, Any],
    *,
    sync_settings: SyncSettings,
    sleep: Callable[[float], None],
    logger: logging.Logger,
) -> SourceConnection:
    return SourceConnection(
        settings,
        statement_timeout_ms=sync_settings.statement_timeout_ms,
        policy=SOURCE_RETRY_POLICY.with_attempts(sync_settings.source_max_attempts),
        sleep=sleep,
        logger=logger,
    )


def _app_config() -> Mapping[str, Any]:
    return current_app.config if has_app_context() else {}


def sync(
    tenant_id: int,
    force_full_resync: bool = False,
    *,
    entities: Iterable[str] | str | None = None,
    session: Session | None = None,
    source_factory: SourceFactory | None = None,
    settings: SyncSettings | None = None,
    sleep: Callable[[float], None] = time.sleep,
    logger: logging.Logger | None = None,
) -> SyncSummary:
    """Synchronize every configured entity of one tenant and return the run summary."""

    log = logger if logger is not None else logging.getLogger(__name__)
    session = session or db.session
    app_config = _app_config()
    settings = settings or SyncSettings.from_config(app_config)

    tenant = session.get(Tenant, tenant_id)
    if tenant is None:
        raise ConfigurationError(f"Tenant {tenant_id} not found.", config_key="tenant_id")

    slug = tenant.slug
    summary = SyncSummary(tenant_id=tenant.id, tenant_slug=slug, force_full_resync=bool(force_full_resync))
    log_extra = {"sync_tenant_id": tenant.id, "sync_tenant_slug": slug}
    if not tenant.is_active:
        summary.status = "skipped"
        log.info("Tenant %s is inactive; skipping sync", slug, extra=log_extra)
        return summary

    config = TenantSyncConfig(tenant.sync_config)
    selected = select_entities(config, entities, enabled=app_config.get("SYNC_ENTITIES"))
    if not selected:
        summary.status = "succeeded"
        log.warning(
            "Tenant %s has no entity schemas configured: %s",
            slug,
            describe_sync_config(tenant.sync_config),
            extra=log_extra,
        )
        return summary

    factory = source_factory or _default_source_factory
    source = factory(config.source, sync_settings=settings, sleep=sleep, logger=log)
    context = SyncContext(
        tenant=tenant,
        session=session,
        source=source,
        config=config,
        settings=settings,
        force_full_resync=bool(force_full_resync),
        sleep=sleep,
        logger=log,
    )

    started = time.monotonic()
    log.info(
        "Starting sync for tenant %s: %s",
        slug,
        ", ".join(selected),
        extra={**log_extra, "sync_entities": selected, "sync_force_full_resync": bool(force_full_resync)},
    )
    try:
        for name in selected:
            synchronizer = SYNCHRONIZERS[name](context)
            summary.entities[name] = synchronizer.summary
            synchronizer.execute()
    except ConfigurationError as exc:
        summary.status = "failed"
        summary.error = str(exc)
        log.error(
            "Sync configuration error for tenant %s: %s (summary: %s)",
            slug,
            exc,
            describe_sync_config(config.blob),
            extra={**log_extra, "sync_config_key": exc.config_key},
        )
        raise
    except Exception as exc:
        summary.status = "failed"
        summary.error = str(exc)
        log.exception("Sync failed for tenant %s", slug, extra=log_extra)
        raise
    finally:
        summary.duration_seconds = time.monotonic() - started
        source.close()

    summary.status = "succeeded"
    log.info(
        "Finished sync for tenant %s: upserted=%s skipped=%s conflicts=%s in %.1fs",
        slug,
        summary.upserted,
        summary.skipped,
        summary.conflicts,
        summary.duration_seconds,
        extra={**log_extra, "sync_summary": summary.to_dict()},
    )
    return summary
