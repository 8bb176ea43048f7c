"""
Per-run state threaded through every synchronizer.

A :class:`SyncContext` owns the tenant, the store session, the source
connection, the parsed configuration and the memo caches for one run. Nothing
here is module-level, so two runs never share lookups.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from sqlalchemy.orm import Session

from ..models import Tenant
from .resilience import STORE_RETRY_POLICY, ResilientExecutor
from .schema_config import TenantSyncConfig
from .source import DEFAULT_STATEMENT_TIMEOUT_MS, SourceConnection


def _int_setting(config: Mapping[str, Any], key: str, default: int, *, minimum: int = 0) -> int:
    try:
        value = int(config.get(key, default))
    except (TypeError, ValueError):
        return default
    return max(minimum, value)


@dataclass(frozen=True)
class SyncSettings:
    page_size: int = 1000
    order_chunk_size: int = 20
    checkpoint_rows: int = 0
    checkpoint_seconds: int = 0
    source_max_attempts: int = 5
    store_max_attempts: int = 3
    statement_timeout_ms: int = DEFAULT_STATEMENT_TIMEOUT_MS

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SyncSettings":
        """Build settings from a Flask config mapping (``SYNC_*`` keys)."""

        return cls(
            page_size=_int_setting(config, "SYNC_PAGE_SIZE", 1000, minimum=1),
            order_chunk_size=_int_setting(config, "SYNC_ORDER_CHUNK_SIZE", 20, minimum=1),
            checkpoint_rows=_int_setting(config, "SYNC_WATERMARK_CHECKPOINT_ROWS", 0),
            checkpoint_seconds=_int_setting(config, "SYNC_WATERMARK_CHECKPOINT_SECONDS", 0),
            source_max_attempts=_int_setting(config, "SYNC_SOURCE_MAX_ATTEMPTS", 5, minimum=1),
            store_max_attempts=_int_setting(config, "SYNC_STORE_MAX_ATTEMPTS", 3, minimum=1),
            statement_timeout_ms=_int_setting(
                config,
                "SYNC_SOURCE_STATEMENT_TIMEOUT_MS",
                DEFAULT_STATEMENT_TIMEOUT_MS,
                minimum=1,
            ),
        )


@dataclass
class SyncContext:
    tenant: Tenant
    session: Session
    source: SourceConnection
    config: TenantSyncConfig
    settings: SyncSettings = field(default_factory=SyncSettings)
    force_full_resync: bool = False
    sleep: Callable[[float], None] = time.sleep
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("b2bsync.sync"))
    lookup_cache: dict[tuple[str, str], dict[str, int]] = field(default_factory=dict)
    entity_cache: dict[str, dict[str, Any]] = field(default_factory=dict)
    store: ResilientExecutor = field(init=False)

    def __post_init__(self) -> None:
        self.store = ResilientExecutor(
            STORE_RETRY_POLICY.with_attempts(self.settings.store_max_attempts),
            name="canonical store",
            target="store",
            reconnect=self._reset_store_session,
            sleep=self.sleep,
            logger=self.logger,
        )

    @property
    def tenant_id(self) -> int:
        return self.tenant.id

    def _reset_store_session(self) -> None:
        self.session.rollback()

    def lookups(self, entity: str, lookup_field: str) -> dict[str, int]:
        """Memoized ``key -> id`` hits for one entity/lookup-field pair."""

        return self.lookup_cache.setdefault((entity, lookup_field), {})

    def entities(self, entity: str) -> dict[str, Any]:
        """Canonical records of ``entity`` seen this run, keyed by external id."""

        return self.entity_cache.setdefault(entity, {})

    def log_extra(self, **values: Any) -> dict[str, Any]:
        extra = {"sync_tenant_id": self.tenant.id, "sync_tenant_slug": self.tenant.slug}
        extra.update({f"sync_{key}": value for key, value in values.items()})
        return extra
