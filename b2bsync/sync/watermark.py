"""
Monotonic watermark commits into the tenant configuration blob.

The committer tracks the greatest source change timestamp among rows that
were written and persists it to ``<schema_key>.last_processed_at``. Writes
re-read the tenant blob first, touch only that one path and never store a
value that is not strictly greater than what is already there.

Periodic checkpoints are optional (``SYNC_WATERMARK_CHECKPOINT_ROWS`` /
``SYNC_WATERMARK_CHECKPOINT_SECONDS``). Extraction is ordered by the change
column and resumes with a strict ``>``, so more rows stamped with the current
maximum may still be unread. A checkpoint therefore stores the greatest
written timestamp strictly below that maximum; only :meth:`commit` stores the
maximum itself.
"""

from __future__ import annotations

import time
from copy import deepcopy
from datetime import datetime
from typing import Callable

from sqlalchemy.orm.attributes import flag_modified

from ..models import Tenant
from .context import SyncContext
from .mapping import format_watermark, parse_timestamp
from .metrics import record_watermark
from .schema_config import WATERMARK_KEY


class WatermarkCommitter:
    """Advance one entity's watermark only past durably written rows."""

    def __init__(
        self,
        context: SyncContext,
        schema_key: str,
        *,
        entity: str,
        checkpoint_rows: int = 0,
        checkpoint_seconds: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.context = context
        self.schema_key = schema_key
        self.entity = entity
        self.checkpoint_rows = max(0, int(checkpoint_rows))
        self.checkpoint_seconds = max(0, int(checkpoint_seconds))
        self.clock = clock
        self.candidate: datetime | None = None
        self.committed: datetime | None = None
        # greatest observed timestamp strictly below ``candidate``
        self.settled: datetime | None = None
        self._rows_since_checkpoint = 0
        self._last_checkpoint_at = clock()

    def observe(self, value: datetime | str | None) -> None:
        """Record the change timestamp of a row that was written."""

        ts = parse_timestamp(value)
        self._rows_since_checkpoint += 1
        if ts is None:
            return
        if self.candidate is None or ts > self.candidate:
            self.settled = self.candidate
            self.candidate = ts
        elif ts < self.candidate and (self.settled is None or ts > self.settled):
            self.settled = ts

    def maybe_checkpoint(self) -> bool:
        """Persist the settled timestamp if a row or time threshold has been reached."""

        due = False
        if self.checkpoint_rows and self._rows_since_checkpoint >= self.checkpoint_rows:
            due = True
        if self.checkpoint_seconds and self.clock() - self._last_checkpoint_at >= self.checkpoint_seconds:
            due = True
        if not due:
            return False
        self._rows_since_checkpoint = 0
        self._last_checkpoint_at = self.clock()
        return self._persist(self.settled, reason="checkpoint")

    def commit(self) -> bool:
        """Final write at the end of an entity run."""

        return self._persist(self.candidate, reason="final")

    def _persist(self, candidate: datetime | None, *, reason: str) -> bool:
        if candidate is None:
            return False
        if self.committed is not None and candidate <= self.committed:
            return False

        session = self.context.session
        tenant_id = self.context.tenant_id

        def _write() -> bool:
            tenant = session.get(Tenant, tenant_id)
            session.refresh(tenant, attribute_names=["sync_config"])
            blob = deepcopy(tenant.sync_config or {})
            entry = blob.get(self.schema_key)
            if not isinstance(entry, dict):
                entry = {}
            stored = parse_timestamp(entry.get(WATERMARK_KEY))
            if stored is not None and candidate <= stored:
                return False
            entry[WATERMARK_KEY] = format_watermark(candidate)
            blob[self.schema_key] = entry
            tenant.sync_config = blob
            flag_modified(tenant, "sync_config")
            session.commit()
            return True

        written = self.context.store.call(_write)
        self.committed = candidate
        if written:
            record_watermark(entity=self.entity, timestamp=candidate.timestamp())
            self.context.logger.info(
                "Advanced %s watermark to %s (%s)",
                self.schema_key,
                format_watermark(candidate),
                reason,
                extra=self.context.log_extra(
                    entity=self.entity,
                    watermark=format_watermark(candidate),
                    watermark_reason=reason,
                ),
            )
        return written
