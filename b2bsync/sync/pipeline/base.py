"""
Shared driver for one entity kind: extract, reconcile, resolve, write, advance.

Concrete synchronizers describe their key strategy, the canonical values a
row produces and any relations to resolve; the batch loop, counters, metrics
and watermark handling live here.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Sequence

from sqlalchemy.exc import DBAPIError

from ..context import SyncContext
from ..errors import ConfigurationError, RowLevelError
from ..extractor import IncrementalExtractor
from ..mapping import (
    FieldMapping,
    MappingParseError,
    clean_str,
    collect_columns,
    evaluate,
    parse_field_mapping,
    primary_column,
)
from ..metrics import record_batch, record_rows
from ..reconcile import EntityReconciler, KeyStrategy, ReconcileCounters, ReconciledRow, assign
from ..resilience import is_missing_relation_error
from ..resolver import AssociativeResolver
from ..schema_config import SCHEMA_KEYS, EntitySchema
from ..watermark import WatermarkCommitter
from ..writer import BatchedUpsertWriter, WriteResult

WATERMARK_FIELD = "synced_at"
MAX_ERROR_SAMPLES = 20
Relations = dict[str, dict[str, int]]


@dataclass
class EntitySyncSummary:
    entity: str
    status: str = "pending"
    incremental: bool = False
    fetched: int = 0
    batches: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    conflicts: int = 0
    failed: int = 0
    reconcile: ReconcileCounters = field(default_factory=ReconcileCounters)
    details: dict[str, int] = field(default_factory=dict)
    watermark: str | None = None
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def upserted(self) -> int:
        return self.created + self.updated

    @property
    def skipped(self) -> int:
        return self.reconcile.skipped

    @property
    def total_conflicts(self) -> int:
        return self.conflicts + self.reconcile.skipped_external_id_conflicts

    def add_write(self, result: WriteResult) -> None:
        self.created += result.created
        self.updated += result.updated
        self.unchanged += result.unchanged
        self.conflicts += result.conflicts
        self.failed += result.failed

    def bump(self, name: str, amount: int = 1) -> None:
        self.details[name] = self.details.get(name, 0) + amount

    def add_error(self, error: RowLevelError) -> None:
        if len(self.errors) < MAX_ERROR_SAMPLES:
            self.errors.append(str(error))

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "status": self.status,
            "incremental": self.incremental,
            "fetched": self.fetched,
            "batches": self.batches,
            "upserted": self.upserted,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "conflicts": self.total_conflicts,
            "failed": self.failed,
            "counters": self.reconcile.to_dict(),
            "details": dict(self.details),
            "watermark": self.watermark,
            "errors": list(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
        }


def text_value(value: Any) -> str | None:
    if isinstance(value, (dict, list)):
        return None
    return clean_str(value)


def json_value(value: Any) -> Any:
    return value


class EntitySynchronizer:
    """Base class for the per-entity synchronizers."""

    entity: str = ""
    model: type
    chunk_size: int = 250
    unique_keys: Sequence[str] = ("external_id",)
    legacy_field: str | None = None
    supports_checkpoints: bool = True

    def __init__(self, context: SyncContext):
        self.context = context
        self.session = context.session
        self.logger = context.logger
        self.schema_key = SCHEMA_KEYS[self.entity]
        self.resolver = AssociativeResolver(context)
        self.summary = EntitySyncSummary(self.entity)
        self.schema: EntitySchema | None = None
        self.mappings: dict[str, FieldMapping] = {}
        self.raw_fields: Mapping[str, Any] = {}

    # Hooks ---------------------------------------------------------------------

    def key_strategy(self) -> KeyStrategy:
        raise NotImplementedError

    def entity_factory(self) -> Callable[[str, Any], Any] | None:
        return None

    def values_for(self, record: ReconciledRow, relations: Relations) -> dict[str, Any] | None:
        """Canonical values for one reconciled row; ``None`` skips the row."""

        raise NotImplementedError

    def resolve_relations(self, rows: Sequence[Mapping[str, Any]]) -> Relations:
        return {}

    def after_write(self, result: WriteResult) -> None:
        return None

    def extra_columns(self) -> list[str]:
        return []

    def extraction_filters(self) -> tuple[list[str], dict[str, Any]]:
        return [], {}

    def iter_batches(self, extractor: IncrementalExtractor) -> Iterator[list[dict]]:
        return extractor.iter_batches()

    def watermark_values(self, record: ReconciledRow) -> list[Any]:
        return [self.value(record.row, WATERMARK_FIELD)]

    # Mapping helpers -------------------------------------------------------------

    def parse_mappings(self, fields: Mapping[str, Any]) -> dict[str, FieldMapping]:
        parsed: dict[str, FieldMapping] = {}
        for name, raw in fields.items():
            try:
                mapping = parse_field_mapping(raw)
            except MappingParseError as exc:
                self.logger.warning(
                    "Ignoring unreadable %s mapping for %s: %s",
                    self.schema_key,
                    name,
                    exc,
                    extra=self.context.log_extra(entity=self.entity, field=name),
                )
                continue
            if mapping is not None:
                parsed[str(name)] = mapping
        return parsed

    def value(self, row: Mapping[str, Any], name: str, mappings: Mapping[str, FieldMapping] | None = None) -> Any:
        mapping = (self.mappings if mappings is None else mappings).get(name)
        return evaluate(mapping, row)

    def first_value(self, row: Mapping[str, Any], *names: str) -> Any:
        for name in names:
            value = self.value(row, name)
            if value is not None:
                return value
        return None

    def mapped_values(
        self,
        row: Mapping[str, Any],
        coercers: Mapping[str, Callable[[Any], Any]],
        aliases: Mapping[str, Sequence[str]] | None = None,
    ) -> dict[str, Any]:
        """Coerce every mapped canonical field; unmapped fields are left out."""

        aliases = aliases or {}
        values: dict[str, Any] = {}
        for target, coerce in coercers.items():
            names = aliases.get(target, (target,))
            if not any(name in self.mappings for name in names):
                continue
            values[target] = coerce(self.first_value(row, *names))
        return values

    def relation_keys(self, rows: Sequence[Mapping[str, Any]], name: str, mappings=None) -> list[str]:
        keys = (clean_str(self.value(row, name, mappings)) for row in rows)
        return list(dict.fromkeys(key for key in keys if key is not None))

    # Run -------------------------------------------------------------------------

    def load_schema(self) -> EntitySchema:
        schema = self.context.config.require_schema(self.schema_key)
        self.schema = schema
        self.raw_fields = dict(schema.fields)
        self.mappings = self.parse_mappings(schema.fields)
        if "external_id" not in self.mappings:
            raise ConfigurationError(
                f"'{self.schema_key}.fields.external_id' is not mapped.",
                config_key=f"{self.schema_key}.fields.external_id",
            )
        return schema

    def watermark_column(self) -> str | None:
        return primary_column(self.mappings.get(WATERMARK_FIELD))

    def build_extractor(self, schema: EntitySchema) -> IncrementalExtractor:
        external_id_column = primary_column(self.mappings.get("external_id"))
        watermark_column = self.watermark_column()
        since = None if self.context.force_full_resync else schema.watermark
        columns = collect_columns(
            self.raw_fields,
            extra=[external_id_column, watermark_column, *self.extra_columns()],
        )
        extra_where, extra_params = self.extraction_filters()
        return IncrementalExtractor(
            self.context.source,
            entity=self.entity,
            table=schema.table,
            columns=columns,
            external_id_column=external_id_column,
            watermark_column=watermark_column,
            since=since,
            extra_where=extra_where,
            extra_params=extra_params,
            page_size=self.context.settings.page_size,
            logger=self.logger,
            log_extra=self.context.log_extra(entity=self.entity),
        )

    def execute(self) -> EntitySyncSummary:
        started = time.monotonic()
        schema = self.load_schema()
        try:
            self._run(schema)
        except DBAPIError as exc:
            self.summary.status = "failed"
            if is_missing_relation_error(exc):
                raise ConfigurationError(
                    f"Relation missing while syncing {self.entity} from source table '{schema.table}': {exc.orig or exc}",
                    config_key=f"{self.schema_key}.table",
                ) from exc
            raise
        except Exception:
            self.summary.status = "failed"
            raise
        finally:
            self.summary.duration_seconds = time.monotonic() - started
        self.summary.status = "succeeded"
        self.logger.info(
            "Synced %s: upserted=%s skipped=%s conflicts=%s failed=%s",
            self.entity,
            self.summary.upserted,
            self.summary.skipped,
            self.summary.conflicts,
            self.summary.failed,
            extra=self.context.log_extra(entity=self.entity, summary=self.summary.to_dict()),
        )
        return self.summary

    def _run(self, schema: EntitySchema) -> None:
        extractor = self.build_extractor(schema)
        self.summary.incremental = extractor.incremental
        settings = self.context.settings
        committer = WatermarkCommitter(
            self.context,
            self.schema_key,
            entity=self.entity,
            checkpoint_rows=settings.checkpoint_rows if self.supports_checkpoints else 0,
            checkpoint_seconds=settings.checkpoint_seconds if self.supports_checkpoints else 0,
        )
        reconciler = EntityReconciler(
            self.context,
            self.key_strategy(),
            self.raw_fields.get("external_id"),
            legacy_key_for=self.legacy_key,
            counters=self.summary.reconcile,
            factory=self.entity_factory(),
        )
        writer = BatchedUpsertWriter(
            self.context,
            self.model,
            entity=self.entity,
            chunk_size=self.chunk_size,
            unique_keys=self.unique_keys,
        )

        self.logger.info(
            "Starting %s sync from %s (incremental=%s)",
            self.entity,
            schema.table,
            extractor.incremental,
            extra=self.context.log_extra(
                entity=self.entity,
                table=schema.table,
                incremental=extractor.incremental,
                force_full_resync=self.context.force_full_resync,
            ),
        )
        extractor.estimate_count()

        for batch in self.iter_batches(extractor):
            self.process_batch(batch, reconciler, writer, committer)

        committer.commit()
        if committer.committed is not None:
            self.summary.watermark = committer.committed.isoformat()

    def legacy_key(self, row: Mapping[str, Any], external_id: str) -> Any:
        if not self.legacy_field:
            return None
        return self.value(row, self.legacy_field)

    def process_batch(
        self,
        batch: Sequence[Mapping[str, Any]],
        reconciler: EntityReconciler,
        writer: BatchedUpsertWriter,
        committer: WatermarkCommitter,
    ) -> WriteResult:
        started = time.monotonic()
        self.summary.fetched += len(batch)
        self.summary.batches += 1
        skipped_before = self.summary.skipped
        try:
            with self.session.no_autoflush:
                records = reconciler.reconcile(batch)
                relations = self.resolve_relations([record.row for record in records])
                to_write: list[ReconciledRow] = []
                for record in records:
                    try:
                        values = self.values_for(record, relations)
                    except RowLevelError as exc:
                        self.summary.reconcile.bump("skipped_row_errors")
                        self.summary.add_error(exc)
                        self.logger.warning(
                            "Skipping %s %s: %s",
                            self.entity,
                            record.external_id,
                            exc,
                            extra=self.context.log_extra(entity=self.entity, external_id=record.external_id),
                        )
                        values = None
                    if values is None:
                        if record.created:
                            reconciler.forget(record.external_id)
                        continue
                    assign(record.entity, values)
                    to_write.append(record)

            result = writer.write(to_write)
            self.after_write(result)
            for record in result.written:
                for value in self.watermark_values(record):
                    committer.observe(value)
            committer.maybe_checkpoint()
        except Exception:
            record_batch(entity=self.entity, status="failure", duration_seconds=time.monotonic() - started)
            raise

        self.summary.add_write(result)
        for error in result.errors:
            self.summary.add_error(error)
        record_batch(entity=self.entity, status="success", duration_seconds=time.monotonic() - started)
        record_rows(entity=self.entity, outcome="upserted", count=result.upserted)
        record_rows(entity=self.entity, outcome="skipped", count=self.summary.skipped - skipped_before)
        record_rows(entity=self.entity, outcome="conflicts", count=result.conflicts)
        record_rows(entity=self.entity, outcome="failed", count=result.failed)
        self.logger.debug(
            "Processed %s batch: %s rows, %s written",
            self.entity,
            len(batch),
            len(result.written),
            extra=self.context.log_extra(entity=self.entity, batch_rows=len(batch), **result.to_dict()),
        )
        return result
