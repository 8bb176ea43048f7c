"""
Batched upsert writer with per-row conflict recovery.

Entities are flushed and committed in fixed-size chunks. When a chunk hits a
unique-constraint violation (typically a concurrent insert of the same key
between lookup and write) the chunk is rolled back and its rows are written
one at a time; a row that still conflicts is re-located by its unique keys,
the new non-null values are merged over the stored record and the merge is
committed instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Sequence

from sqlalchemy import delete, inspect, select
from sqlalchemy.exc import DBAPIError, IntegrityError

from ..models import OrderItem
from .context import SyncContext
from .errors import ConfigurationError, ConstraintConflictError, RowLevelError
from .extractor import chunk_records
from .mapping import clean_str
from .reconcile import ReconciledRow
from .resilience import is_missing_relation_error

_EXCLUDED_PAYLOAD_KEYS = {"id", "created_at", "updated_at"}
MAX_RECOVERY_ATTEMPTS = 2


@dataclass
class WriteResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    conflicts: int = 0
    failed: int = 0
    written: List[ReconciledRow] = field(default_factory=list)
    errors: List[RowLevelError] = field(default_factory=list)

    @property
    def upserted(self) -> int:
        return self.created + self.updated

    def merge(self, other: "WriteResult") -> None:
        self.created += other.created
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.conflicts += other.conflicts
        self.failed += other.failed
        self.written.extend(other.written)
        self.errors.extend(other.errors)

    def to_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "conflicts": self.conflicts,
            "failed": self.failed,
        }


def snapshot_payload(entity: Any) -> dict[str, Any]:
    """Column values of ``entity`` that a retry needs to re-apply."""

    mapper = inspect(entity).mapper
    return {
        attr.key: getattr(entity, attr.key)
        for attr in mapper.column_attrs
        if attr.key not in _EXCLUDED_PAYLOAD_KEYS
    }


def classify(session, entity: Any) -> str:
    state = inspect(entity)
    if state.transient or state.pending:
        return "created"
    if session.is_modified(entity, include_collections=False):
        return "updated"
    return "unchanged"


def raise_if_missing_relation(exc: BaseException, table: str) -> None:
    if is_missing_relation_error(exc):
        raise ConfigurationError(
            f"Canonical table '{table}' does not exist; apply the expected migration before syncing.",
            config_key=table,
        ) from exc


class BatchedUpsertWriter:
    """Persist reconciled entities of one model in bounded chunks."""

    def __init__(
        self,
        context: SyncContext,
        model: type,
        *,
        entity: str,
        chunk_size: int,
        unique_keys: Sequence[str] = ("external_id",),
    ) -> None:
        self.context = context
        self.session = context.session
        self.model = model
        self.entity = entity
        self.chunk_size = max(1, int(chunk_size))
        self.unique_keys = tuple(unique_keys)
        self.table = model.__tablename__

    def write(self, rows: Iterable[ReconciledRow]) -> WriteResult:
        result = WriteResult()
        for chunk in chunk_records(rows, self.chunk_size):
            result.merge(self._write_chunk(chunk))
        return result

    # Chunk path -------------------------------------------------------------

    def _apply(self, row: ReconciledRow, payload: Mapping[str, Any], *, retry: bool, action: str) -> None:
        entity = row.entity
        if retry:
            if action == "created":
                entity.id = None
            for key, value in payload.items():
                setattr(entity, key, value)
        self.session.add(entity)

    def _flush_commit(self, chunk: Sequence[ReconciledRow], payloads, actions) -> None:
        attempt = {"count": 0}

        def _run() -> None:
            retry = attempt["count"] > 0
            attempt["count"] += 1
            for row, payload, action in zip(chunk, payloads, actions):
                self._apply(row, payload, retry=retry, action=action)
            self.session.flush()
            self.session.commit()

        self.context.store.call(_run)

    def _write_chunk(self, chunk: Sequence[ReconciledRow]) -> WriteResult:
        actions = [classify(self.session, row.entity) for row in chunk]
        payloads = [snapshot_payload(row.entity) for row in chunk]
        result = WriteResult()
        try:
            self._flush_commit(chunk, payloads, actions)
        except IntegrityError:
            self.session.rollback()
            self.context.logger.info(
                "Unique conflict in %s chunk of %s rows; retrying row by row",
                self.entity,
                len(chunk),
                extra=self.context.log_extra(entity=self.entity, chunk_size=len(chunk)),
            )
            for row, payload, action in zip(chunk, payloads, actions):
                self._write_single(row, payload, action, result)
            return result
        except DBAPIError as exc:
            self.session.rollback()
            raise_if_missing_relation(exc, self.table)
            raise

        for row, action in zip(chunk, actions):
            setattr(result, action, getattr(result, action) + 1)
            result.written.append(row)
        return result

    # Row recovery -----------------------------------------------------------

    def _flush_single(self, row: ReconciledRow, payload: Mapping[str, Any], action: str) -> None:
        def _run() -> None:
            self._apply(row, payload, retry=True, action=action)
            self.session.flush()
            self.session.commit()

        self.context.store.call(_run)

    def _relocate(self, payload: Mapping[str, Any]) -> Any:
        model = self.model
        for key in self.unique_keys:
            value = payload.get(key)
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            stmt = (
                select(model)
                .where(model.tenant_id == self.context.tenant_id)
                .where(getattr(model, key) == value)
                .order_by(model.id.asc())
            )
            found = self.context.store.call(lambda: self.session.scalars(stmt).first())
            if found is not None:
                return found
        return None

    def _merge_into(self, existing: Any, payload: Mapping[str, Any]) -> None:
        current_external = clean_str(existing.external_id)
        for key, value in payload.items():
            if value is None or key == "tenant_id":
                continue
            if key == "external_id" and current_external and current_external != clean_str(value):
                continue
            setattr(existing, key, value)

    def _write_single(self, row: ReconciledRow, payload: Mapping[str, Any], action: str, result: WriteResult) -> None:
        recovered = False
        last_error: Exception | None = None
        for _ in range(MAX_RECOVERY_ATTEMPTS):
            try:
                self._flush_single(row, payload, action)
            except IntegrityError as exc:
                self.session.rollback()
                existing = self._relocate(payload)
                if existing is None or existing is row.entity:
                    last_error = exc
                    continue
                self._merge_into(existing, payload)
                if action == "created":
                    result.conflicts += 1
                    recovered = True
                row.entity = existing
                self.context.entities(self.entity)[row.external_id] = existing
                payload = snapshot_payload(existing)
                action = "updated"
                last_error = exc
                continue
            except DBAPIError as exc:
                self.session.rollback()
                raise_if_missing_relation(exc, self.table)
                raise
            if not recovered:
                setattr(result, action, getattr(result, action) + 1)
            else:
                result.updated += 1
            result.written.append(row)
            return

        error = ConstraintConflictError(
            f"Could not write {self.entity} {row.external_id} after conflict recovery: {last_error}",
            external_id=row.external_id,
        )
        result.failed += 1
        result.errors.append(error)
        self.context.entities(self.entity).pop(row.external_id, None)
        self.context.logger.error(
            "%s",
            error,
            extra=self.context.log_extra(entity=self.entity, external_id=row.external_id),
        )


class OrderItemReplacer:
    """Replace an order's items with exactly the incoming set."""

    def __init__(self, context: SyncContext):
        self.context = context
        self.session = context.session

    def replace(self, order: Any, items: Sequence[Mapping[str, Any]], *, retain: Sequence[str] = ()) -> int:
        """Delete items absent from ``items`` and upsert the rest; returns items written.

        External ids in ``retain`` are kept as stored even though no payload
        is written for them.
        """

        incoming: dict[str, Mapping[str, Any]] = {}
        for payload in items:
            external_id = clean_str(payload.get("external_id"))
            if external_id and external_id not in incoming:
                incoming[external_id] = payload

        keep = list(dict.fromkeys([*incoming, *(key for key in retain if key)]))
        tenant_id = self.context.tenant_id
        order_id = order.id

        def _run() -> int:
            stale = delete(OrderItem).where(OrderItem.tenant_id == tenant_id, OrderItem.order_id == order_id)
            if keep:
                stale = stale.where(OrderItem.external_id.not_in(keep))
            self.session.execute(stale.execution_options(synchronize_session=False))

            existing: dict[str, OrderItem] = {}
            if incoming:
                stmt = (
                    select(OrderItem)
                    .where(OrderItem.tenant_id == tenant_id)
                    .where(OrderItem.external_id.in_(list(incoming)))
                )
                existing = {item.external_id: item for item in self.session.scalars(stmt)}

            for external_id, payload in incoming.items():
                item = existing.get(external_id)
                if item is None:
                    item = OrderItem(tenant_id=tenant_id, external_id=external_id)
                    self.session.add(item)
                item.order_id = order_id
                for key, value in payload.items():
                    if key != "external_id":
                        setattr(item, key, value)
            self.session.flush()
            self.session.commit()
            return len(incoming)

        try:
            return self.context.store.call(_run)
        except DBAPIError as exc:
            self.session.rollback()
            raise_if_missing_relation(exc, OrderItem.__tablename__)
            raise
