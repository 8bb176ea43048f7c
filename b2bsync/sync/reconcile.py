"""
Entity reconciliation: decide which canonical record each source row updates.

Lookup order is always ``external_id`` first, then the entity's legacy key
(tax id, document, sku, order code or lower-cased name) for records created
before external ids were tracked. The legacy key and its rules differ per
entity and are described by a :class:`KeyStrategy`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Literal, Mapping, Sequence

from sqlalchemy import select

from .context import SyncContext
from .extractor import chunk_records
from .mapping import clean_str, evaluate, parse_field_mapping, to_int_loose

LOOKUP_CHUNK_SIZE = 500


def text_key(value: Any) -> str | None:
    return clean_str(value)


def lower_text_key(value: Any) -> str | None:
    text = clean_str(value)
    return text.lower() if text else None


def int_key(value: Any) -> int | None:
    number = to_int_loose(value)
    return number if number else None


@dataclass(frozen=True)
class KeyStrategy:
    """How one entity kind falls back from ``external_id`` to its legacy key.

    ``on_missing`` decides what happens to a row whose legacy key is empty:
    ``skip`` drops the row, ``count`` keeps it but counts the gap, ``ignore``
    keeps it silently. ``unique_in_batch`` rejects a second row carrying the
    same legacy key within one batch.
    """

    entity: str
    model: type
    attribute: str
    label: str
    normalize: Callable[[Any], Any] = text_key
    on_missing: Literal["skip", "count", "ignore"] = "ignore"
    unique_in_batch: bool = False

    @property
    def missing_counter(self) -> str:
        return f"skipped_missing_{self.label}"

    @property
    def duplicate_counter(self) -> str:
        return f"duplicated_{self.label}_in_batch"


@dataclass
class ReconcileCounters:
    skipped_missing_external_id: int = 0
    duplicated_external_id_in_batch: int = 0
    skipped_external_id_conflicts: int = 0
    extra: dict[str, int] = field(default_factory=dict)

    def bump(self, name: str, amount: int = 1) -> None:
        if hasattr(self, name) and name != "extra":
            setattr(self, name, getattr(self, name) + amount)
        else:
            self.extra[name] = self.extra.get(name, 0) + amount

    @property
    def skipped(self) -> int:
        return (
            self.skipped_missing_external_id
            + self.duplicated_external_id_in_batch
            + sum(value for key, value in self.extra.items() if key.startswith(("skipped_", "duplicated_")))
        )

    def to_dict(self) -> dict[str, int]:
        payload = {
            "skipped_missing_external_id": self.skipped_missing_external_id,
            "duplicated_external_id_in_batch": self.duplicated_external_id_in_batch,
            "skipped_external_id_conflicts": self.skipped_external_id_conflicts,
        }
        payload.update(self.extra)
        return payload


@dataclass
class ReconciledRow:
    row: Mapping[str, Any]
    entity: Any
    external_id: str
    legacy_key: Any
    created: bool = False
    matched_by: Literal["external_id", "legacy", "new"] = "new"


def assign(entity: Any, values: Mapping[str, Any]) -> None:
    """Set only the non-null values; absent or null fields keep what is stored."""

    for name, value in values.items():
        if value is not None:
            setattr(entity, name, value)


class EntityReconciler:
    """Resolve a batch of source rows to canonical entities for one tenant."""

    def __init__(
        self,
        context: SyncContext,
        strategy: KeyStrategy,
        external_id_mapping: Any,
        *,
        legacy_key_for: Callable[[Mapping[str, Any], str], Any] | None = None,
        counters: ReconcileCounters | None = None,
        factory: Callable[[str, Any], Any] | None = None,
    ) -> None:
        self.context = context
        self.strategy = strategy
        self.external_id_mapping = parse_field_mapping(external_id_mapping)
        self.legacy_key_for = legacy_key_for or (lambda row, external_id: None)
        self.counters = counters or ReconcileCounters()
        self.factory = factory or self._default_factory

    def _default_factory(self, external_id: str, legacy_key: Any) -> Any:
        entity = self.strategy.model(tenant_id=self.context.tenant_id, external_id=external_id)
        if legacy_key is not None:
            setattr(entity, self.strategy.attribute, legacy_key)
        return entity

    def external_id_for(self, row: Mapping[str, Any]) -> str | None:
        return clean_str(evaluate(self.external_id_mapping, row))

    # Prefetch ------------------------------------------------------------------

    def _query_in(self, attribute: str, keys: Sequence[Any]) -> list[Any]:
        model = self.strategy.model
        column = getattr(model, attribute)
        found: list[Any] = []
        for key_chunk in chunk_records(keys, LOOKUP_CHUNK_SIZE):
            stmt = (
                select(model)
                .where(model.tenant_id == self.context.tenant_id)
                .where(column.in_(key_chunk))
                .order_by(model.id.asc())
            )
            found.extend(self.context.store.call(lambda: list(self.context.session.scalars(stmt))))
        return found

    def prefetch_by_external_id(self, external_ids: Iterable[str]) -> dict[str, Any]:
        cache = self.context.entities(self.strategy.entity)
        missing = [key for key in dict.fromkeys(external_ids) if key not in cache]
        if missing:
            for entity in self._query_in("external_id", missing):
                key = clean_str(entity.external_id)
                if key and key not in cache:
                    cache[key] = entity
        return cache

    def prefetch_by_legacy_key(self, legacy_keys: Iterable[Any]) -> dict[Any, Any]:
        keys = [key for key in dict.fromkeys(legacy_keys) if key is not None]
        by_key: dict[Any, Any] = {}
        if not keys:
            return by_key
        for entity in self._query_in(self.strategy.attribute, keys):
            key = self.strategy.normalize(getattr(entity, self.strategy.attribute))
            if key is not None and key not in by_key:
                by_key[key] = entity
        return by_key

    # Reconcile -----------------------------------------------------------------

    def reconcile(self, rows: Iterable[Mapping[str, Any]]) -> list[ReconciledRow]:
        """Match each row to a canonical entity, creating new ones as needed.

        The first occurrence of an external id within the batch wins; later
        duplicates are counted and dropped.
        """

        strategy = self.strategy
        candidates: list[tuple[Mapping[str, Any], str, Any]] = []
        seen_external: set[str] = set()
        seen_legacy: set[Any] = set()

        for row in rows:
            external_id = self.external_id_for(row)
            if external_id is None:
                self.counters.bump("skipped_missing_external_id")
                continue
            if external_id in seen_external:
                self.counters.bump("duplicated_external_id_in_batch")
                continue
            legacy_key = strategy.normalize(self.legacy_key_for(row, external_id))
            if legacy_key is None:
                if strategy.on_missing == "skip":
                    self.counters.bump(strategy.missing_counter)
                    continue
                if strategy.on_missing == "count":
                    self.counters.bump(strategy.missing_counter)
            elif strategy.unique_in_batch:
                if legacy_key in seen_legacy:
                    self.counters.bump(strategy.duplicate_counter)
                    continue
                seen_legacy.add(legacy_key)
            seen_external.add(external_id)
            candidates.append((row, external_id, legacy_key))

        if not candidates:
            return []

        by_external = self.prefetch_by_external_id(external_id for _, external_id, _ in candidates)
        unmatched_legacy = [legacy for _, external_id, legacy in candidates if external_id not in by_external]
        by_legacy = self.prefetch_by_legacy_key(unmatched_legacy)

        reconciled: list[ReconciledRow] = []
        for row, external_id, legacy_key in candidates:
            entity = by_external.get(external_id)
            if entity is not None:
                reconciled.append(ReconciledRow(row, entity, external_id, legacy_key, matched_by="external_id"))
                continue

            entity = by_legacy.get(legacy_key) if legacy_key is not None else None
            if entity is not None:
                current = clean_str(entity.external_id)
                if current is None:
                    entity.external_id = external_id
                    by_external[external_id] = entity
                elif current != external_id:
                    self.counters.bump("skipped_external_id_conflicts")
                    self.context.logger.warning(
                        "%s legacy key %r already bound to external id %s; keeping it (incoming %s)",
                        strategy.entity,
                        legacy_key,
                        current,
                        external_id,
                        extra=self.context.log_extra(entity=strategy.entity),
                    )
                reconciled.append(ReconciledRow(row, entity, external_id, legacy_key, matched_by="legacy"))
                continue

            entity = self.factory(external_id, legacy_key)
            by_external[external_id] = entity
            reconciled.append(ReconciledRow(row, entity, external_id, legacy_key, created=True, matched_by="new"))
        return reconciled

    def forget(self, external_id: str) -> None:
        self.context.entities(self.strategy.entity).pop(external_id, None)
