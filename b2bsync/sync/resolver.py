"""
Batched resolution of references to other canonical entities.

A relation mapping (for example ``representative_id``) evaluates to a key in
the referenced entity's configured lookup field. Keys of a whole batch are
resolved with one ``IN`` query per lookup field, and hits are memoized on the
run context so later batches only query what they have not seen.
"""

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import func, or_, select

from .context import SyncContext
from .extractor import chunk_records
from .mapping import clean_str

LOOKUP_FIELDS = ("external_id", "internal_code", "document", "name", "category")
LOOKUP_ALIASES = {"tax_id": "document"}
SAMPLE_KEYS_IN_WARNING = 5
RESOLVE_CHUNK_SIZE = 500


def normalize_lookup_field(value: Any, default: str = "external_id") -> str:
    name = str(value or "").strip()
    name = LOOKUP_ALIASES.get(name, name)
    return name if name in LOOKUP_FIELDS else default


def _strip_zeros(value: str) -> str:
    return value.lstrip("0") or "0"


class AssociativeResolver:
    """Resolve lookup keys to canonical ids for one run."""

    def __init__(self, context: SyncContext):
        self.context = context

    def _normalizer(self, lookup_field: str):
        if lookup_field == "internal_code":
            return _strip_zeros
        return lambda value: value

    def resolve(
        self,
        model: type,
        lookup_field: str,
        keys: Iterable[Any],
        *,
        entity: str | None = None,
        relation: str | None = None,
    ) -> dict[str, int]:
        """Map each non-empty key to the id of the matching record, when one exists.

        Unmatched keys are simply absent from the result.
        """

        entity = entity or model.__tablename__
        if lookup_field != "sku":
            lookup_field = normalize_lookup_field(lookup_field)
        normalize = self._normalizer(lookup_field)
        wanted: dict[str, str] = {}
        for raw in keys:
            key = clean_str(raw)
            if key is not None:
                wanted[key] = normalize(key)
        if not wanted:
            return {}

        cache = self.context.lookups(entity, lookup_field)
        misses = sorted({normalized for normalized in wanted.values() if normalized not in cache})
        if misses:
            self._load(model, lookup_field, misses, cache, normalize)

        resolved = {key: cache[normalized] for key, normalized in wanted.items() if normalized in cache}
        if not resolved:
            self.context.logger.warning(
                "No %s matched %s lookup on %s for %s candidate keys (sample: %s)",
                entity,
                lookup_field,
                relation or "relation",
                len(wanted),
                ", ".join(list(wanted)[:SAMPLE_KEYS_IN_WARNING]),
                extra=self.context.log_extra(
                    entity=entity,
                    lookup_field=lookup_field,
                    relation=relation,
                    candidate_count=len(wanted),
                ),
            )
        return resolved

    def _column(self, model: type, lookup_field: str):
        column = getattr(model, lookup_field, None)
        if column is None and lookup_field == "document":
            column = getattr(model, "tax_id", None)
        return column

    def _load(self, model: type, lookup_field: str, keys: list[str], cache: dict[str, int], normalize) -> None:
        column = self._column(model, lookup_field)
        if column is None:
            self.context.logger.warning(
                "%s has no %s column to resolve by",
                model.__tablename__,
                lookup_field,
                extra=self.context.log_extra(entity=model.__tablename__, lookup_field=lookup_field),
            )
            return
        for key_chunk in chunk_records(keys, RESOLVE_CHUNK_SIZE):
            condition = column.in_(key_chunk)
            if lookup_field == "internal_code":
                condition = or_(condition, func.ltrim(column, "0").in_(key_chunk))
            stmt = (
                select(model.id, column)
                .where(model.tenant_id == self.context.tenant_id)
                .where(condition)
                .order_by(model.id.asc())
            )
            rows = self.context.store.call(lambda: self.context.session.execute(stmt).all())
            for record_id, value in rows:
                stored = clean_str(value)
                if stored is None:
                    continue
                cache.setdefault(normalize(stored), record_id)

    def resolve_one(self, model: type, lookup_field: str, key: Any, **kwargs: Any) -> int | None:
        text = clean_str(key)
        if text is None:
            return None
        return self.resolve(model, lookup_field, [text], **kwargs).get(text)
