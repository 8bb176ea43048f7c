"""
Representative synchronizer.

Supervisors are resolved after each batch is written so that a supervisor
appearing in the same batch as its team is already present in the store.
"""

from __future__ import annotations

from typing import Any

from ...models import Representative
from ..mapping import clean_str, lookup_field_option, normalize_phone_br, to_bool_loose
from ..reconcile import KeyStrategy, ReconciledRow
from ..writer import WriteResult
from .base import EntitySynchronizer, Relations, text_value

_TEXT_FIELDS = (
    "name",
    "state",
    "city",
    "email",
    "zip",
    "address",
    "number",
    "complement",
    "neighborhood",
    "internal_code",
    "category",
    "obs",
)


class RepresentativeSynchronizer(EntitySynchronizer):
    entity = "representatives"
    model = Representative
    chunk_size = 250

    def key_strategy(self) -> KeyStrategy:
        return KeyStrategy(
            entity=self.entity,
            model=Representative,
            attribute="document",
            label="document",
            on_missing="ignore",
        )

    def legacy_key(self, row, external_id: str) -> Any:
        return self.first_value(row, "document", "tax_id")

    def values_for(self, record: ReconciledRow, relations: Relations) -> dict[str, Any] | None:
        row = record.row
        values = self.mapped_values(
            row,
            {
                **{name: text_value for name in _TEXT_FIELDS},
                "document": text_value,
                "phone": normalize_phone_br,
                "is_supervisor": to_bool_loose,
            },
            aliases={"document": ("document", "tax_id"), "is_supervisor": ("supervisor", "is_supervisor")},
        )
        if record.created and values.get("is_supervisor") is None:
            values["is_supervisor"] = False
        return values

    def after_write(self, result: WriteResult) -> None:
        if "supervisor_id" not in self.mappings or not result.written:
            return
        wanted: dict[str, str] = {}
        for record in result.written:
            key = clean_str(self.value(record.row, "supervisor_id"))
            if key is not None:
                wanted[record.external_id] = key
        if not wanted:
            return

        resolved = self.resolver.resolve(
            Representative,
            lookup_field_option(self.mappings.get("supervisor_id")),
            wanted.values(),
            entity=self.entity,
            relation="supervisor_id",
        )
        assignments = []
        for record in result.written:
            supervisor_id = resolved.get(wanted.get(record.external_id, ""))
            representative = record.entity
            if supervisor_id is None or supervisor_id == representative.id:
                continue
            if supervisor_id != representative.supervisor_id:
                assignments.append((representative, supervisor_id))
        if not assignments:
            return

        def _apply() -> None:
            for representative, supervisor_id in assignments:
                representative.supervisor_id = supervisor_id
            self.session.flush()
            self.session.commit()

        self.context.store.call(_apply)
        self.summary.bump("supervisors_linked", len(assignments))
