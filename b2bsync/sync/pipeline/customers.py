"""
Customer synchronizer.

``tax_id`` is the legacy key. Rows without one are still written, keyed by
their external id, and counted under ``skipped_missing_tax_id``.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ...models import Customer, CustomerGroup, Representative
from ..mapping import (
    build_phones_from_csv,
    clean_str,
    lookup_field_option,
    parse_csv_columns,
    parse_date_loose,
    parse_ymd,
    to_bool_loose,
)
from ..reconcile import KeyStrategy, ReconciledRow
from .base import EntitySynchronizer, Relations, text_value

_TEXT_FIELDS = (
    "legal_name",
    "trade_name",
    "person_type",
    "gender",
    "email",
    "obs",
    "segmentation",
    "address",
    "number",
    "complement",
    "neighborhood",
    "zip",
    "city",
    "state",
)


class CustomerSynchronizer(EntitySynchronizer):
    entity = "customers"
    model = Customer
    chunk_size = 250
    legacy_field = "tax_id"

    def key_strategy(self) -> KeyStrategy:
        return KeyStrategy(
            entity=self.entity,
            model=Customer,
            attribute="tax_id",
            label="tax_id",
            on_missing="count",
        )

    def entity_factory(self):
        tenant_id = self.context.tenant_id

        def _create(external_id: str, tax_id: Any) -> Customer:
            return Customer(tenant_id=tenant_id, external_id=external_id, tax_id=tax_id or external_id)

        return _create

    def phones_csv(self) -> str:
        raw = self.raw_fields.get("phones")
        return raw.strip() if isinstance(raw, str) else ""

    def extra_columns(self) -> list[str]:
        csv = self.phones_csv()
        return parse_csv_columns(csv) if csv else []

    def resolve_relations(self, rows: Sequence[Mapping[str, Any]]) -> Relations:
        relations: Relations = {}
        if "representative_id" in self.mappings:
            relations["representative_id"] = self.resolver.resolve(
                Representative,
                lookup_field_option(self.mappings.get("representative_id")),
                self.relation_keys(rows, "representative_id"),
                entity="representatives",
                relation="representative_id",
            )
        if "group_id" in self.mappings:
            relations["group_id"] = self.resolver.resolve(
                CustomerGroup,
                lookup_field_option(self.mappings.get("group_id")),
                self.relation_keys(rows, "group_id"),
                entity="customer_groups",
                relation="group_id",
            )
        return relations

    def values_for(self, record: ReconciledRow, relations: Relations) -> dict[str, Any] | None:
        row = record.row
        values = self.mapped_values(
            row,
            {
                **{name: text_value for name in _TEXT_FIELDS},
                "internal_code": text_value,
                "birth_date": parse_ymd,
                "source_created_at": parse_date_loose,
                "status": to_bool_loose,
            },
            aliases={
                "internal_code": ("internal_cod", "internal_code"),
                "source_created_at": ("created_at", "createdAt"),
            },
        )
        values["tax_id"] = record.legacy_key

        csv = self.phones_csv()
        if csv:
            values["phones"] = build_phones_from_csv(row, csv)
        elif "phones" in self.mappings:
            phones = self.value(row, "phones")
            values["phones"] = phones if isinstance(phones, dict) else None

        representative_key = clean_str(self.value(row, "representative_id"))
        if representative_key is not None:
            values["representative_id"] = relations.get("representative_id", {}).get(representative_key)
        group_key = clean_str(self.value(row, "group_id"))
        if group_key is not None:
            values["customer_group_id"] = relations.get("group_id", {}).get(group_key)
        return values
