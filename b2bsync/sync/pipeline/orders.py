"""
Order synchronizer.

Order sources are flattened: one row per line item, with the order columns
repeated. Rows are grouped by the order external id; the first row of a
group carries the order values and every row of the group becomes an item.
An order's items are replaced on every resync, so incremental runs select the
orders that changed and then re-read all of their rows.
"""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Mapping, Sequence

from ...models import Customer, Order, Product, Representative
from ..errors import ConfigurationError
from ..extractor import IncrementalExtractor, quote_ident
from ..mapping import (
    FieldMapping,
    clean_str,
    collect_columns,
    lookup_field_option,
    parse_timestamp,
    parse_ymd,
    primary_column,
    to_bool_loose,
    to_decimal_loose,
    to_int_loose,
)
from ..reconcile import KeyStrategy, ReconciledRow, int_key
from ..writer import OrderItemReplacer, WriteResult
from .base import WATERMARK_FIELD, EntitySynchronizer, Relations, json_value, text_value

_TEXT_FIELDS = (
    "discount_coupon",
    "current_status",
    "current_status_code",
    "delivery_state",
    "delivery_city",
    "delivery_neighborhood",
    "delivery_zip",
    "delivery_number",
    "delivery_address",
    "delivery_complement",
)
_AMOUNT_FIELDS = ("total_discount", "shipping_amount", "total_amount")
_REPRESENTATIVE_RELATIONS = ("representative_id", "assistant_id", "supervisor_id")


class OrderSynchronizer(EntitySynchronizer):
    entity = "orders"
    model = Order
    unique_keys = ("external_id", "order_code")
    legacy_field = "order_code"
    # full extraction is ordered by order key, not by change time
    supports_checkpoints = False

    def __init__(self, context):
        super().__init__(context)
        self.chunk_size = context.settings.order_chunk_size
        self.item_mappings: dict[str, FieldMapping] = {}
        self.raw_item_fields: Mapping[str, Any] = {}
        self.groups: dict[str, list[Mapping[str, Any]]] = {}
        self.replacer = OrderItemReplacer(context)

    def key_strategy(self) -> KeyStrategy:
        return KeyStrategy(
            entity=self.entity,
            model=Order,
            attribute="order_code",
            label="order_code",
            normalize=int_key,
            on_missing="skip",
        )

    # Schema ----------------------------------------------------------------------

    def load_schema(self):
        schema = super().load_schema()
        self.raw_item_fields = dict(schema.item_fields)
        self.item_mappings = self.parse_mappings(schema.item_fields)
        if "external_id" not in self.item_mappings:
            raise ConfigurationError(
                f"'{self.schema_key}.orderItemFields.external_id' is not mapped.",
                config_key=f"{self.schema_key}.orderItemFields.external_id",
            )
        if self.order_key_column() is None:
            raise ConfigurationError(
                f"'{self.schema_key}.orderFields.external_id' must read a source column.",
                config_key=f"{self.schema_key}.orderFields.external_id",
            )
        return schema

    @property
    def only_insert(self) -> bool:
        return bool(to_bool_loose(self.schema.option("only_insert")) if self.schema else False)

    def order_key_column(self) -> str | None:
        return primary_column(self.mappings.get("external_id"))

    def watermark_mapping(self) -> FieldMapping | None:
        return self.mappings.get(WATERMARK_FIELD) or self.item_mappings.get(WATERMARK_FIELD)

    def watermark_column(self) -> str | None:
        return primary_column(self.watermark_mapping())

    def extra_columns(self) -> list[str]:
        return collect_columns(self.raw_item_fields)

    def extraction_filters(self) -> tuple[list[str], dict[str, Any]]:
        column = primary_column(self.mappings.get("order_date"))
        clauses: list[str] = []
        params: dict[str, Any] = {}
        if not column or self.schema is None:
            return clauses, params
        date_from = clean_str(self.schema.option("order_date_from"))
        date_to = clean_str(self.schema.option("order_date_to"))
        if date_from:
            clauses.append(f"{quote_ident(column)} >= :order_date_from")
            params["order_date_from"] = date_from
        if date_to:
            clauses.append(f"{quote_ident(column)} <= :order_date_to")
            params["order_date_to"] = date_to
        return clauses, params

    # Extraction ------------------------------------------------------------------

    def order_key(self, row: Mapping[str, Any]) -> str | None:
        return clean_str(self.value(row, "external_id"))

    def iter_batches(self, extractor: IncrementalExtractor) -> Iterator[list[dict]]:
        parent_column = self.order_key_column()
        item_order = [primary_column(self.item_mappings.get("external_id"))]
        if extractor.incremental:
            keys = extractor.changed_parent_keys(parent_column)
            self.summary.bump("changed_orders", len(keys))
            if not keys:
                return
            pages = extractor.iter_rows_for_parents(parent_column, keys, order_by=item_order)
        else:
            pages = extractor.iter_all_rows_by_parent(parent_column, order_by=item_order)
        yield from self.group_pages(pages)

    def group_pages(self, pages: Iterable[Sequence[Mapping[str, Any]]]) -> Iterator[list[dict]]:
        """Group rows by order, holding back the last group of a page until it is complete."""

        pending: dict[str, list[Mapping[str, Any]]] = {}
        for page in pages:
            loose: list[Mapping[str, Any]] = []
            for row in page:
                key = self.order_key(row)
                if key is None:
                    loose.append(row)
                    continue
                pending.setdefault(key, []).append(row)
            complete = list(pending)[:-1]
            batch = self._emit(complete, pending, loose)
            if batch:
                yield batch
        batch = self._emit(list(pending), pending, [])
        if batch:
            yield batch

    def _emit(self, keys, pending, loose) -> list[dict]:
        self.groups = {}
        heads: list[dict] = list(loose)
        for key in keys:
            rows = pending.pop(key)
            self.groups[key] = rows
            heads.append(rows[0])
        return heads

    def watermark_values(self, record: ReconciledRow) -> list[Any]:
        mapping = self.watermark_mapping()
        rows = self.groups.get(record.external_id, [record.row])
        return [self.value(row, WATERMARK_FIELD, {WATERMARK_FIELD: mapping} if mapping else {}) for row in rows]

    # Relations -------------------------------------------------------------------

    def resolve_relations(self, rows: Sequence[Mapping[str, Any]]) -> Relations:
        relations: Relations = {}
        if "customer_id" in self.mappings:
            relations["customer_id"] = self.resolver.resolve(
                Customer,
                lookup_field_option(self.mappings.get("customer_id")),
                self.relation_keys(rows, "customer_id"),
                entity="customers",
                relation="customer_id",
            )
        for name in _REPRESENTATIVE_RELATIONS:
            if name in self.mappings:
                relations[name] = self.resolver.resolve(
                    Representative,
                    lookup_field_option(self.mappings.get(name)),
                    self.relation_keys(rows, name),
                    entity="representatives",
                    relation=name,
                )
        return relations

    # Values ----------------------------------------------------------------------

    def values_for(self, record: ReconciledRow, relations: Relations) -> dict[str, Any] | None:
        if self.only_insert and not record.created:
            self.summary.reconcile.bump("skipped_existing_orders")
            return None
        row = record.row
        values = self.mapped_values(
            row,
            {
                **{name: text_value for name in _TEXT_FIELDS},
                **{name: to_decimal_loose for name in _AMOUNT_FIELDS},
                "order_date": parse_timestamp,
                "payment_date": parse_timestamp,
                "delivery_date": parse_ymd,
                "delivery_days": to_int_loose,
            },
        )
        values["order_code"] = record.legacy_key
        if self.schema is not None and not self.schema.single_table and "metadata" in self.mappings:
            values["metadata_json"] = json_value(self.value(row, "metadata"))

        for name in ("customer_id", *_REPRESENTATIVE_RELATIONS):
            key = clean_str(self.value(row, name))
            if key is not None:
                values[name] = relations.get(name, {}).get(key)
        return values

    # Items -----------------------------------------------------------------------

    def item_value(self, row: Mapping[str, Any], *names: str) -> Any:
        for name in names:
            value = self.value(row, name, self.item_mappings)
            if value is not None:
                return value
        return None

    def item_payload(self, row: Mapping[str, Any], sku: int, products: Mapping[str, int]) -> dict[str, Any]:
        """Every item column is rewritten on replacement, nulls included."""

        return {
            "external_id": clean_str(self.item_value(row, "external_id")),
            "sku": sku,
            "product_id": products.get(str(sku)),
            "unit_price": to_decimal_loose(self.item_value(row, "unit_price")),
            "net_unit_price": to_decimal_loose(self.item_value(row, "net_unit_price")),
            "quantity": to_int_loose(self.item_value(row, "quantity")),
            "item_type": text_value(self.item_value(row, "item_type")),
            "service_ref_sku": to_int_loose(self.item_value(row, "service_ref_sku")),
            "commission": to_decimal_loose(self.item_value(row, "commission", "comission")),
            "assistant_commission": to_decimal_loose(
                self.item_value(row, "assistant_commission", "assistant_comission")
            ),
            "supervisor_commission": to_decimal_loose(
                self.item_value(row, "supervisor_commission", "supervisor_comission")
            ),
            "metadata_json": json_value(self.item_value(row, "metadata")),
        }

    def after_write(self, result: WriteResult) -> None:
        if not result.written:
            return
        skus: set[str] = set()
        for record in result.written:
            for row in self.groups.get(record.external_id, []):
                sku = to_int_loose(self.item_value(row, "sku"))
                if sku:
                    skus.add(str(sku))
        products = self.resolver.resolve(Product, "sku", skus, entity="products", relation="sku") if skus else {}

        for record in result.written:
            payloads: list[dict[str, Any]] = []
            retained: list[str] = []
            for row in self.groups.get(record.external_id, []):
                item_external_id = clean_str(self.item_value(row, "external_id"))
                if item_external_id is None:
                    self.summary.reconcile.bump("skipped_items_missing_external_id")
                    continue
                sku = to_int_loose(self.item_value(row, "sku"))
                if not sku:
                    retained.append(item_external_id)
                    self.summary.reconcile.bump("skipped_items_missing_sku")
                    continue
                payloads.append(self.item_payload(row, sku, products))
            written = self.replacer.replace(record.entity, payloads, retain=retained)
            self.summary.bump("items_written", written)
