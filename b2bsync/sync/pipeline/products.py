"""
Product synchronizer.

The store keeps one product per ``(tenant, sku)``, so a batch carrying the
same sku twice keeps the first row and counts the rest under
``duplicated_sku_in_batch``.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from ...models import Product
from ..mapping import RegexCleanup, evaluate, to_bool_loose, to_decimal_loose, to_int_loose
from ..reconcile import KeyStrategy, ReconciledRow
from .base import EntitySynchronizer, Relations, text_value

_TEXT_FIELDS = (
    "ean",
    "slug",
    "store_reference",
    "external_reference",
    "brand",
    "model",
    "category",
    "subcategory",
    "final_category",
    "ncm",
    "photo",
    "url",
)
_MODEL_VALUE_KEY = "__model__"


class ProductSynchronizer(EntitySynchronizer):
    entity = "products"
    model = Product
    chunk_size = 250
    unique_keys = ("external_id", "sku")
    legacy_field = "sku"

    def key_strategy(self) -> KeyStrategy:
        return KeyStrategy(
            entity=self.entity,
            model=Product,
            attribute="sku",
            label="sku",
            on_missing="skip",
            unique_in_batch=True,
        )

    def product_name(self, row) -> str | None:
        """Mapped name; a regex cleanup that found no source column cleans the model instead."""

        name = text_value(self.value(row, "name"))
        if name is not None:
            return name
        mapping = self.mappings.get("name")
        if not isinstance(mapping, RegexCleanup):
            return None
        model_value = self.value(row, "model")
        if model_value is None:
            return None
        cleaned = evaluate(
            replace(mapping, source=_MODEL_VALUE_KEY, fallback_source=""),
            {_MODEL_VALUE_KEY: model_value},
        )
        return text_value(cleaned)

    def values_for(self, record: ReconciledRow, relations: Relations) -> dict[str, Any] | None:
        row = record.row
        values = self.mapped_values(
            row,
            {
                **{name: text_value for name in _TEXT_FIELDS},
                "ecommerce_id": to_int_loose,
                "brand_ref": to_int_loose,
                "category_ref": to_int_loose,
                "weight": to_decimal_loose,
                "width": to_decimal_loose,
                "height": to_decimal_loose,
                "active": to_bool_loose,
            },
            aliases={"brand_ref": ("brand_id", "brand_ref"), "category_ref": ("category_id", "category_ref")},
        )
        values["sku"] = record.legacy_key
        values["name"] = self.product_name(row)
        if record.created and values.get("active") is None:
            values["active"] = True
        return values
