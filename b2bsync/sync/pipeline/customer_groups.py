"""Customer group synchronizer; legacy records are matched by case-insensitive name."""

from __future__ import annotations

from ...models import CustomerGroup
from ..errors import RowLevelError
from ..reconcile import KeyStrategy, ReconciledRow, lower_text_key
from .base import EntitySynchronizer, Relations, text_value


class CustomerGroupSynchronizer(EntitySynchronizer):
    entity = "customer_groups"
    model = CustomerGroup
    chunk_size = 500
    unique_keys = ("external_id", "name_key")
    legacy_field = "name"

    def key_strategy(self) -> KeyStrategy:
        return KeyStrategy(
            entity=self.entity,
            model=CustomerGroup,
            attribute="name_key",
            label="name",
            normalize=lower_text_key,
            on_missing="skip",
            unique_in_batch=True,
        )

    def values_for(self, record: ReconciledRow, relations: Relations) -> dict | None:
        name = text_value(self.value(record.row, "name"))
        if name is None:
            # a structured value (JSON lookup) cannot name a group
            raise RowLevelError("customer group name is not a scalar", external_id=record.external_id)
        return {"name": name}
