"""Entity synchronizers, registered in dependency order."""

from __future__ import annotations

from .base import EntitySynchronizer, EntitySyncSummary
from .customer_groups import CustomerGroupSynchronizer
from .customers import CustomerSynchronizer
from .orders import OrderSynchronizer
from .products import ProductSynchronizer
from .representatives import RepresentativeSynchronizer

SYNCHRONIZERS: dict[str, type[EntitySynchronizer]] = {
    "customer_groups": CustomerGroupSynchronizer,
    "representatives": RepresentativeSynchronizer,
    "customers": CustomerSynchronizer,
    "products": ProductSynchronizer,
    "orders": OrderSynchronizer,
}

__all__ = [
    "CustomerGroupSynchronizer",
    "CustomerSynchronizer",
    "EntitySyncSummary",
    "EntitySynchronizer",
    "OrderSynchronizer",
    "ProductSynchronizer",
    "RepresentativeSynchronizer",
    "SYNCHRONIZERS",
]
