"""Canonical multi-tenant store models."""

from .base import BaseModel, db
from .customer import Customer, CustomerGroup
from .order import Order, OrderItem
from .product import Product
from .representative import Representative
from .tenant import Tenant

__all__ = [
    "db",
    "BaseModel",
    "Tenant",
    "CustomerGroup",
    "Customer",
    "Representative",
    "Product",
    "Order",
    "OrderItem",
]
