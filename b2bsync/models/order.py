# b2bsync/models/order.py
"""
Order and order item models.

Order items are owned by their order: on every resync the item set of an
order is replaced by the incoming set, keyed by item ``external_id``.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class Order(BaseModel):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    external_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    order_code: Mapped[int] = mapped_column(db.BigInteger, nullable=False)
    order_date: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    payment_date: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    delivery_date: Mapped[date | None] = mapped_column(db.Date, nullable=True)
    delivery_days: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    discount_coupon: Mapped[str | None] = mapped_column(db.String(128), nullable=True)
    total_discount: Mapped[Decimal | None] = mapped_column(db.Numeric(14, 2), nullable=True)
    shipping_amount: Mapped[Decimal | None] = mapped_column(db.Numeric(14, 2), nullable=True)
    total_amount: Mapped[Decimal | None] = mapped_column(db.Numeric(14, 2), nullable=True)
    current_status: Mapped[str | None] = mapped_column(db.String(128), nullable=True)
    current_status_code: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Source-specific order attributes kept as an opaque document.",
    )

    delivery_state: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    delivery_city: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    delivery_neighborhood: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    delivery_zip: Mapped[str | None] = mapped_column(db.String(16), nullable=True)
    delivery_number: Mapped[str | None] = mapped_column(db.String(32), nullable=True)
    delivery_address: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    delivery_complement: Mapped[str | None] = mapped_column(db.String(255), nullable=True)

    customer_id: Mapped[int | None] = mapped_column(ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    representative_id: Mapped[int | None] = mapped_column(
        ForeignKey("representatives.id", ondelete="SET NULL"),
        nullable=True,
    )
    assistant_id: Mapped[int | None] = mapped_column(
        ForeignKey("representatives.id", ondelete="SET NULL"),
        nullable=True,
    )
    supervisor_id: Mapped[int | None] = mapped_column(
        ForeignKey("representatives.id", ondelete="SET NULL"),
        nullable=True,
    )

    tenant = relationship("Tenant")
    customer = relationship("Customer", foreign_keys=[customer_id])
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "order_code", name="uq_orders_tenant_order_code"),
        UniqueConstraint("tenant_id", "external_id", name="uq_orders_tenant_external_id"),
        Index("idx_orders_tenant_order_date", "tenant_id", "order_date"),
    )


class OrderItem(BaseModel):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(db.String(255), nullable=False)
    sku: Mapped[int | None] = mapped_column(db.BigInteger, nullable=True)
    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(db.Numeric(14, 4), nullable=True)
    net_unit_price: Mapped[Decimal | None] = mapped_column(db.Numeric(14, 4), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(db.Numeric(14, 4), nullable=True)
    item_type: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    service_ref_sku: Mapped[int | None] = mapped_column(db.BigInteger, nullable=True)
    commission: Mapped[Decimal | None] = mapped_column(db.Numeric(14, 4), nullable=True)
    assistant_commission: Mapped[Decimal | None] = mapped_column(db.Numeric(14, 4), nullable=True)
    supervisor_commission: Mapped[Decimal | None] = mapped_column(db.Numeric(14, 4), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    order = relationship("Order", back_populates="items")
    product = relationship("Product", foreign_keys=[product_id])

    __table_args__ = (UniqueConstraint("tenant_id", "external_id", name="uq_order_items_tenant_external_id"),)
