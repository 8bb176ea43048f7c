# b2bsync/models/customer.py
"""
Customer and customer group models.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from .base import BaseModel, db


class CustomerGroup(BaseModel):
    """Commercial grouping of customers (price table, segment, network)."""

    __tablename__ = "customer_groups"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    external_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    name_key: Mapped[str] = mapped_column(
        db.String(255),
        nullable=False,
        comment="Lower-cased, trimmed name used as the legacy uniqueness key.",
    )

    tenant = relationship("Tenant")

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_customer_groups_tenant_external_id"),
        UniqueConstraint("tenant_id", "name_key", name="uq_customer_groups_tenant_name_key"),
    )

    @validates("name")
    def _sync_name_key(self, key, value):
        self.name_key = (value or "").strip().lower()
        return value


class Customer(BaseModel):
    """Canonical customer record, keyed by tenant and external id."""

    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    external_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    tax_id: Mapped[str] = mapped_column(db.String(64), nullable=False)
    internal_code: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    legal_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    trade_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    person_type: Mapped[str | None] = mapped_column(db.String(32), nullable=True)
    gender: Mapped[str | None] = mapped_column(db.String(32), nullable=True)
    birth_date: Mapped[date | None] = mapped_column(db.Date, nullable=True)
    email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    phones: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    obs: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    segmentation: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    status: Mapped[bool | None] = mapped_column(db.Boolean, nullable=True)
    source_created_at: Mapped[date | None] = mapped_column(
        db.Date,
        nullable=True,
        comment="Creation date reported by the tenant source.",
    )

    address: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    number: Mapped[str | None] = mapped_column(db.String(32), nullable=True)
    complement: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    neighborhood: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    zip: Mapped[str | None] = mapped_column(db.String(16), nullable=True)
    city: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    state: Mapped[str | None] = mapped_column(db.String(64), nullable=True)

    representative_id: Mapped[int | None] = mapped_column(
        ForeignKey("representatives.id", ondelete="SET NULL"),
        nullable=True,
    )
    customer_group_id: Mapped[int | None] = mapped_column(
        ForeignKey("customer_groups.id", ondelete="SET NULL"),
        nullable=True,
    )

    tenant = relationship("Tenant")
    representative = relationship("Representative", foreign_keys=[representative_id])
    customer_group = relationship("CustomerGroup", foreign_keys=[customer_group_id])

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_customers_tenant_external_id"),
        Index("idx_customers_tenant_tax_id", "tenant_id", "tax_id"),
    )
