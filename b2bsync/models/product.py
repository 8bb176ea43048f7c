# b2bsync/models/product.py
"""Product catalogue model."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class Product(BaseModel):
    """Catalogue entry. ``sku`` is the tenant-wide unique business key."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    external_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    sku: Mapped[str] = mapped_column(db.String(64), nullable=False)
    name: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    ean: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    ncm: Mapped[str | None] = mapped_column(db.String(32), nullable=True)
    model: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    brand: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    brand_ref: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    category: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    category_ref: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    subcategory: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    final_category: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    slug: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    url: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    photo: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    ecommerce_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    external_reference: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    store_reference: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    weight: Mapped[Decimal | None] = mapped_column(db.Numeric(12, 3), nullable=True)
    width: Mapped[Decimal | None] = mapped_column(db.Numeric(12, 3), nullable=True)
    height: Mapped[Decimal | None] = mapped_column(db.Numeric(12, 3), nullable=True)
    active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    tenant = relationship("Tenant")

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        UniqueConstraint("tenant_id", "external_id", name="uq_products_tenant_external_id"),
    )
