# b2bsync/models/representative.py
"""
Sales representative model.

Supervisors are representatives too; ``supervisor_id`` points back into the
same table and is resolved in a second pass once every representative of a
batch has been written.
"""

from __future__ import annotations

from sqlalchemy import ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class Representative(BaseModel):
    __tablename__ = "representatives"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    external_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    document: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    internal_code: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    category: Mapped[str | None] = mapped_column(db.String(128), nullable=True)
    email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(db.String(32), nullable=True)
    obs: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    is_supervisor: Mapped[bool | None] = mapped_column(db.Boolean, nullable=True)
    supervisor_id: Mapped[int | None] = mapped_column(
        ForeignKey("representatives.id", ondelete="SET NULL"),
        nullable=True,
    )

    address: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    number: Mapped[str | None] = mapped_column(db.String(32), nullable=True)
    complement: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    neighborhood: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    zip: Mapped[str | None] = mapped_column(db.String(16), nullable=True)
    city: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    state: Mapped[str | None] = mapped_column(db.String(64), nullable=True)

    tenant = relationship("Tenant")
    supervisor = relationship("Representative", remote_side=[id], foreign_keys=[supervisor_id])

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_representatives_tenant_external_id"),
        Index("idx_representatives_tenant_document", "tenant_id", "document"),
        Index("idx_representatives_tenant_internal_code", "tenant_id", "internal_code"),
    )

    def __repr__(self) -> str:
        return f"<Representative {self.external_id} {self.name!r}>"
