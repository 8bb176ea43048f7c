# b2bsync/models/tenant.py
"""
Tenant model carrying the per-tenant sync configuration blob.

The ``sync_config`` JSON holds the source connection settings, one mapping
schema per entity kind and, inside each schema, the ``last_processed_at``
watermark. The blob is treated as immutable during a run except for the
watermark path, which is written through
:class:`b2bsync.sync.watermark.WatermarkCommitter`.
"""

from __future__ import annotations

from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, db


class Tenant(BaseModel):
    """An isolated company whose data is synchronized independently."""

    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    slug: Mapped[str] = mapped_column(db.String(100), nullable=False, unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    sync_config: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Source settings, per-entity mapping schemas and their last_processed_at watermarks.",
    )

    def __repr__(self) -> str:
        return f"<Tenant {self.slug}>"
