"""Saved packaging compositions.

A composition is a proposed arrangement of products on a pallet.  It
moves forward one step at a time: draft → validated → approved → executed.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class CompositionStatus(str, enum.Enum):
    DRAFT = "draft"
    VALIDATED = "validated"
    APPROVED = "approved"
    EXECUTED = "executed"


class PackagingComposition(Base):
    __tablename__ = "packaging_compositions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    pallet_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("pallets.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=CompositionStatus.DRAFT.value, index=True
    )

    # ── Request snapshot and computed result ─────────────────
    # {"max_weight": .., "max_height": .., "max_volume": ..}
    constraints: Mapped[dict | None] = mapped_column(JSON)
    # Full ValidationResult + layout, as returned by /calculate
    result: Mapped[dict | None] = mapped_column(JSON)
    efficiency: Mapped[float] = mapped_column(Float, default=0.0)
    total_weight: Mapped[float] = mapped_column(Float, default=0.0)
    total_volume: Mapped[float] = mapped_column(Float, default=0.0)
    total_height: Mapped[float] = mapped_column(Float, default=0.0)

    # UCP materialized by the last assemble
    ucp_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("ucps.id"))

    # ── Audit ────────────────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(36))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class CompositionItem(Base):
    __tablename__ = "composition_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    composition_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("packaging_compositions.id"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id"), nullable=False
    )
    packaging_type_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("packaging_types.id")
    )
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    layer: Mapped[int] = mapped_column(Integer, default=1)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
