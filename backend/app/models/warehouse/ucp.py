"""UCP (Unit Composed Pallet) and its items, audit trail and transfers.

UcpItem rows are never deleted: removal flips ``is_active`` and stamps
who/when/why.  UcpHistory and ItemTransfer are append-only.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class UcpStatus(str, enum.Enum):
    ACTIVE = "active"
    EMPTY = "empty"
    ARCHIVED = "archived"


class UcpAction(str, enum.Enum):
    CREATED = "created"
    ITEM_ADDED = "item_added"
    ITEM_REMOVED = "item_removed"
    ITEM_TRANSFERRED = "item_transferred"
    MOVED = "moved"
    STATUS_CHANGED = "status_changed"
    DISMANTLED = "dismantled"


class Ucp(Base):
    __tablename__ = "ucps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # UCP-YYYYMMDD-NNNN
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    pallet_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("pallets.id"), index=True
    )
    position_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("positions.id"), index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=UcpStatus.ACTIVE.value, index=True
    )
    observations: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class UcpItem(Base):
    __tablename__ = "ucp_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ucp_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ucps.id"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id"), nullable=False, index=True
    )
    packaging_type_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("packaging_types.id")
    )
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    lot: Mapped[str | None] = mapped_column(String(100))
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime)
    internal_code: Mapped[str | None] = mapped_column(String(100))

    # ── Logical removal ──────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    added_by: Mapped[str] = mapped_column(String(36), nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    removed_by: Mapped[str | None] = mapped_column(String(36))
    removed_at: Mapped[datetime | None] = mapped_column(DateTime)
    removal_reason: Mapped[str | None] = mapped_column(Text)


class UcpHistory(Base):
    __tablename__ = "ucp_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ucp_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ucps.id"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    old_value: Mapped[dict | None] = mapped_column(JSON)
    new_value: Mapped[dict | None] = mapped_column(JSON)
    item_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("ucp_items.id"))
    from_position_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("positions.id"))
    to_position_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("positions.id"))
    performed_by: Mapped[str] = mapped_column(String(36), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class ItemTransfer(Base):
    __tablename__ = "item_transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_ucp_id: Mapped[int] = mapped_column(Integer, ForeignKey("ucps.id"), nullable=False)
    target_ucp_id: Mapped[int] = mapped_column(Integer, ForeignKey("ucps.id"), nullable=False)
    source_item_id: Mapped[int] = mapped_column(Integer, ForeignKey("ucp_items.id"), nullable=False)
    target_item_id: Mapped[int] = mapped_column(Integer, ForeignKey("ucp_items.id"), nullable=False)
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id"), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    # partial | complete
    transfer_type: Mapped[str] = mapped_column(String(20), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
