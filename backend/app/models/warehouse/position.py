"""Addressable storage slots (street / side / position / level)."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class PositionStatus(str, enum.Enum):
    DISPONIVEL = "disponivel"
    OCUPADA = "ocupada"
    RESERVADA = "reservada"
    MANUTENCAO = "manutencao"
    BLOQUEADA = "bloqueada"


class Position(Base):
    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # e.g. "RUA01-E-A01-N02"
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    # ── Address ──────────────────────────────────────────────
    street: Mapped[str | None] = mapped_column(String(10))
    side: Mapped[str | None] = mapped_column(String(1))  # E | D
    position: Mapped[int | None] = mapped_column(Integer)
    level: Mapped[int | None] = mapped_column(Integer)
    max_pallets: Mapped[int] = mapped_column(Integer, default=1)
    max_weight: Mapped[float | None] = mapped_column(Float)

    status: Mapped[str] = mapped_column(
        String(20), default=PositionStatus.DISPONIVEL.value, index=True
    )
    observations: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
