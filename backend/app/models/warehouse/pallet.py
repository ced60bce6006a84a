"""Physical pallets.

A pallet is either free (``disponivel``) or attached to exactly one
non-archived UCP (``em_uso``).  Only the UCP lifecycle service writes
``status``.
"""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class PalletStatus(str, enum.Enum):
    DISPONIVEL = "disponivel"
    EM_USO = "em_uso"
    DEFEITUOSO = "defeituoso"
    RECUPERACAO = "recuperacao"
    DESCARTE = "descarte"


class Pallet(Base):
    __tablename__ = "pallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    # PBR | europeu | chep | americano
    type: Mapped[str] = mapped_column(String(50), default="PBR")
    # madeira | plastico | metal
    material: Mapped[str] = mapped_column(String(50), default="madeira")

    # ── Dimensions (cm) and capacity (kg) ────────────────────
    width: Mapped[float] = mapped_column(Float, nullable=False)
    length: Mapped[float] = mapped_column(Float, nullable=False)
    height: Mapped[float] = mapped_column(Float, default=15.0)
    max_weight: Mapped[float | None] = mapped_column(Float)

    status: Mapped[str] = mapped_column(
        String(20), default=PalletStatus.DISPONIVEL.value, index=True
    )
    observations: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def area_m2(self) -> float:
        return (self.width or 0) * (self.length or 0) / 10_000
