from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.database import Base
from src.models.base import utcnow

if TYPE_CHECKING:
    from src.models.competitor import Competitor


class PriceSnapshot(Base):
    """One crawl's extraction for a competitor. Rows are never updated."""

    __tablename__ = "price_snapshots"
    __table_args__ = (Index("ix_price_snapshots_competitor_detected", "competitor_id", "detected_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    competitor_id: Mapped[int] = mapped_column(ForeignKey("competitors.id"), nullable=False)
    extracted_data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    snapshot_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    competitor: Mapped["Competitor"] = relationship(back_populates="snapshots")

    def __repr__(self) -> str:
        return f"<PriceSnapshot competitor={self.competitor_id} hash={self.snapshot_hash[:8]}>"
