from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.database import Base
from src.models.base import TimestampMixin

if TYPE_CHECKING:
    from src.models.account import Business
    from src.models.price_snapshot import PriceSnapshot


class Competitor(Base, TimestampMixin):
    __tablename__ = "competitors"

    id: Mapped[int] = mapped_column(primary_key=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    crawl_frequency_minutes: Mapped[int] = mapped_column(Integer, default=720, nullable=False)
    last_crawled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_alert_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    business: Mapped["Business"] = relationship(back_populates="competitors")
    snapshots: Mapped[List["PriceSnapshot"]] = relationship(back_populates="competitor")

    def __repr__(self) -> str:
        return f"<Competitor {self.name} ({self.url})>"
