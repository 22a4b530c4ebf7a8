from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.db.database import Base


class CrawlRateLimit(Base):
    __tablename__ = "crawl_rate_limits"

    domain: Mapped[str] = mapped_column(String(255), primary_key=True)
    request_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<CrawlRateLimit {self.domain} {self.request_count}>"
