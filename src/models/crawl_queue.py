from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from src.db.database import Base
from src.models.base import utcnow


class CrawlJobStatus(enum.Enum):
    pending = "pending"
    failed = "failed"  # dead-lettered, kept for inspection


class CrawlJob(Base):
    __tablename__ = "crawl_queue"
    __table_args__ = (
        # at most one pending job per competitor
        Index(
            "uq_crawl_queue_pending_competitor",
            "competitor_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_crawl_queue_due", "status", "scheduled_for"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    competitor_id: Mapped[int] = mapped_column(ForeignKey("competitors.id"), nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    status: Mapped[CrawlJobStatus] = mapped_column(
        Enum(CrawlJobStatus), default=CrawlJobStatus.pending, nullable=False
    )
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime)
    claim_token: Mapped[Optional[str]] = mapped_column(String(64))
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    @property
    def is_dead_lettered(self) -> bool:
        return self.status == CrawlJobStatus.failed

    def __repr__(self) -> str:
        return (
            f"<CrawlJob {self.id} competitor={self.competitor_id} "
            f"{self.status.value} attempts={self.attempts}/{self.max_attempts}>"
        )
