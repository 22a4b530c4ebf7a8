from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.db.database import Base
from src.models.base import utcnow


class EmailStatus(enum.Enum):
    pending = "pending"
    sent = "sent"
    failed = "failed"
    skipped = "skipped"


class EmailQueueEntry(Base):
    __tablename__ = "email_queue"
    __table_args__ = (Index("ix_email_queue_due", "status", "scheduled_for"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    alert_id: Mapped[Optional[int]] = mapped_column(ForeignKey("alerts.id"), unique=True)
    to_email: Mapped[str] = mapped_column(String(255), nullable=False)
    template_name: Mapped[str] = mapped_column(String(64), nullable=False)
    template_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    alert_type: Mapped[Optional[str]] = mapped_column(String(32))  # None = system email
    status: Mapped[EmailStatus] = mapped_column(
        Enum(EmailStatus), default=EmailStatus.pending, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    @property
    def is_system(self) -> bool:
        return self.alert_type is None

    def __repr__(self) -> str:
        return f"<EmailQueueEntry {self.id} {self.template_name} -> {self.to_email} {self.status.value}>"
