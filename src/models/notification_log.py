from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.db.database import Base
from src.models.base import utcnow


class OpsEventType(enum.Enum):
    crawl_dead_letter = "crawl_dead_letter"
    email_dead_letter = "email_dead_letter"


class NotificationChannel(enum.Enum):
    telegram = "telegram"
    discord = "discord"


class NotificationLog(Base):
    __tablename__ = "notification_logs"
    __table_args__ = (
        UniqueConstraint(
            "event_type",
            "reference_id",
            "channel",
            name="uq_notification_dedup",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    event_type: Mapped[OpsEventType] = mapped_column(Enum(OpsEventType), nullable=False)
    reference_id: Mapped[int] = mapped_column(Integer, nullable=False)
    channel: Mapped[NotificationChannel] = mapped_column(
        Enum(NotificationChannel), nullable=False
    )
    sent_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<NotificationLog {self.event_type.value} "
            f"ref={self.reference_id} via {self.channel.value}>"
        )
