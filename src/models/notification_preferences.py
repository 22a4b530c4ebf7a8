from __future__ import annotations

import enum
from datetime import time
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, Boolean, Enum, ForeignKey, String, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.database import Base

if TYPE_CHECKING:
    from src.models.account import User

ALL_ALERT_TYPES = ["price_change", "new_promotion", "menu_change"]


class EmailFrequency(enum.Enum):
    instant = "instant"
    hourly = "hourly"
    daily = "daily"
    weekly = "weekly"


class NotificationPreferences(Base):
    __tablename__ = "notification_preferences"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    email_frequency: Mapped[EmailFrequency] = mapped_column(
        Enum(EmailFrequency), default=EmailFrequency.instant, nullable=False
    )
    alert_types: Mapped[List[str]] = mapped_column(
        JSON, default=lambda: list(ALL_ALERT_TYPES), nullable=False
    )
    quiet_hours_start: Mapped[Optional[time]] = mapped_column(Time)
    quiet_hours_end: Mapped[Optional[time]] = mapped_column(Time)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)

    user: Mapped["User"] = relationship(back_populates="preferences")

    @classmethod
    def defaults(cls, user_id: Optional[int] = None) -> "NotificationPreferences":
        """Transient record used when a user never saved preferences."""
        return cls(
            user_id=user_id,
            email_enabled=True,
            email_frequency=EmailFrequency.instant,
            alert_types=list(ALL_ALERT_TYPES),
            timezone="UTC",
        )

    def allows(self, alert_type: str) -> bool:
        return alert_type in (self.alert_types or [])

    def __repr__(self) -> str:
        return f"<NotificationPreferences user={self.user_id} {self.email_frequency.value}>"
