from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.database import Base
from src.models.base import utcnow

if TYPE_CHECKING:
    from src.models.competitor import Competitor


class AlertType(enum.Enum):
    price_change = "price_change"
    new_promotion = "new_promotion"
    menu_change = "menu_change"


class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        # new_promotion alerts are per promotion, so the title joins the key
        UniqueConstraint(
            "competitor_id",
            "baseline_snapshot_id",
            "alert_type",
            "dedup_key",
            name="uq_alert_replay",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id"), nullable=False)
    competitor_id: Mapped[Optional[int]] = mapped_column(ForeignKey("competitors.id"))
    snapshot_id: Mapped[Optional[int]] = mapped_column(ForeignKey("price_snapshots.id"))
    baseline_snapshot_id: Mapped[Optional[int]] = mapped_column(Integer)
    dedup_key: Mapped[str] = mapped_column(Text, default="", nullable=False)
    alert_type: Mapped[AlertType] = mapped_column(Enum(AlertType), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    competitor: Mapped[Optional["Competitor"]] = relationship()

    def __repr__(self) -> str:
        return f"<Alert {self.alert_type.value} competitor={self.competitor_id}>"
