"""Put emails on the queue. Callers own the transaction; nothing here commits."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.config import get_settings
from src.models.account import Business, User
from src.models.alert import Alert
from src.models.base import utcnow
from src.models.competitor import Competitor
from src.models.email_queue import EmailQueueEntry, EmailStatus
from src.models.notification_preferences import NotificationPreferences
from src.notifications.quiet_hours import calculate_scheduled_time


@dataclass
class EnqueueResult:
    success: bool
    queue_id: Optional[int] = None
    reason: Optional[str] = None


def get_preferences(session: Session, user_id: Optional[int]) -> NotificationPreferences:
    """Stored preferences, or the defaults when the user never saved any."""
    prefs = None
    if user_id is not None:
        prefs = session.scalar(
            select(NotificationPreferences).where(NotificationPreferences.user_id == user_id)
        )
    return prefs or NotificationPreferences.defaults(user_id)


def _insert(session: Session, entry: EmailQueueEntry) -> EnqueueResult:
    try:
        with session.begin_nested():
            session.add(entry)
    except IntegrityError:
        logger.debug(f"Email already queued for alert {entry.alert_id}")
        return EnqueueResult(success=False, reason="Email already queued for this alert")
    return EnqueueResult(success=True, queue_id=entry.id)


def enqueue_email(
    session: Session,
    user_id: int,
    to_email: str,
    template_name: str,
    template_data: Dict[str, Any],
    alert_type: str,
    alert_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> EnqueueResult:
    """Queue a user-facing email, honoring that user's notification preferences.

    The delivery time follows the user's frequency (digest slot) and is pushed
    past quiet hours. Disabled email or an unwanted alert type queues nothing.
    """
    now = now or utcnow()
    prefs = get_preferences(session, user_id)

    if not prefs.email_enabled:
        return EnqueueResult(success=False, reason="Email notifications disabled")
    if not prefs.allows(alert_type):
        return EnqueueResult(success=False, reason=f'Alert type "{alert_type}" not enabled')

    entry = EmailQueueEntry(
        user_id=user_id,
        alert_id=alert_id,
        to_email=to_email,
        template_name=template_name,
        template_data=template_data,
        alert_type=alert_type,
        status=EmailStatus.pending,
        max_attempts=get_settings().email_max_attempts,
        scheduled_for=calculate_scheduled_time(now, prefs),
        created_at=now,
    )
    return _insert(session, entry)


def enqueue_system_email(
    session: Session,
    user_id: Optional[int],
    to_email: str,
    template_name: str,
    template_data: Dict[str, Any],
    now: Optional[datetime] = None,
) -> EnqueueResult:
    """Queue an account email (password reset, welcome...) for immediate delivery.

    System emails ignore notification preferences and quiet hours.
    """
    now = now or utcnow()
    entry = EmailQueueEntry(
        user_id=user_id,
        to_email=to_email,
        template_name=template_name,
        template_data=template_data,
        alert_type=None,
        status=EmailStatus.pending,
        max_attempts=get_settings().email_max_attempts,
        scheduled_for=now,
        created_at=now,
    )
    return _insert(session, entry)


def enqueue_alert_email(
    session: Session, alert: Alert, now: Optional[datetime] = None
) -> EnqueueResult:
    """Queue the ``alert_notification`` email for the owner of the alert's business."""
    business = session.get(Business, alert.business_id)
    if business is None:
        return EnqueueResult(success=False, reason="Business not found")
    user = session.get(User, business.user_id)
    if user is None or not user.email:
        return EnqueueResult(success=False, reason="User has no email address")

    competitor = session.get(Competitor, alert.competitor_id) if alert.competitor_id else None
    template_data = {
        "alert_id": alert.id,
        "alert_type": alert.alert_type.value,
        "competitor_name": competitor.name if competitor else business.name,
        "competitor_url": competitor.url if competitor else None,
        "message": alert.message,
        "details": alert.details,
    }
    return enqueue_email(
        session,
        user_id=user.id,
        to_email=user.email,
        template_name="alert_notification",
        template_data=template_data,
        alert_type=alert.alert_type.value,
        alert_id=alert.id,
        now=now,
    )
