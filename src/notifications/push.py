"""Web push for new alerts.

Pushes are sent right away to every device the owner registered; there is no
push queue. Inside quiet hours the push is dropped, the queued email still
goes out once the quiet window ends.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from loguru import logger
from pywebpush import WebPushException, webpush
from sqlalchemy import select
from sqlalchemy.orm import Session

from src.config import Settings, get_settings
from src.models.account import Business
from src.models.alert import Alert
from src.models.base import utcnow
from src.models.competitor import Competitor
from src.models.push_subscription import PushSubscription
from src.notifications.enqueue import get_preferences
from src.notifications.quiet_hours import is_in_quiet_hours

# push service says the subscription no longer exists
GONE_STATUS_CODES = (404, 410)


@dataclass
class PushPayload:
    title: str
    body: str
    url: str = "/dashboard/alerts"
    tag: str = "notification"
    icon: str = "/icon-192.png"
    badge: str = "/badge-72.png"

    def to_json(self) -> str:
        return json.dumps(
            {
                "title": self.title,
                "body": self.body,
                "icon": self.icon,
                "badge": self.badge,
                "tag": self.tag,
                "data": {"url": self.url},
            }
        )


@dataclass
class PushResult:
    sent: int = 0
    failed: int = 0
    removed: int = 0
    errors: List[str] = field(default_factory=list)


def is_push_configured(settings: Settings) -> bool:
    return bool(settings.vapid_public_key and settings.vapid_private_key)


def send_push_notification(
    session: Session,
    user_id: int,
    payload: PushPayload,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> PushResult:
    """Send ``payload`` to all of the user's subscriptions.

    Expired subscriptions (404/410) are deleted. Does not commit.
    """
    settings = settings or get_settings()
    result = PushResult()
    if not is_push_configured(settings):
        logger.warning("VAPID keys not configured, skipping push notifications")
        result.errors.append("VAPID keys not configured")
        return result

    now = now or utcnow()
    subscriptions = session.scalars(
        select(PushSubscription).where(PushSubscription.user_id == user_id)
    ).all()
    data = payload.to_json()

    for subscription in subscriptions:
        try:
            webpush(
                subscription_info=subscription.to_subscription_info(),
                data=data,
                vapid_private_key=settings.vapid_private_key,
                vapid_claims={"sub": settings.vapid_subject},
            )
        except WebPushException as e:
            status = e.response.status_code if e.response is not None else None
            result.failed += 1
            result.errors.append(f"Subscription {subscription.id}: {e}")
            if status in GONE_STATUS_CODES:
                session.delete(subscription)
                result.removed += 1
                logger.info(f"Removed expired push subscription {subscription.id} for user {user_id}")
            else:
                logger.warning(f"Push to subscription {subscription.id} failed: {e}")
            continue
        subscription.last_used_at = now
        result.sent += 1

    session.flush()
    return result


def send_alert_push(
    session: Session,
    alert: Alert,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> PushResult:
    """Push a new alert to its business owner, honouring alert types and quiet hours."""
    settings = settings or get_settings()
    if not is_push_configured(settings):
        logger.debug(f"Push not configured, alert {alert.id} not pushed")
        return PushResult()

    now = now or utcnow()
    business = session.get(Business, alert.business_id)
    if business is None:
        return PushResult()

    prefs = get_preferences(session, business.user_id)
    alert_type = alert.alert_type.value
    if not prefs.allows(alert_type):
        return PushResult()
    if is_in_quiet_hours(now, prefs.quiet_hours_start, prefs.quiet_hours_end, prefs.timezone):
        logger.debug(f"Quiet hours for user {business.user_id}, alert {alert.id} not pushed")
        return PushResult()

    competitor = session.get(Competitor, alert.competitor_id) if alert.competitor_id else None
    name = (competitor.name or competitor.url) if competitor else "a competitor"
    payload = PushPayload(
        title="New Alert from MarketPulse",
        body=f"{alert_type}: {name}",
        tag=f"alert-{alert.id}",
    )
    result = send_push_notification(session, business.user_id, payload, now=now, settings=settings)
    if result.sent or result.failed:
        logger.info(f"Alert {alert.id} pushed: sent={result.sent} failed={result.failed}")
    return result
