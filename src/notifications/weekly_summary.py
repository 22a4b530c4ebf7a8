"""Weekly summary: count last week's alerts and crawls per competitor,
then queue one digest email per user.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.models.account import Business, User
from src.models.alert import Alert, AlertType
from src.models.base import utcnow
from src.models.competitor import Competitor
from src.models.email_queue import EmailQueueEntry
from src.models.notification_preferences import NotificationPreferences
from src.models.price_snapshot import PriceSnapshot
from src.notifications.enqueue import enqueue_system_email
from src.scheduler.queue import eligible_subscription_exists

TEMPLATE_NAME = "weekly_summary"


@dataclass
class WeeklySummaryResult:
    users: int = 0
    enqueued: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


def get_previous_week_range(now: datetime) -> Tuple[datetime, datetime]:
    """Monday 00:00 to the following Monday 00:00 of the week before ``now``.

    The end is exclusive.
    """
    this_monday = (now - timedelta(days=now.weekday())).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return this_monday - timedelta(days=7), this_monday


def _format_day(value: datetime) -> str:
    return f"{value.strftime('%b')} {value.day}"


def get_weekly_summary_for_user(
    session: Session, user: User, now: Optional[datetime] = None
) -> Optional[Dict[str, Any]]:
    """Template data for one user's summary, or None when they watch nothing."""
    now = now or utcnow()
    start, end = get_previous_week_range(now)

    competitors = session.scalars(
        select(Competitor)
        .join(Business, Competitor.business_id == Business.id)
        .where(Business.user_id == user.id, Competitor.is_active.is_(True))
        .order_by(Competitor.name)
    ).all()
    if not competitors:
        return None
    competitor_ids = [c.id for c in competitors]

    alert_counts: Dict[Tuple[int, AlertType], int] = {
        (competitor_id, alert_type): count
        for competitor_id, alert_type, count in session.execute(
            select(Alert.competitor_id, Alert.alert_type, func.count())
            .where(
                Alert.competitor_id.in_(competitor_ids),
                Alert.created_at >= start,
                Alert.created_at < end,
            )
            .group_by(Alert.competitor_id, Alert.alert_type)
        ).all()
    }
    crawl_counts: Dict[int, int] = dict(
        session.execute(
            select(PriceSnapshot.competitor_id, func.count())
            .where(
                PriceSnapshot.competitor_id.in_(competitor_ids),
                PriceSnapshot.detected_at >= start,
                PriceSnapshot.detected_at < end,
            )
            .group_by(PriceSnapshot.competitor_id)
        ).all()
    )

    rows = []
    for competitor in competitors:
        rows.append(
            {
                "name": competitor.name,
                "price_changes": alert_counts.get((competitor.id, AlertType.price_change), 0),
                "new_promotions": alert_counts.get((competitor.id, AlertType.new_promotion), 0),
                "menu_changes": alert_counts.get((competitor.id, AlertType.menu_change), 0),
                "crawls": crawl_counts.get(competitor.id, 0),
                "last_checked": _format_day(competitor.last_crawled_at)
                if competitor.last_crawled_at
                else "Never",
            }
        )

    return {
        "user_name": user.name,
        "week_start": _format_day(start),
        "week_end": _format_day(end - timedelta(days=1)),
        "competitors": rows,
        "total_alerts": sum(alert_counts.values()),
        "price_changes": sum(r["price_changes"] for r in rows),
        "new_promotions": sum(r["new_promotions"] for r in rows),
        "menu_changes": sum(r["menu_changes"] for r in rows),
        "crawls_completed": sum(r["crawls"] for r in rows),
    }


def get_users_for_weekly_summary(session: Session, now: Optional[datetime] = None) -> List[User]:
    """Users with an active competitor, email not switched off and a usable subscription."""
    now = now or utcnow()
    has_competitor = (
        select(Competitor.id)
        .join(Business, Competitor.business_id == Business.id)
        .where(Business.user_id == User.id, Competitor.is_active.is_(True))
        .exists()
    )
    # correlate the subscription check through the user's businesses
    has_subscription = (
        select(Business.id)
        .where(Business.user_id == User.id, eligible_subscription_exists(now))
        .exists()
    )
    email_disabled = (
        select(NotificationPreferences.id)
        .where(
            NotificationPreferences.user_id == User.id,
            NotificationPreferences.email_enabled.is_(False),
        )
        .exists()
    )
    stmt = (
        select(User)
        .where(has_competitor, has_subscription, ~email_disabled)
        .order_by(User.id)
    )
    return list(session.scalars(stmt).all())


def _already_queued(session: Session, user_id: int, since: datetime) -> bool:
    stmt = select(EmailQueueEntry.id).where(
        EmailQueueEntry.user_id == user_id,
        EmailQueueEntry.template_name == TEMPLATE_NAME,
        EmailQueueEntry.created_at >= since,
    )
    return session.scalar(stmt) is not None


def process_weekly_summaries(session: Session, now: Optional[datetime] = None) -> WeeklySummaryResult:
    now = now or utcnow()
    _, week_end = get_previous_week_range(now)
    result = WeeklySummaryResult()

    users = get_users_for_weekly_summary(session, now)
    result.users = len(users)
    logger.info(f"Weekly summary: {len(users)} eligible users")

    for user in users:
        try:
            if _already_queued(session, user.id, week_end):
                result.skipped += 1
                continue
            data = get_weekly_summary_for_user(session, user, now)
            if data is None:
                result.skipped += 1
                continue
            outcome = enqueue_system_email(session, user.id, user.email, TEMPLATE_NAME, data, now=now)
            session.commit()
            if outcome.success:
                result.enqueued += 1
            else:
                result.skipped += 1
        except Exception as e:
            session.rollback()
            logger.exception(f"Weekly summary failed for user {user.id}")
            result.errors.append(f"{user.id}: {e}")

    logger.info(
        f"Weekly summary complete: enqueued={result.enqueued} skipped={result.skipped} "
        f"errors={len(result.errors)}"
    )
    return result
