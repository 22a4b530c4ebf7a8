"""Decide which competitors are due and put crawl jobs on the queue."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from loguru import logger
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.config import get_settings
from src.models.account import Business, Subscription, SubscriptionStatus
from src.models.base import utcnow
from src.models.competitor import Competitor
from src.models.crawl_queue import CrawlJob, CrawlJobStatus

FIRST_CRAWL_PRIORITY = 100


@dataclass
class SchedulerResult:
    enqueued: int = 0
    skipped: int = 0
    errors: int = 0
    message: str = ""


@dataclass
class QueueStats:
    pending: int
    max_attempt_failed: int
    dead_lettered: int
    average_attempt: float
    oldest_job: Optional[datetime]


def is_due(competitor: Competitor, now: datetime) -> bool:
    if competitor.last_crawled_at is None:
        return True
    return now >= competitor.last_crawled_at + timedelta(minutes=competitor.crawl_frequency_minutes)


def eligible_subscription_exists(now: datetime, grace_days: Optional[int] = None):
    """EXISTS clause: the competitor's owner may use the service at ``now``."""
    if grace_days is None:
        grace_days = get_settings().trial_grace_period_days
    return (
        select(Subscription.id)
        .where(
            Subscription.user_id == Business.user_id,
            or_(
                Subscription.status == SubscriptionStatus.active,
                and_(
                    Subscription.status == SubscriptionStatus.trialing,
                    Subscription.current_period_end > now,
                ),
                and_(
                    Subscription.status == SubscriptionStatus.grace_period,
                    Subscription.current_period_end > now - timedelta(days=grace_days),
                ),
            ),
        )
        .exists()
    )


def _candidates(now: datetime, active_only: bool = True):
    stmt = (
        select(Competitor)
        .join(Business, Competitor.business_id == Business.id)
        .where(eligible_subscription_exists(now))
        .order_by(Competitor.last_crawled_at.asc().nulls_first(), Competitor.id.asc())
    )
    if active_only:
        stmt = stmt.where(Competitor.is_active.is_(True))
    return stmt


def _has_pending_job(session: Session, competitor_id: int) -> bool:
    stmt = select(CrawlJob.id).where(
        CrawlJob.competitor_id == competitor_id,
        CrawlJob.status == CrawlJobStatus.pending,
    )
    return session.scalar(stmt) is not None


def enqueue_jobs(session: Session, now: Optional[datetime] = None, limit: int = 100) -> SchedulerResult:
    """Queue one crawl job for every due competitor that has none pending.

    Due competitors that are inactive or already queued count as skipped.

    Safe to run concurrently: the partial unique index on pending jobs makes
    a losing insert raise ``IntegrityError``, which is counted as a skip.
    """
    now = now or utcnow()
    settings = get_settings()
    result = SchedulerResult()

    try:
        for competitor in session.scalars(_candidates(now, active_only=False)).all():
            if result.enqueued >= limit:
                break
            if not is_due(competitor, now):
                continue
            if not competitor.is_active or _has_pending_job(session, competitor.id):
                result.skipped += 1
                continue

            job = CrawlJob(
                competitor_id=competitor.id,
                url=competitor.url,
                priority=FIRST_CRAWL_PRIORITY if competitor.last_crawled_at is None else 0,
                attempts=0,
                max_attempts=settings.crawler_max_attempts,
                status=CrawlJobStatus.pending,
                scheduled_for=now,
                created_at=now,
            )
            try:
                with session.begin_nested():
                    session.add(job)
            except IntegrityError:
                logger.debug(f"Competitor {competitor.id} was queued concurrently")
                result.skipped += 1
            except Exception as e:
                logger.error(f"Failed to enqueue competitor {competitor.id}: {e}")
                result.errors += 1
            else:
                result.enqueued += 1
                logger.debug(f"Queued crawl for {competitor.name} ({competitor.url})")

        session.commit()
    except Exception as e:
        session.rollback()
        logger.exception("Scheduler run failed")
        return SchedulerResult(errors=1, message=f"Scheduler failed: {e}")

    result.message = (
        f"Enqueued {result.enqueued} jobs, skipped {result.skipped}, errors {result.errors}"
    )
    logger.info(result.message)
    return result


def get_queue_stats(session: Session) -> QueueStats:
    pending = session.scalar(
        select(func.count()).select_from(CrawlJob).where(CrawlJob.status == CrawlJobStatus.pending)
    )
    max_attempt_failed = session.scalar(
        select(func.count()).select_from(CrawlJob).where(CrawlJob.attempts >= CrawlJob.max_attempts)
    )
    dead_lettered = session.scalar(
        select(func.count()).select_from(CrawlJob).where(CrawlJob.status == CrawlJobStatus.failed)
    )
    average_attempt = session.scalar(
        select(func.avg(CrawlJob.attempts)).where(CrawlJob.status == CrawlJobStatus.pending)
    )
    oldest_job = session.scalar(
        select(func.min(CrawlJob.scheduled_for)).where(CrawlJob.status == CrawlJobStatus.pending)
    )
    return QueueStats(
        pending=pending or 0,
        max_attempt_failed=max_attempt_failed or 0,
        dead_lettered=dead_lettered or 0,
        average_attempt=round(float(average_attempt or 0), 2),
        oldest_job=oldest_job,
    )


def get_competitors_due(
    session: Session, limit: int = 10, now: Optional[datetime] = None
) -> List[Competitor]:
    """Due competitors, most overdue first (never crawled before everything else)."""
    now = now or utcnow()
    due = [c for c in session.scalars(_candidates(now)).all() if is_due(c, now)]
    due.sort(
        key=lambda c: (
            c.last_crawled_at is not None,
            c.last_crawled_at + timedelta(minutes=c.crawl_frequency_minutes)
            if c.last_crawled_at
            else now,
        )
    )
    return due[:limit]
