from __future__ import annotations

import time
from typing import Optional

from loguru import logger

from src.config import get_settings
from src.crawler.rate_limiter import DomainRateLimiter
from src.crawler.worker import BatchResult, CrawlWorker
from src.db.database import get_sync_session, sync_session_factory
from src.notifications.email_worker import EmailBatchStats, EmailQueueWorker
from src.notifications.weekly_summary import WeeklySummaryResult, process_weekly_summaries
from src.scheduler.queue import SchedulerResult, enqueue_jobs


def _deadline(timeout_seconds: Optional[int]) -> Optional[float]:
    if not timeout_seconds:
        return None
    return time.monotonic() + timeout_seconds


def run_enqueue_jobs() -> SchedulerResult:
    """Enqueue crawl jobs for due competitors."""
    settings = get_settings()
    with get_sync_session() as session:
        result = enqueue_jobs(session, limit=settings.scheduler_batch_limit)
        purged = DomainRateLimiter(session).purge_expired()
        if purged:
            logger.debug(f"Purged {purged} expired rate limit windows")
    return result


def run_crawl_worker(timeout_seconds: Optional[int] = None) -> BatchResult:
    """Process one batch of crawl jobs."""
    settings = get_settings()
    worker = CrawlWorker(sync_session_factory)
    try:
        return worker.process_queue_batch(
            deadline=_deadline(timeout_seconds or settings.worker_timeout_seconds)
        )
    finally:
        worker.close()


def run_email_worker(timeout_seconds: Optional[int] = None) -> EmailBatchStats:
    """Send one batch of due emails."""
    settings = get_settings()
    worker = EmailQueueWorker(sync_session_factory)
    return worker.process_email_queue(
        deadline=_deadline(timeout_seconds or settings.worker_timeout_seconds)
    )


def run_weekly_summary() -> WeeklySummaryResult:
    """Queue the weekly summary emails."""
    with get_sync_session() as session:
        return process_weekly_summaries(session)
