"""Crawl queue worker.

One invocation claims a batch of due jobs, crawls each competitor page,
stores a snapshot, raises alerts for what changed and exits. Claims are
leases (``locked_until`` + ``claim_token``), so a crashed invocation's jobs
come back on their own once the lease runs out.
"""
from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.config import Settings, get_settings
from src.crawler.change_detector import detect_changes
from src.crawler.fetcher import ContentFetcher, FetchError, get_fetcher
from src.crawler.hashing import hash_extracted_data
from src.crawler.rate_limiter import DomainRateLimiter
from src.models.alert import Alert
from src.models.base import utcnow
from src.models.competitor import Competitor
from src.models.crawl_queue import CrawlJob, CrawlJobStatus
from src.models.notification_log import OpsEventType
from src.models.price_snapshot import PriceSnapshot
from src.notifications.enqueue import enqueue_alert_email
from src.notifications.ops import OpsNotifier
from src.notifications.push import send_alert_push

RATE_LIMIT_DELAY = timedelta(minutes=30)


@dataclass
class JobResult:
    job_id: int
    competitor_id: Optional[int]
    success: bool
    outcome: str
    message: str = ""
    snapshot_hash: Optional[str] = None
    alerts_created: int = 0
    error: Optional[str] = None


@dataclass
class BatchResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    timed_out: bool = False
    results: List[JobResult] = field(default_factory=list)

    def add(self, result: JobResult) -> None:
        self.processed += 1
        if result.success:
            self.successful += 1
        else:
            self.failed += 1
        self.results.append(result)


def backoff_minutes(
    attempts: int, base: Optional[int] = None, cap: Optional[int] = None
) -> int:
    """Delay before retry number ``attempts``: base, 2*base, 4*base... capped."""
    settings = get_settings()
    base = base if base is not None else settings.crawler_retry_base_minutes
    cap = cap if cap is not None else settings.crawler_retry_max_minutes
    return min(base * 2 ** (max(attempts, 1) - 1), cap)


def _claimable(now: datetime):
    return (
        CrawlJob.status == CrawlJobStatus.pending,
        CrawlJob.scheduled_for <= now,
        or_(CrawlJob.locked_until.is_(None), CrawlJob.locked_until <= now),
        CrawlJob.attempts < CrawlJob.max_attempts,
    )


class CrawlWorker:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        fetcher: Optional[ContentFetcher] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or get_fetcher()

    def close(self) -> None:
        if self._owns_fetcher:
            self.fetcher.close()

    # ---- claiming ----

    def claim_jobs(self, session: Session, batch_size: int, now: datetime) -> List[Tuple[int, str]]:
        """Lease up to ``batch_size`` due jobs; returns ``(job_id, claim_token)`` pairs."""
        candidates = session.scalars(
            select(CrawlJob.id)
            .where(*_claimable(now))
            .order_by(CrawlJob.priority.desc(), CrawlJob.scheduled_for.asc(), CrawlJob.id.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        ).all()

        lease_until = now + timedelta(seconds=self.settings.crawler_claim_timeout_seconds)
        claims = []
        for job_id in candidates:
            token = uuid.uuid4().hex
            result = session.execute(
                update(CrawlJob)
                .where(CrawlJob.id == job_id, *_claimable(now))
                .values(locked_until=lease_until, claim_token=token)
                .execution_options(synchronize_session=False)
            )
            # 0 rows: another invocation got there first
            if result.rowcount == 1:
                claims.append((job_id, token))
        session.commit()
        logger.info(f"Claimed {len(claims)} of {len(candidates)} due crawl jobs")
        return claims

    def release(self, session: Session, claims: List[Tuple[int, str]]) -> None:
        """Give leases back without touching attempts."""
        for job_id, token in claims:
            session.execute(
                update(CrawlJob)
                .where(CrawlJob.id == job_id, CrawlJob.claim_token == token)
                .values(locked_until=None, claim_token=None)
                .execution_options(synchronize_session=False)
            )
        session.commit()

    # ---- per job ----

    def _record_failure(self, session: Session, job: CrawlJob, error: str, now: datetime) -> JobResult:
        job.attempts += 1
        job.last_error = error[:2000]
        job.locked_until = None
        job.claim_token = None

        if job.attempts >= job.max_attempts:
            job.status = CrawlJobStatus.failed
            job.failed_at = now
            session.commit()
            logger.error(
                f"Crawl job {job.id} for competitor {job.competitor_id} dead-lettered "
                f"after {job.attempts} attempts: {error}"
            )
            OpsNotifier(session).notify(
                OpsEventType.crawl_dead_letter,
                job.id,
                "Crawl job dead-lettered",
                [
                    f"Job #{job.id}, competitor #{job.competitor_id}",
                    f"URL: {job.url}",
                    f"Attempts: {job.attempts}/{job.max_attempts}",
                    f"Last error: {error}",
                ],
            )
            session.commit()
            return JobResult(
                job_id=job.id,
                competitor_id=job.competitor_id,
                success=False,
                outcome="dead_lettered",
                message=f"Failed after {job.attempts} attempts",
                error=error,
            )

        delay = backoff_minutes(
            job.attempts,
            self.settings.crawler_retry_base_minutes,
            self.settings.crawler_retry_max_minutes,
        )
        job.scheduled_for = now + timedelta(minutes=delay)
        session.commit()
        logger.warning(
            f"Crawl job {job.id} attempt {job.attempts}/{job.max_attempts} failed, "
            f"retry in {delay} min: {error}"
        )
        return JobResult(
            job_id=job.id,
            competitor_id=job.competitor_id,
            success=False,
            outcome="retry_scheduled",
            message=f"Retry in {delay} minutes",
            error=error,
        )

    def _push_alerts(self, session: Session, alerts: List[Alert], now: datetime) -> None:
        """Push alerts that are already committed; a failed push never fails the job."""
        for alert in alerts:
            alert_id = alert.id
            try:
                send_alert_push(session, alert, now=now, settings=self.settings)
                session.commit()
            except Exception:
                session.rollback()
                logger.exception(f"Push notification for alert {alert_id} failed")

    def _save_results(
        self, session: Session, job: CrawlJob, competitor: Competitor, data, now: datetime
    ) -> JobResult:
        job_id = job.id
        new_hash = hash_extracted_data(data)
        previous = session.scalar(
            select(PriceSnapshot)
            .where(PriceSnapshot.competitor_id == competitor.id)
            .order_by(PriceSnapshot.detected_at.desc(), PriceSnapshot.id.desc())
            .limit(1)
        )
        drafts = detect_changes(previous, data, new_hash)

        snapshot = PriceSnapshot(
            competitor_id=competitor.id,
            extracted_data=data.to_dict(),
            snapshot_hash=new_hash,
            detected_at=now,
        )
        session.add(snapshot)
        session.flush()

        new_alerts: List[Alert] = []
        for draft in drafts:
            alert = Alert(
                business_id=competitor.business_id,
                competitor_id=competitor.id,
                snapshot_id=snapshot.id,
                baseline_snapshot_id=previous.id if previous else None,
                dedup_key=draft.dedup_key,
                alert_type=draft.alert_type,
                message=draft.message,
                details=draft.details.to_dict(),
                created_at=now,
            )
            try:
                with session.begin_nested():
                    session.add(alert)
            except IntegrityError:
                logger.info(
                    f"{draft.alert_type.value} alert against snapshot {alert.baseline_snapshot_id} "
                    f"already exists for competitor {competitor.id}"
                )
                continue
            new_alerts.append(alert)
            enqueue_alert_email(session, alert, now=now)

        alerts_created = len(new_alerts)
        competitor.last_crawled_at = now
        if alerts_created:
            competitor.last_alert_at = now
        session.delete(job)
        session.commit()
        self._push_alerts(session, new_alerts, now)

        if previous is None:
            message = "First snapshot stored"
        elif previous.snapshot_hash == new_hash:
            message = "No changes"
        else:
            message = f"{alerts_created} alerts created"
        logger.info(f"Crawled {competitor.name}: {message}")
        return JobResult(
            job_id=job_id,
            competitor_id=competitor.id,
            success=True,
            outcome="completed",
            message=message,
            snapshot_hash=new_hash,
            alerts_created=alerts_created,
        )

    def _run(self, session: Session, job: CrawlJob, now: datetime) -> JobResult:
        competitor = session.get(Competitor, job.competitor_id)
        if competitor is None or not competitor.is_active:
            job_id, competitor_id = job.id, job.competitor_id
            session.delete(job)
            session.commit()
            logger.info(f"Competitor {competitor_id} is gone or inactive, dropped job {job_id}")
            return JobResult(
                job_id=job_id,
                competitor_id=competitor_id,
                success=True,
                outcome="skipped",
                message="Competitor missing or inactive",
            )

        limiter = DomainRateLimiter(session, limit=self.settings.rate_limit_requests_per_hour)
        if not limiter.check(job.url, now):
            job.scheduled_for = now + RATE_LIMIT_DELAY
            job.locked_until = None
            job.claim_token = None
            session.commit()
            return JobResult(
                job_id=job.id,
                competitor_id=job.competitor_id,
                success=False,
                outcome="rate_limited",
                message="Domain rate limit reached, rescheduled in 30 minutes",
            )

        try:
            data = self.fetcher.fetch(job.url)
        except FetchError as e:
            return self._record_failure(session, job, str(e), now)

        return self._save_results(session, job, competitor, data, now)

    def process_job(self, job_id: int, claim_token: str, now: Optional[datetime] = None) -> JobResult:
        """Crawl one claimed job. Never raises."""
        now = now or utcnow()
        with self.session_factory() as session:
            job = session.scalar(
                select(CrawlJob).where(
                    CrawlJob.id == job_id,
                    CrawlJob.claim_token == claim_token,
                    CrawlJob.status == CrawlJobStatus.pending,
                )
            )
            if job is None:
                return JobResult(
                    job_id=job_id,
                    competitor_id=None,
                    success=False,
                    outcome="lost_claim",
                    message="Lease expired or job no longer pending",
                )

            competitor_id = job.competitor_id
            try:
                return self._run(session, job, now)
            except Exception as e:
                session.rollback()
                logger.exception(f"Unexpected error processing crawl job {job_id}")
                self.release(session, [(job_id, claim_token)])
                return JobResult(
                    job_id=job_id,
                    competitor_id=competitor_id,
                    success=False,
                    outcome="error",
                    message="Unexpected error, will retry",
                    error=str(e),
                )

    # ---- batch ----

    def _process_before_deadline(
        self, job_id: int, claim_token: str, deadline: Optional[float], now: Optional[datetime]
    ) -> Optional[JobResult]:
        if deadline is not None and self.clock() >= deadline:
            with self.session_factory() as session:
                self.release(session, [(job_id, claim_token)])
            return None
        return self.process_job(job_id, claim_token, now)

    def process_queue_batch(
        self,
        batch_size: Optional[int] = None,
        deadline: Optional[float] = None,
        max_workers: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> BatchResult:
        """Claim and crawl one batch.

        Args:
            batch_size: Max jobs to claim (``CRAWLER_BATCH_SIZE`` by default).
            deadline: Reading of ``self.clock`` (``time.monotonic`` by default).
                Jobs not started by then are released and left for the
                next invocation.
            max_workers: Thread pool size (``CRAWLER_MAX_WORKERS``); 1 runs
                jobs one after another.
            now: Clock override for tests.

        Returns:
            BatchResult with per-job results. A failing job never aborts the batch.
        """
        batch_size = batch_size or self.settings.crawler_batch_size
        max_workers = max_workers or self.settings.crawler_max_workers
        batch = BatchResult()

        with self.session_factory() as session:
            claims = self.claim_jobs(session, batch_size, now or utcnow())
        if not claims:
            return batch

        if max_workers <= 1:
            for job_id, token in claims:
                result = self._process_before_deadline(job_id, token, deadline, now)
                if result is None:
                    batch.timed_out = True
                    continue
                batch.add(result)
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                futures = [
                    pool.submit(self._process_before_deadline, job_id, token, deadline, now)
                    for job_id, token in claims
                ]
                for future in as_completed(futures):
                    result = future.result()
                    if result is None:
                        batch.timed_out = True
                        continue
                    batch.add(result)

        logger.info(
            f"Crawl batch complete: processed={batch.processed} successful={batch.successful} "
            f"failed={batch.failed} timed_out={batch.timed_out}"
        )
        return batch
