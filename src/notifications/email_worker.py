"""Email queue worker.

Same claim/lease pattern as the crawl worker: rows are leased with a
conditional UPDATE, so overlapping invocations never send the same email.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from loguru import logger
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from src.config import Settings, get_settings
from src.models.base import utcnow
from src.models.email_queue import EmailQueueEntry, EmailStatus
from src.models.notification_log import OpsEventType
from src.notifications.email import EmailDeliveryError, EmailSender
from src.notifications.enqueue import get_preferences
from src.notifications.ops import OpsNotifier
from src.notifications.quiet_hours import is_in_quiet_hours, quiet_hours_end
from src.notifications.templates import (
    TemplateRenderError,
    generate_subject,
    render_email_template,
)

# minutes to wait after the 1st, 2nd, 3rd failed attempt
RETRY_SCHEDULE = [5, 15, 45]


@dataclass
class EmailBatchStats:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class EmailQueueStats:
    pending: int
    sent: int
    failed: int
    skipped: int
    total_queued: int
    oldest_pending: Optional[datetime]
    average_attempts_for_failed: float


def retry_delay(attempts: int) -> timedelta:
    index = min(max(attempts, 1), len(RETRY_SCHEDULE)) - 1
    return timedelta(minutes=RETRY_SCHEDULE[index])


def _claimable(now: datetime):
    return (
        EmailQueueEntry.status == EmailStatus.pending,
        EmailQueueEntry.scheduled_for <= now,
        or_(EmailQueueEntry.locked_until.is_(None), EmailQueueEntry.locked_until <= now),
    )


class EmailQueueWorker:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        sender: Optional[EmailSender] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.sender = sender or EmailSender()
        self.settings = settings or get_settings()

    def claim_emails(self, session: Session, batch_size: int, now: datetime) -> List[int]:
        """Lease up to ``batch_size`` due emails, oldest first."""
        candidates = session.scalars(
            select(EmailQueueEntry.id)
            .where(*_claimable(now))
            .order_by(EmailQueueEntry.scheduled_for.asc(), EmailQueueEntry.id.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        ).all()

        lease_until = now + timedelta(seconds=self.settings.email_claim_timeout_seconds)
        claimed = []
        for email_id in candidates:
            result = session.execute(
                update(EmailQueueEntry)
                .where(EmailQueueEntry.id == email_id, *_claimable(now))
                .values(locked_until=lease_until)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed.append(email_id)
        session.commit()
        return claimed

    def release(self, session: Session, email_ids: List[int]) -> None:
        if not email_ids:
            return
        session.execute(
            update(EmailQueueEntry)
            .where(EmailQueueEntry.id.in_(email_ids), EmailQueueEntry.status == EmailStatus.pending)
            .values(locked_until=None)
            .execution_options(synchronize_session=False)
        )
        session.commit()

    def _record_failure(self, session: Session, entry: EmailQueueEntry, error: str, now: datetime) -> str:
        entry.attempts += 1
        entry.last_error = error[:2000]
        entry.locked_until = None
        if entry.attempts >= entry.max_attempts:
            entry.status = EmailStatus.failed
            session.commit()
            logger.error(f"Email {entry.id} to {entry.to_email} failed permanently: {error}")
            OpsNotifier(session).notify(
                OpsEventType.email_dead_letter,
                entry.id,
                "Email dead-lettered",
                [
                    f"Email #{entry.id} ({entry.template_name}) to {entry.to_email}",
                    f"Attempts: {entry.attempts}/{entry.max_attempts}",
                    f"Last error: {error}",
                ],
            )
            session.commit()
            return "failed"

        entry.scheduled_for = now + retry_delay(entry.attempts)
        session.commit()
        logger.warning(
            f"Email {entry.id} attempt {entry.attempts}/{entry.max_attempts} failed, "
            f"retry at {entry.scheduled_for.isoformat()}: {error}"
        )
        return "retried"

    def process_email(self, email_id: int, now: Optional[datetime] = None) -> str:
        """Deliver one leased email.

        Returns the outcome: ``sent``, ``retried``, ``failed`` or ``skipped``
        (preferences said no, or deferred past quiet hours).
        """
        now = now or utcnow()
        with self.session_factory() as session:
            entry = session.get(EmailQueueEntry, email_id)
            if entry is None or entry.status != EmailStatus.pending:
                return "skipped"

            if not entry.is_system:
                prefs = get_preferences(session, entry.user_id)
                if not prefs.email_enabled or not prefs.allows(entry.alert_type):
                    entry.status = EmailStatus.skipped
                    entry.locked_until = None
                    entry.last_error = (
                        "Email notifications disabled"
                        if not prefs.email_enabled
                        else f'Alert type "{entry.alert_type}" not enabled'
                    )
                    session.commit()
                    logger.info(f"Email {entry.id} skipped: {entry.last_error}")
                    return "skipped"

                if is_in_quiet_hours(now, prefs.quiet_hours_start, prefs.quiet_hours_end, prefs.timezone):
                    entry.scheduled_for = quiet_hours_end(now, prefs.quiet_hours_end, prefs.timezone)
                    entry.locked_until = None
                    session.commit()
                    logger.info(
                        f"Email {entry.id} deferred to end of quiet hours "
                        f"({entry.scheduled_for.isoformat()})"
                    )
                    return "skipped"

            try:
                html = render_email_template(entry.template_name, entry.template_data or {})
                subject = generate_subject(entry.template_name, entry.template_data or {})
                self.sender.send(entry.to_email, subject, html)
            except TemplateRenderError as e:
                return self._record_failure(session, entry, f"Template render failed: {e}", now)
            except EmailDeliveryError as e:
                return self._record_failure(session, entry, str(e), now)

            entry.status = EmailStatus.sent
            entry.sent_at = now
            entry.locked_until = None
            entry.last_error = None
            session.commit()
            return "sent"

    def process_email_queue(
        self,
        batch_size: Optional[int] = None,
        deadline: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> EmailBatchStats:
        """Send one batch of due emails.

        Args:
            batch_size: Max emails to claim (``EMAIL_BATCH_SIZE`` by default).
            deadline: ``time.monotonic()`` value; emails not started by then
                are released untouched.
            now: Clock override for tests.
        """
        stats = EmailBatchStats()
        batch_size = batch_size or self.settings.email_batch_size
        now = now or utcnow()

        if self.settings.is_production and not self.sender.is_configured:
            message = "RESEND_API_KEY is required in production, email batch aborted"
            logger.error(message)
            stats.errors.append(message)
            return stats

        with self.session_factory() as session:
            email_ids = self.claim_emails(session, batch_size, now)
        logger.info(f"Claimed {len(email_ids)} emails")

        delay = self.settings.email_send_delay_ms / 1000
        for index, email_id in enumerate(email_ids):
            if deadline is not None and time.monotonic() >= deadline:
                logger.warning(f"Deadline reached, releasing {len(email_ids) - index} emails")
                with self.session_factory() as session:
                    self.release(session, email_ids[index:])
                break

            try:
                outcome = self.process_email(email_id, now=now)
            except Exception as e:
                logger.exception(f"Unexpected error sending email {email_id}")
                stats.processed += 1
                stats.failed += 1
                stats.errors.append(f"{email_id}: {e}")
                with self.session_factory() as session:
                    self.release(session, [email_id])
                continue

            stats.processed += 1
            if outcome == "sent":
                stats.sent += 1
            elif outcome == "retried":
                stats.retried += 1
            elif outcome == "failed":
                stats.failed += 1
                stats.errors.append(f"{email_id}: max attempts reached")
            else:
                stats.skipped += 1

            if delay and outcome == "sent":
                time.sleep(delay)

        logger.info(
            f"Email batch complete: processed={stats.processed} sent={stats.sent} "
            f"failed={stats.failed} retried={stats.retried} skipped={stats.skipped}"
        )
        return stats


def get_email_queue_stats(session: Session) -> EmailQueueStats:
    counts = dict(
        session.execute(
            select(EmailQueueEntry.status, func.count()).group_by(EmailQueueEntry.status)
        ).all()
    )
    oldest = session.scalar(
        select(func.min(EmailQueueEntry.scheduled_for)).where(
            EmailQueueEntry.status == EmailStatus.pending
        )
    )
    avg_failed = session.scalar(
        select(func.avg(EmailQueueEntry.attempts)).where(EmailQueueEntry.status == EmailStatus.failed)
    )
    pending = counts.get(EmailStatus.pending, 0)
    sent = counts.get(EmailStatus.sent, 0)
    failed = counts.get(EmailStatus.failed, 0)
    skipped = counts.get(EmailStatus.skipped, 0)
    return EmailQueueStats(
        pending=pending,
        sent=sent,
        failed=failed,
        skipped=skipped,
        total_queued=pending + sent + failed + skipped,
        oldest_pending=oldest,
        average_attempts_for_failed=round(float(avg_failed or 0), 2),
    )
