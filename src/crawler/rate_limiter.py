from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlparse

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.config import get_settings
from src.models.base import utcnow
from src.models.rate_limit import CrawlRateLimit

WINDOW = timedelta(hours=1)


def get_domain(url: str) -> str:
    return urlparse(url).hostname or url


@dataclass
class RateLimitStatus:
    domain: str
    remaining: int
    total: int
    window_start: datetime


class DomainRateLimiter:
    """Per-domain request counter kept in the database so every worker shares it."""

    def __init__(self, session: Session, limit: Optional[int] = None, window: timedelta = WINDOW):
        self.session = session
        self.limit = limit if limit is not None else get_settings().rate_limit_requests_per_hour
        self.window = window

    def _conditional_update(self, *criteria, **values) -> bool:
        result = self.session.execute(
            update(CrawlRateLimit)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _try_count(self, domain: str, now: datetime) -> Optional[bool]:
        """True if counted, False if the window is full, None if no row exists yet."""
        cutoff = now - self.window
        # expired window: restart it
        if self._conditional_update(
            CrawlRateLimit.domain == domain,
            CrawlRateLimit.window_start <= cutoff,
            request_count=1,
            window_start=now,
        ):
            return True
        if self._conditional_update(
            CrawlRateLimit.domain == domain,
            CrawlRateLimit.window_start > cutoff,
            CrawlRateLimit.request_count < self.limit,
            request_count=CrawlRateLimit.request_count + 1,
        ):
            return True
        exists = self.session.scalar(
            select(CrawlRateLimit.domain).where(CrawlRateLimit.domain == domain)
        )
        return False if exists is not None else None

    def check(self, url: str, now: Optional[datetime] = None) -> bool:
        """Count one request against the domain; False when the window is full.

        Every step is a single conditional statement, so concurrent workers
        never lose an increment. Two workers creating the same domain row
        race on the primary key; the loser retries as an update.
        """
        now = now or utcnow()
        domain = get_domain(url)

        for _ in range(2):
            counted = self._try_count(domain, now)
            if counted is None:
                try:
                    with self.session.begin_nested():
                        self.session.add(
                            CrawlRateLimit(domain=domain, request_count=1, window_start=now)
                        )
                except IntegrityError:
                    logger.debug(f"Rate limit row for {domain} created concurrently")
                    continue
                counted = True
            self.session.commit()
            if not counted:
                logger.info(f"Rate limit exceeded for {domain}: {self.limit} requests per window")
            return counted

        self.session.commit()
        return False

    def status(self, url: str, now: Optional[datetime] = None) -> RateLimitStatus:
        now = now or utcnow()
        domain = get_domain(url)
        entry = self.session.get(CrawlRateLimit, domain)
        if entry is None or entry.window_start <= now - self.window:
            return RateLimitStatus(domain, self.limit, self.limit, now)
        return RateLimitStatus(
            domain, max(0, self.limit - entry.request_count), self.limit, entry.window_start
        )

    def reset(self, url: str) -> None:
        domain = get_domain(url)
        self.session.execute(delete(CrawlRateLimit).where(CrawlRateLimit.domain == domain))
        self.session.commit()
        logger.info(f"Rate limit reset for {domain}")

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop counters whose window has closed."""
        now = now or utcnow()
        result = self.session.execute(
            delete(CrawlRateLimit).where(CrawlRateLimit.window_start <= now - self.window)
        )
        self.session.commit()
        return result.rowcount or 0
