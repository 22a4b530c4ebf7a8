from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from src.api.rate_limit import rate_limit
from src.db.database import get_db
from src.models.alert import Alert
from src.models.base import utcnow
from src.models.competitor import Competitor
from src.models.price_snapshot import PriceSnapshot
from src.notifications.email_worker import get_email_queue_stats
from src.scheduler.queue import get_competitors_due, get_queue_stats

router = APIRouter(prefix="/api/crawl", tags=["crawl"])


def _iso(value):
    return value.isoformat() if value else None


def build_crawl_status(session: Session) -> Dict[str, Any]:
    now = utcnow()
    queue = asdict(get_queue_stats(session))
    queue["oldest_job"] = _iso(queue["oldest_job"])
    email_queue = asdict(get_email_queue_stats(session))
    email_queue["oldest_pending"] = _iso(email_queue["oldest_pending"])

    due = get_competitors_due(session, limit=5, now=now)

    recent_crawls = session.execute(
        select(PriceSnapshot, Competitor.name)
        .join(Competitor, PriceSnapshot.competitor_id == Competitor.id)
        .order_by(PriceSnapshot.detected_at.desc(), PriceSnapshot.id.desc())
        .limit(10)
    ).all()
    recent_alerts = session.execute(
        select(Alert, Competitor.name)
        .outerjoin(Competitor, Alert.competitor_id == Competitor.id)
        .order_by(Alert.created_at.desc(), Alert.id.desc())
        .limit(10)
    ).all()

    return {
        "queue": queue,
        "email_queue": email_queue,
        "competitors_due": [
            {
                "id": c.id,
                "name": c.name,
                "url": c.url,
                "last_crawled_at": _iso(c.last_crawled_at),
                "crawl_frequency_minutes": c.crawl_frequency_minutes,
            }
            for c in due
        ],
        "recent_crawls": [
            {
                "id": snapshot.id,
                "competitor_id": snapshot.competitor_id,
                "competitor_name": name,
                "snapshot_hash": snapshot.snapshot_hash,
                "detected_at": _iso(snapshot.detected_at),
            }
            for snapshot, name in recent_crawls
        ],
        "recent_alerts": [
            {
                "id": alert.id,
                "competitor_id": alert.competitor_id,
                "competitor_name": name,
                "alert_type": alert.alert_type.value,
                "message": alert.message,
                "created_at": _iso(alert.created_at),
            }
            for alert, name in recent_alerts
        ],
        "timestamp": now.isoformat(),
    }


@router.get("/status", dependencies=[Depends(rate_limit)])
async def crawl_status(db: AsyncSession = Depends(get_db)):
    return await db.run_sync(build_crawl_status)
