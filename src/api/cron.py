"""Bearer-protected triggers for the batch jobs, called by an external cron."""
from __future__ import annotations

import hmac
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from loguru import logger

from src.config import get_settings
from src.models.base import utcnow
from src.scheduler.jobs import (
    run_crawl_worker,
    run_email_worker,
    run_enqueue_jobs,
    run_weekly_summary,
)

router = APIRouter(prefix="/api/cron", tags=["cron"])


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    secret = get_settings().cron_secret
    if not secret:
        logger.error("CRON_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Cron secret not configured")
    expected = f"Bearer {secret}"
    if not hmac.compare_digest((authorization or "").encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _timestamp() -> str:
    return utcnow().isoformat() + "Z"


@router.get("/scheduler", dependencies=[Depends(verify_cron_secret)])
def cron_scheduler():
    try:
        result = run_enqueue_jobs()
    except Exception as e:
        logger.exception("Scheduler cron failed")
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok", **asdict(result), "timestamp": _timestamp()}


@router.get("/worker", dependencies=[Depends(verify_cron_secret)])
def cron_worker():
    try:
        batch = run_crawl_worker()
    except Exception as e:
        logger.exception("Crawl worker cron failed")
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "status": "ok",
        "processed": batch.processed,
        "successful": batch.successful,
        "failed": batch.failed,
        "timed_out": batch.timed_out,
        "results": [asdict(r) for r in batch.results],
        "timestamp": _timestamp(),
    }


@router.get("/email-worker", dependencies=[Depends(verify_cron_secret)])
def cron_email_worker():
    try:
        stats = run_email_worker()
    except Exception as e:
        logger.exception("Email worker cron failed")
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok", **asdict(stats), "timestamp": _timestamp()}


@router.get("/weekly-summary", dependencies=[Depends(verify_cron_secret)])
def cron_weekly_summary():
    try:
        result = run_weekly_summary()
    except Exception as e:
        logger.exception("Weekly summary cron failed")
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok", **asdict(result), "timestamp": _timestamp()}
