from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from src.config import get_settings
from src.scheduler.jobs import (
    run_crawl_worker,
    run_email_worker,
    run_enqueue_jobs,
    run_weekly_summary,
)


def create_scheduler() -> BackgroundScheduler:
    settings = get_settings()
    scheduler = BackgroundScheduler(timezone="UTC")

    # enqueue due competitors
    scheduler.add_job(
        run_enqueue_jobs,
        "interval",
        minutes=settings.scheduler_interval_minutes,
        id="enqueue_crawl_jobs",
        name="Enqueue Crawl Jobs",
        max_instances=1,
        coalesce=True,
    )

    # crawl one batch
    scheduler.add_job(
        run_crawl_worker,
        "interval",
        minutes=settings.crawler_interval_minutes,
        id="crawl_worker",
        name="Crawl Worker",
        max_instances=1,
        coalesce=True,
    )

    # send due emails
    scheduler.add_job(
        run_email_worker,
        "interval",
        minutes=settings.email_interval_minutes,
        id="email_worker",
        name="Email Worker",
        max_instances=1,
        coalesce=True,
    )

    # weekly summary, Mondays 08:00 UTC
    scheduler.add_job(
        run_weekly_summary,
        CronTrigger(day_of_week="mon", hour=8, minute=0, timezone="UTC"),
        id="weekly_summary",
        name="Weekly Summary",
    )

    logger.info("Scheduler configured with jobs")
    return scheduler


def start_scheduler():
    scheduler = create_scheduler()
    scheduler.start()
    logger.info("Scheduler started")
    return scheduler
