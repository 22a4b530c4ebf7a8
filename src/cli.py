import argparse
from dataclasses import asdict

from loguru import logger

from src.config import get_settings
from src.db.database import Base, get_sync_session, sync_engine

settings = get_settings()


def init_database():
    """Create all tables."""
    import src.models  # noqa: F401

    Base.metadata.create_all(sync_engine)
    logger.info("Database initialized")


def show_stats():
    """Print crawl and email queue stats."""
    from src.notifications.email_worker import get_email_queue_stats
    from src.scheduler.queue import get_competitors_due, get_queue_stats

    with get_sync_session() as session:
        logger.info(f"Crawl queue: {asdict(get_queue_stats(session))}")
        logger.info(f"Email queue: {asdict(get_email_queue_stats(session))}")
        for competitor in get_competitors_due(session, limit=5):
            logger.info(
                f"Due: {competitor.name} ({competitor.url}), "
                f"last crawled {competitor.last_crawled_at or 'never'}"
            )


def main():
    parser = argparse.ArgumentParser(description="MarketPulse pipeline CLI")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init command
    subparsers.add_parser("init", help="Initialize database")

    # seed command
    subparsers.add_parser("seed", help="Seed demo user, business and competitors")

    # schedule command
    subparsers.add_parser("schedule", help="Enqueue crawl jobs for due competitors")

    # work command
    work_parser = subparsers.add_parser("work", help="Process one crawl batch")
    work_parser.add_argument("--batch-size", "-n", type=int, help="Jobs to claim")
    work_parser.add_argument("--workers", "-w", type=int, help="Parallel jobs")
    work_parser.add_argument("--timeout", "-t", type=int, help="Seconds before no new job starts")

    # email-work command
    email_parser = subparsers.add_parser("email-work", help="Send one batch of due emails")
    email_parser.add_argument("--batch-size", "-n", type=int, help="Emails to claim")

    # weekly-summary command
    subparsers.add_parser("weekly-summary", help="Queue last week's summary emails")

    # stats command
    subparsers.add_parser("stats", help="Show crawl and email queue stats")

    # serve command
    subparsers.add_parser("serve", help="Start API server")

    args = parser.parse_args()

    if args.command == "init":
        init_database()
    elif args.command == "seed":
        from src.db.seed import seed_demo_data

        seed_demo_data()
    elif args.command == "schedule":
        from src.scheduler.jobs import run_enqueue_jobs

        result = run_enqueue_jobs()
        logger.info(f"Result: {asdict(result)}")
    elif args.command == "work":
        import time

        from src.crawler.worker import CrawlWorker
        from src.db.database import sync_session_factory

        deadline = time.monotonic() + args.timeout if args.timeout else None
        worker = CrawlWorker(sync_session_factory)
        try:
            batch = worker.process_queue_batch(
                batch_size=args.batch_size, deadline=deadline, max_workers=args.workers
            )
        finally:
            worker.close()
        for result in batch.results:
            logger.info(f"Job {result.job_id}: {result.outcome} {result.message}")
        logger.info(
            f"Processed {batch.processed}: {batch.successful} ok, {batch.failed} failed"
        )
    elif args.command == "email-work":
        from src.db.database import sync_session_factory
        from src.notifications.email_worker import EmailQueueWorker

        stats = EmailQueueWorker(sync_session_factory).process_email_queue(
            batch_size=args.batch_size
        )
        logger.info(f"Result: {asdict(stats)}")
    elif args.command == "weekly-summary":
        from src.scheduler.jobs import run_weekly_summary

        result = run_weekly_summary()
        logger.info(f"Result: {asdict(result)}")
    elif args.command == "stats":
        show_stats()
    elif args.command == "serve":
        import uvicorn

        uvicorn.run(
            "src.main:app",
            host=settings.api_host,
            port=settings.api_port,
            reload=settings.debug,
        )
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
