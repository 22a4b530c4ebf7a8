"""Scheduling for the crawl and email pipelines.

Batch jobs (all stateless, safe to overlap):
  - enqueue crawl jobs     every SCHEDULER_INTERVAL_MINUTES (15)
  - crawl worker batch     every CRAWLER_INTERVAL_MINUTES (5)
  - email worker batch     every EMAIL_INTERVAL_MINUTES (5)
  - weekly summary         Monday 08:00 UTC

The cron endpoints under /api/cron trigger them in production; the in-process
APScheduler runner is an opt-in alternative (SCHEDULER_ENABLED=true).
"""
