from __future__ import annotations
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.triggers.interval import IntervalTrigger
from pytz import utc
from loguru import logger

from ..config import settings
from ..db import Database
from .jobs import abandon_idle_sessions_job, refresh_rank_cache_job

SWEEP_JOB_ID = "abandon_idle_sessions"
RANK_CACHE_JOB_ID = "refresh_rank_cache"

job_defaults = {
    'coalesce': True,  # Combine missed runs
    'max_instances': 1,  # One instance per job
    'misfire_grace_time': 300,  # 5 min grace for missed jobs
}


def create_scheduler(db: Database) -> AsyncIOScheduler:
    """
    Build a scheduler with the maintenance jobs registered.
    Jobs hold a reference to `db`, so they live in the in-memory jobstore.
    """
    scheduler = AsyncIOScheduler(
        executors={'default': AsyncIOExecutor()},
        job_defaults=job_defaults,
        timezone=utc,
    )
    scheduler.add_job(
        abandon_idle_sessions_job,
        trigger=IntervalTrigger(minutes=settings.SESSION_SWEEP_INTERVAL_MINUTES, timezone=utc),
        args=[db],
        id=SWEEP_JOB_ID,
        replace_existing=True,
    )
    scheduler.add_job(
        refresh_rank_cache_job,
        trigger=IntervalTrigger(minutes=settings.RANK_CACHE_REFRESH_MINUTES, timezone=utc),
        args=[db],
        id=RANK_CACHE_JOB_ID,
        replace_existing=True,
    )
    logger.info(
        "Scheduled idle sweep every {} min and rank cache refresh every {} min",
        settings.SESSION_SWEEP_INTERVAL_MINUTES, settings.RANK_CACHE_REFRESH_MINUTES,
    )
    return scheduler


def start_scheduler(scheduler: AsyncIOScheduler):
    if not scheduler.running:
        scheduler.start()
        logger.info("APScheduler started")


def shutdown_scheduler(scheduler: AsyncIOScheduler):
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler shut down")
