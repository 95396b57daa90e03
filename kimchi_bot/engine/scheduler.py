"""APScheduler integration.

A single process-wide AsyncIOScheduler; the monitor registers one interval
job on it. Jobs use max_instances=1 and coalesce=True, so a slow cycle makes
later ticks skip instead of queueing.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def add_interval_job(
    job_id: str,
    func: Callable[[], Awaitable],
    seconds: int,
    name: str | None = None,
):
    """Add or replace an interval job. Starts the scheduler if needed."""
    if not scheduler.running:
        scheduler.start()

    scheduler.add_job(
        func,
        trigger=IntervalTrigger(seconds=seconds),
        id=job_id,
        name=name or job_id,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=max(1, seconds // 2),
    )
    logger.info(f"Scheduled job {job_id} every {seconds}s")


def remove_job(job_id: str) -> bool:
    if scheduler.get_job(job_id):
        scheduler.remove_job(job_id)
        logger.info(f"Removed job {job_id}")
        return True
    return False


def reschedule_job(job_id: str, seconds: int) -> bool:
    """Change the interval of an existing job."""
    if not scheduler.get_job(job_id):
        return False
    scheduler.reschedule_job(job_id, trigger=IntervalTrigger(seconds=seconds))
    logger.info(f"Rescheduled job {job_id} to every {seconds}s")
    return True


def next_run_time(job_id: str) -> datetime | None:
    job = scheduler.get_job(job_id)
    return job.next_run_time if job else None


def stop_scheduler():
    """Shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if j.next_run_time else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }
