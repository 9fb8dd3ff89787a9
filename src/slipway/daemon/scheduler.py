"""Built-in scheduler — runs housekeeping jobs such as the artifact retention sweep."""

from __future__ import annotations
import logging
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from slipway.artifacts.store import ArtifactStore

logger = logging.getLogger("slipway.scheduler")

RETENTION_JOB_ID = "artifact-retention"

_scheduler: AsyncIOScheduler | None = None


def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler()
    return _scheduler


def start_scheduler():
    scheduler = get_scheduler()
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler():
    global _scheduler
    scheduler = get_scheduler()
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    # A stopped AsyncIOScheduler stays bound to its loop; start fresh next time
    _scheduler = None


def add_interval_job(
    job_id: str,
    func,
    seconds: int,
    kwargs: dict | None = None,
):
    """Add an interval-based scheduled job, replacing one with the same id."""
    if seconds <= 0:
        raise ValueError(f"Interval must be positive, got {seconds}s")
    scheduler = get_scheduler()
    scheduler.add_job(
        func,
        trigger=IntervalTrigger(seconds=seconds),
        id=job_id,
        kwargs=kwargs or {},
        replace_existing=True,
        misfire_grace_time=60,
        coalesce=True,
        max_instances=1,
    )
    logger.info(f"Scheduled job '{job_id}' every {seconds}s")


def remove_job(job_id: str):
    scheduler = get_scheduler()
    try:
        scheduler.remove_job(job_id)
        logger.info(f"Removed job '{job_id}'")
    except JobLookupError:
        logger.debug(f"No job '{job_id}' to remove")


def list_jobs() -> list[dict]:
    scheduler = get_scheduler()
    jobs = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)
        jobs.append({
            "id": job.id,
            "next_run": next_run.isoformat() if next_run else None,
            "trigger": str(job.trigger),
        })
    return jobs


async def sweep_artifacts(store: ArtifactStore) -> list[str]:
    """Delete artifacts past their retention window. Returns the purged run ids."""
    removed = await store.purge_expired()
    if removed:
        logger.info(f"Retention sweep removed {len(removed)} artifact(s)")
    return removed


def schedule_retention_sweep(store: ArtifactStore, seconds: int):
    add_interval_job(RETENTION_JOB_ID, sweep_artifacts, seconds, kwargs={"store": store})
