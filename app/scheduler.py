from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime
from typing import Optional
import logging

from app.config import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

SYNC_JOB_ID = "metadata_sync"


def get_next_run_time() -> Optional[datetime]:
    """Get the next scheduled run time."""
    job = scheduler.get_job(SYNC_JOB_ID)
    if job:
        return job.next_run_time
    return None


async def scheduled_sync():
    """Run the metadata sync job."""
    from app.services.metadata_sync import build_sync_service

    service = await build_sync_service()
    if not service:
        logger.error("Sonarr not configured, skipping scheduled sync")
        return

    if not service.progress.claim():
        logger.warning("A metadata sync is already running, skipping scheduled sync")
        return

    logger.info("Starting scheduled metadata sync")
    await service.sync_all(trigger="scheduled")


def update_schedule(interval_hours: int):
    """Replace the sync job; an interval of 0 disables it."""
    if scheduler.get_job(SYNC_JOB_ID):
        scheduler.remove_job(SYNC_JOB_ID)

    if interval_hours <= 0:
        logger.info("Scheduling disabled")
        return

    scheduler.add_job(
        scheduled_sync,
        IntervalTrigger(hours=interval_hours),
        id=SYNC_JOB_ID,
        max_instances=1,
        coalesce=True
    )
    logger.info(f"Scheduled metadata sync every {interval_hours} hour(s)")


def start_scheduler():
    """Start the scheduler."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")
    update_schedule(settings.sync_interval_hours)


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
