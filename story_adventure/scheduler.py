from apscheduler.schedulers.asyncio import AsyncIOScheduler
from story_adventure.database import AsyncSessionLocal
from story_adventure.crud import crud_story
from story_adventure.core.config import settings
import logging

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)

async def prune_inactive_stories_job():
    """
    An async job function wrapper to be called by the scheduler.
    """
    logger.info("Scheduled job: Starting cleanup of inactive stories...")
    async with AsyncSessionLocal() as db:
        try:
            deleted_count = await crud_story.remove_inactive_stories(
                db,
                inactive_hours=settings.INACTIVE_STORY_CLEANUP_HOURS
            )
            logger.info(f"Scheduled job: Cleanup finished. Deleted {deleted_count} inactive stories.")
        except Exception as e:
            logger.error(f"Scheduled job failed: {e}")

def setup_scheduler() -> bool:
    """
    Adds jobs to the scheduler. Returns False when cleanup is disabled.
    """
    hours = settings.INACTIVE_STORY_CLEANUP_HOURS
    if hours <= 0:
        logger.info("Inactive story cleanup is disabled.")
        return False
    scheduler.add_job(
        prune_inactive_stories_job,
        'interval',
        hours=hours,
        id="prune_stories_job",
        replace_existing=True
    )
    logger.info("Cleanup job has been added to the scheduler. It will run every %d hours.", hours)
    return True
