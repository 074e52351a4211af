"""
Weekly Allocation Scheduler

Runs the population-wide matching pipeline on a cron schedule using
APScheduler.

Default Schedule: Mondays at 09:00 (ALLOCATION_DAY_OF_WEEK / ALLOCATION_HOUR)
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from matchmaker.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()
scheduler = AsyncIOScheduler()


async def run_weekly_allocation():
    """Scheduled task: expire stale matches and allocate this week's matches."""
    # Import here to avoid circular import
    from matchmaker.api.deps import get_pipeline

    try:
        summary = await get_pipeline().run_population()
    except Exception:
        logger.exception("Weekly allocation run failed")
        return

    logger.info(
        f"Weekly allocation: {summary.total_matches_created} matches for "
        f"{summary.successful_users}/{summary.total_users} users"
    )


def start_scheduler():
    """Start the background scheduler"""
    scheduler.add_job(
        run_weekly_allocation,
        trigger=CronTrigger(
            day_of_week=settings.allocation_day_of_week,
            hour=settings.allocation_hour,
        ),
        id="weekly_allocation",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started: allocation every {settings.allocation_day_of_week} "
        f"at {settings.allocation_hour:02d}:00"
    )


def stop_scheduler():
    """Stop the background scheduler"""
    if scheduler.running:
        scheduler.shutdown()
