"""APScheduler setup for periodic tasks."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def create_scheduler(route_watcher) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    from bus_eta.config import settings

    scheduler = AsyncIOScheduler()

    # Re-resolve sessions whose route was edited
    scheduler.add_job(
        route_watcher.check,
        "interval",
        seconds=settings.route_refresh_seconds,
        id="watch_routes",
        name="Detect edited routes and refresh tracking sessions",
        max_instances=1,
    )

    return scheduler
