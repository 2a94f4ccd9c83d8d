"""
Page View Retention Policy

Prunes PageView rows older than the configured retention period.
Runs as a recurring APScheduler job with zero per-request overhead.
"""

import logging

from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from app.database import AsyncSessionLocal

logger = logging.getLogger(__name__)

RETENTION_JOB_ID = "page_view_retention"


async def prune_old_page_views(retention_days: int) -> int:
    """
    Delete PageView rows older than retention_days.

    Opens its own DB session. Returns the count of deleted rows, or 0 on
    failure so the next run simply tries again.
    """
    # Deferred import avoids circular dependency between utils and services
    from app.services.gdpr_service import enforce_data_retention

    async with AsyncSessionLocal() as db:
        try:
            return await enforce_data_retention(retention_days, db)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("data_retention: prune failed: %s", exc)
            return 0


def install_retention_policy(
    scheduler,
    retention_days: int,
    interval_hours: int = 24,
) -> None:
    """
    Register the page-view retention job with the shared APScheduler instance.

    Args:
        scheduler: The application's AsyncIOScheduler (from app.scheduler).
        retention_days: PageView rows older than this many days are deleted.
        interval_hours: How often to run (default: once daily).
    """
    scheduler.add_job(
        prune_old_page_views,
        trigger=IntervalTrigger(hours=interval_hours),
        args=[retention_days],
        id=RETENTION_JOB_ID,
        replace_existing=True,
        max_instances=1,
    )
    logger.info(
        "data_retention: installed (retention=%d days, interval=%dh)",
        retention_days,
        interval_hours,
    )
