from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging

from app.config import settings
from app.utils.data_retention import install_retention_policy

scheduler = AsyncIOScheduler()

logger = logging.getLogger(__name__)


def start_scheduler() -> None:
    if not settings.scheduler_enabled:
        logger.info("[Scheduler] Disabled by configuration")
        return
    install_retention_policy(scheduler, settings.page_view_retention_days)
    scheduler.start()
    logger.info("[Scheduler] Started")


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("[Scheduler] Stopped")
