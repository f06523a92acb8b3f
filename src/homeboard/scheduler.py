"""Recurring maintenance jobs run inside the web process."""

from collections.abc import Awaitable, Callable
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.logging import get_logger
from homeboard.notifiers.email import ZeptoMailClient
from homeboard.services.analytics import AnalyticsService
from homeboard.services.digest import DigestService
from homeboard.services.impersonation import ImpersonationService
from homeboard.services.lifecycle import ListingLifecycle

logger = get_logger(__name__)


async def run_job(name: str, job: Callable[[], Awaitable[Any]]) -> Any:
    """Run one job, logging the outcome. Failures are logged, never raised."""
    logger.info("job_started", job=name)
    try:
        result = await job()
    except Exception:
        logger.error("job_failed", job=name, exc_info=True)
        return None
    logger.info("job_finished", job=name, result=str(result))
    return result


def build_scheduler(
    storage: MarketplaceStorage, settings: Settings, mailer: ZeptoMailClient | None
) -> AsyncIOScheduler:
    """Create (but do not start) the scheduler with every maintenance job.

    All times are UTC.
    """
    analytics = AnalyticsService(storage, settings)
    lifecycle = ListingLifecycle(storage, settings, mailer)
    impersonation = ImpersonationService(storage, settings)
    digest = DigestService(storage, settings, mailer)

    jobs: list[tuple[str, Callable[[], Awaitable[Any]], CronTrigger]] = [
        ("analytics_rollup", analytics.rollup_yesterday, CronTrigger(hour=6, minute=10)),
        ("analytics_cleanup", analytics.cleanup, CronTrigger(hour=6, minute=20)),
        ("listing_lifecycle", lifecycle.run_lifecycle, CronTrigger(hour=7, minute=0)),
        ("impersonation_cleanup", impersonation.cleanup_expired, CronTrigger(minute="*/15")),
        ("admin_digest", digest.send_admin_digest, CronTrigger(hour=13, minute=0)),
    ]

    scheduler = AsyncIOScheduler(timezone="UTC")
    for name, job, trigger in jobs:
        scheduler.add_job(
            run_job,
            trigger,
            args=[name, job],
            id=name,
            name=name,
            replace_existing=True,
            coalesce=True,
            misfire_grace_time=600,
        )
    return scheduler
