"""
Background job definitions using APScheduler.

Jobs include:
- Driver totals reconciliation sweep
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.config import settings
from src.db import get_db_context
from src.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def reconciliation_sweep_job():
    """Repair drifted driver totals."""
    logger.debug("Running reconciliation sweep job")
    try:
        async with get_db_context() as db:
            report = await ReconciliationEngine(db).fix_all()
            if report.repaired_drivers or report.failed_drivers:
                logger.info(
                    f"Reconciliation sweep job: repaired {report.repaired_drivers}, "
                    f"failed {report.failed_drivers} of {report.total_drivers} drivers"
                )
    except Exception as e:
        logger.error(f"Reconciliation sweep job error: {e}")


def setup_scheduler():
    """
    Configure and add all scheduled jobs.

    Called during application startup.
    """
    scheduler.add_job(
        reconciliation_sweep_job,
        trigger=IntervalTrigger(minutes=settings.reconciliation_sweep_interval_minutes),
        id="reconciliation_sweep",
        name="Repair drifted driver totals",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    logger.info(
        f"Scheduler configured: reconciliation sweep every "
        f"{settings.reconciliation_sweep_interval_minutes} min"
    )
