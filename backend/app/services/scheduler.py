"""
Periodic trigger for the shipment sync job.

An APScheduler ``AsyncIOScheduler`` inside the API process fires the job
on a cron schedule (every six hours on the hour by default). The job is
registered with ``max_instances=1`` and ``coalesce=True`` so a slow run
never overlaps the next tick in this process and missed ticks collapse
into one; the Redis run lock does the same across processes. A failed run
is logged and does not unschedule the job.
"""

import logging
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from backend.app.core.config import settings
from backend.app.core.exceptions import SyncRunInProgressError
from backend.app.models.shipment_enums import SyncTrigger
from backend.app.services.shipment_sync import ShipmentSyncJob, SyncRunReport

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "shipment_sync_job"


class ShipmentSyncScheduler:

    def __init__(
        self,
        job_factory: Callable[[], ShipmentSyncJob],
        cron: Optional[str] = None,
        timezone: Optional[str] = None,
    ):
        self.job_factory = job_factory
        self.trigger = CronTrigger.from_crontab(
            cron or settings.shipment_sync_cron,
            timezone=timezone or settings.shipment_sync_timezone,
        )
        self.scheduler = AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Register the sync job and start the scheduler. Needs a running event loop."""
        if self.running:
            return
        self.scheduler.add_job(
            self.run_once,
            self.trigger,
            id=SYNC_JOB_ID,
            name="Shipment status sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("Shipment sync scheduler started (%s)", self.trigger)

    def shutdown(self) -> None:
        if not self.running:
            return
        self.scheduler.shutdown(wait=False)
        logger.info("Shipment sync scheduler stopped")

    async def run_once(self) -> Optional[SyncRunReport]:
        """Start one scheduled run. Returns its report, or None if it did not complete."""
        try:
            report = await self.job_factory().run(SyncTrigger.SCHEDULED)
        except SyncRunInProgressError:
            logger.info("Previous shipment sync still running, skipping this tick")
            return None
        except Exception:
            logger.exception("Scheduled shipment sync failed")
            return None

        if report.failure_reason:
            logger.error(
                "Scheduled shipment sync run %s needs follow-up: %s",
                report.run_id, report.failure_reason
            )
        return report
