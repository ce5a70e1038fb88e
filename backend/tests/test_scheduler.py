"""
Tests for the periodic sync trigger.
"""

from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from backend.app.core.exceptions import SyncRunInProgressError, BrowserInitializationError
from backend.app.models.shipment_enums import SyncTrigger
from backend.app.services.scheduler import SYNC_JOB_ID, ShipmentSyncScheduler
from backend.app.services.shipment_sync import SyncRunReport


def job_returning(outcome):
    job = MagicMock()
    if isinstance(outcome, Exception):
        job.run = AsyncMock(side_effect=outcome)
    else:
        job.run = AsyncMock(return_value=outcome)
    return job


@pytest.mark.asyncio
async def test_run_once_starts_scheduled_run():
    report = SyncRunReport(trigger=SyncTrigger.SCHEDULED, run_id=1)
    job = job_returning(report)
    scheduler = ShipmentSyncScheduler(job_factory=lambda: job)

    assert await scheduler.run_once() is report
    job.run.assert_awaited_once_with(SyncTrigger.SCHEDULED)


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    SyncRunInProgressError(),
    BrowserInitializationError("Browser initialization failed"),
])
async def test_run_once_survives_failed_runs(error):
    scheduler = ShipmentSyncScheduler(job_factory=lambda: job_returning(error))

    assert await scheduler.run_once() is None


@pytest.mark.parametrize("now, expected", [
    (datetime(2026, 10, 19, 7, 30, tzinfo=timezone.utc), datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)),
    (datetime(2026, 10, 19, 23, 15, tzinfo=timezone.utc), datetime(2026, 10, 20, 0, 0, tzinfo=timezone.utc)),
])
def test_default_schedule_fires_every_six_hours_on_the_hour(now, expected):
    scheduler = ShipmentSyncScheduler(job_factory=MagicMock(), timezone="UTC")

    assert scheduler.trigger.get_next_fire_time(None, now) == expected


@pytest.mark.asyncio
async def test_start_registers_single_instance_cron_job():
    scheduler = ShipmentSyncScheduler(job_factory=MagicMock(), cron="15 */6 * * *", timezone="UTC")

    scheduler.start()
    try:
        assert scheduler.running
        job = scheduler.scheduler.get_job(SYNC_JOB_ID)
        assert job.trigger is scheduler.trigger
        assert job.func == scheduler.run_once
        assert job.max_instances == 1
        assert job.coalesce is True
        assert job.next_run_time.minute == 15
        assert job.next_run_time.hour % 6 == 0

        scheduler.start()
        assert len(scheduler.scheduler.get_jobs()) == 1
    finally:
        scheduler.shutdown()

    assert not scheduler.running


def test_shutdown_without_start_is_noop():
    scheduler = ShipmentSyncScheduler(job_factory=MagicMock())

    scheduler.shutdown()

    assert not scheduler.running
