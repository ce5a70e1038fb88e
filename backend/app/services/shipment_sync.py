"""
Shipment tracking reconciliation job.

Pages through shipments awaiting delivery, scrapes each one's courier
status, maps it to a canonical status and applies the transition. Work is
committed one chunk at a time; a failing shipment is skipped and counted,
and the run aborts once the skip count exceeds the skip limit. Chunks
committed before an abort stay committed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    BrowserInitializationError,
    ShipmentConflictError,
    SkipLimitExceededError,
    SyncRunInProgressError,
    TrackingNumberInvalidError,
    TrackingScrapeError,
    TransitionError,
)
from backend.app.core.observability import timed
from backend.app.core.redis_client import acquire_run_lock, release_run_lock
from backend.app.domain.shipment import state_machine
from backend.app.domain.shipment.status_mapper import map_status, is_known_status
from backend.app.models.shipment import Shipment
from backend.app.models.shipment_enums import ShipmentStatus, SyncRunStatus, SyncTrigger, SkipKind
from backend.app.models.shipment_sync_run import ShipmentSyncRun, ShipmentSyncSkip
from backend.app.services.shipment_side_effects import SideEffectDispatcher
from backend.app.services.shipment_store import fetch_trackable_shipments, save_if_unchanged
from backend.app.services.tracking.browser import BrowserSession, BrowserSessionManager
from backend.app.services.tracking.scraper import CourierTracker, ScrapeResult

logger = logging.getLogger(__name__)


@dataclass
class SkippedShipment:
    shipment_id: int
    tracking_number: Optional[str]
    kind: SkipKind
    reason: str


@dataclass
class SyncRunReport:
    """Summary of one run. Counters only include committed chunks."""
    trigger: SyncTrigger
    run_id: Optional[int] = None
    status: SyncRunStatus = SyncRunStatus.RUNNING
    failure_reason: Optional[str] = None
    read_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    delivered_count: int = 0
    chunk_count: int = 0
    skips: List[SkippedShipment] = field(default_factory=list)

    @property
    def skip_count(self) -> int:
        return len(self.skips)

    def fail(self, reason: str) -> None:
        self.status = SyncRunStatus.FAILED
        self.failure_reason = reason


async def reconcile_shipment(
    browser: BrowserSession,
    tracker: CourierTracker,
    shipment: Shipment
) -> Tuple[ShipmentStatus, ScrapeResult]:
    """
    Scrape, map and transition a single shipment.

    A mapped status equal to the current one is not a transition and leaves
    the status as is.

    Returns:
        (status before reconciliation, scrape result)

    Raises:
        TrackingScrapeError, TrackingNumberInvalidError, TransitionError
    """
    previous = shipment.status
    result = await tracker.fetch_raw_status(browser, shipment.tracking_number)
    target = map_status(result.raw_status, tracker.status_table)

    if not is_known_status(result.raw_status, tracker.status_table):
        logger.debug(
            "Unmapped courier status %r for shipment %s, treated as %s",
            result.raw_status, shipment.id, target.value
        )

    if target != previous:
        state_machine.apply(shipment, target)

    shipment.last_raw_status = result.raw_status[:255]
    shipment.last_tracked_at = result.observed_at
    return previous, result


def _classify_failure(exc: Exception) -> SkipKind:
    if isinstance(exc, ShipmentConflictError):
        return SkipKind.CONFLICT
    if isinstance(exc, TransitionError):
        return SkipKind.TRANSITION
    if isinstance(exc, TrackingNumberInvalidError):
        return SkipKind.INVALID_TRACKING
    if isinstance(exc, TrackingScrapeError):
        return SkipKind.SCRAPE
    return SkipKind.UNEXPECTED


class ShipmentSyncJob:
    """
    The recurring reconciliation run.

    Args:
        session_factory: Creates one session per chunk
        tracker: Courier scraper
        dispatcher: Side effects for delivered shipments
        browser_manager: Opens the run's browser session
        redis: Client for the system-wide run lock (None disables locking)
        chunk_size: Shipments per committed chunk
        skip_limit: Failures tolerated per run before it aborts
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        tracker: CourierTracker,
        dispatcher: SideEffectDispatcher,
        browser_manager: Optional[BrowserSessionManager] = None,
        redis=None,
        chunk_size: Optional[int] = None,
        skip_limit: Optional[int] = None,
        lock_ttl_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.tracker = tracker
        self.dispatcher = dispatcher
        self.browser_manager = browser_manager or BrowserSessionManager()
        self.redis = redis
        self.chunk_size = chunk_size or settings.shipment_sync_chunk_size
        self.skip_limit = settings.shipment_sync_skip_limit if skip_limit is None else skip_limit
        self.lock_ttl_seconds = lock_ttl_seconds or settings.sync_lock_ttl_seconds

    @timed("shipment_sync_run")
    async def run(self, trigger: SyncTrigger = SyncTrigger.SCHEDULED) -> SyncRunReport:
        """
        Execute one run.

        Returns:
            The run report; ``status`` is FAILED if the skip limit was exceeded

        Raises:
            SyncRunInProgressError: another run holds the lock
            BrowserInitializationError: the browser could not be started or died
        """
        token = None
        if self.redis is not None:
            token = await acquire_run_lock(self.redis, ttl_seconds=self.lock_ttl_seconds)
            if token is None:
                raise SyncRunInProgressError()
        try:
            return await self._run(trigger)
        finally:
            if token is not None:
                await release_run_lock(self.redis, token)

    async def _run(self, trigger: SyncTrigger) -> SyncRunReport:
        report = SyncRunReport(trigger=trigger)
        report.run_id = await self._start_run_record(trigger)
        logger.info(
            "Shipment sync run started",
            extra={"run_id": report.run_id, "trigger": trigger.value,
                   "chunk_size": self.chunk_size, "skip_limit": self.skip_limit}
        )

        try:
            async with self.browser_manager.session() as browser:
                await self._process_chunks(browser, report)
            report.status = SyncRunStatus.COMPLETED
        except SkipLimitExceededError as exc:
            report.fail(exc.message)
            logger.error(
                "Shipment sync run %s aborted: %s", report.run_id, exc.message,
                extra={"run_id": report.run_id, "committed_chunks": report.chunk_count}
            )
        except Exception as exc:
            report.fail(f"{type(exc).__name__}: {exc}")
            logger.error("Shipment sync run %s failed: %s", report.run_id, exc)
            raise
        finally:
            await self._finish_run_record(report)

        logger.info(
            "Shipment sync run finished",
            extra={
                "run_id": report.run_id,
                "status": report.status.value,
                "read": report.read_count,
                "updated": report.updated_count,
                "unchanged": report.unchanged_count,
                "delivered": report.delivered_count,
                "skipped": report.skip_count,
                "chunks": report.chunk_count,
            }
        )
        return report

    async def _process_chunks(self, browser: BrowserSession, report: SyncRunReport) -> None:
        last_id = None
        while True:
            async with self.session_factory() as db:
                chunk = await fetch_trackable_shipments(db, last_id, self.chunk_size)
                if not chunk:
                    return
                last_id = chunk[-1].id
                # Writes go through save_if_unchanged only, never an ORM flush
                db.expunge_all()

                processed = 0
                delivered: List[Shipment] = []
                updated = 0
                for shipment in chunk:
                    try:
                        previous, _ = await reconcile_shipment(browser, self.tracker, shipment)
                        await save_if_unchanged(db, shipment, previous, shipment.tracking_number)
                    except BrowserInitializationError:
                        raise
                    except Exception as exc:
                        self._record_skip(report, shipment, exc)
                        continue

                    processed += 1
                    if shipment.status != previous:
                        updated += 1
                        logger.info(
                            "Shipment %s moved %s -> %s", shipment.id, previous.value, shipment.status.value,
                            extra={"run_id": report.run_id, "shipment_id": shipment.id}
                        )
                        if shipment.status == ShipmentStatus.DELIVERED:
                            delivered.append(shipment)

                await db.commit()

            report.chunk_count += 1
            report.read_count += len(chunk)
            report.updated_count += updated
            report.unchanged_count += processed - updated
            report.delivered_count += len(delivered)

            # Only after commit, so a rolled-back chunk never completes an order
            for shipment in delivered:
                await self.dispatcher.shipment_delivered(shipment)

            if len(chunk) < self.chunk_size:
                return

    def _record_skip(self, report: SyncRunReport, shipment: Shipment, exc: Exception) -> None:
        kind = _classify_failure(exc)
        reason = getattr(exc, "message", None) or str(exc) or type(exc).__name__
        report.skips.append(SkippedShipment(
            shipment_id=shipment.id,
            tracking_number=shipment.tracking_number,
            kind=kind,
            reason=reason,
        ))

        log_data = {
            "run_id": report.run_id,
            "shipment_id": shipment.id,
            "tracking_number": shipment.tracking_number,
            "status": shipment.status.value,
            "skip_kind": kind.value,
            "skip_count": report.skip_count,
        }
        if kind == SkipKind.TRANSITION:
            logger.warning(
                "Courier status inconsistent with shipment %s, skipped: %s", shipment.id, reason,
                extra=log_data
            )
        elif kind == SkipKind.CONFLICT:
            logger.warning("Shipment %s changed during the run, skipped: %s", shipment.id, reason, extra=log_data)
        elif kind == SkipKind.UNEXPECTED:
            logger.error("Shipment %s skipped after unexpected error", shipment.id, exc_info=exc, extra=log_data)
        else:
            logger.error("Shipment %s skipped: %s", shipment.id, reason, extra=log_data)

        if report.skip_count > self.skip_limit:
            raise SkipLimitExceededError(report.skip_count, self.skip_limit)

    async def _start_run_record(self, trigger: SyncTrigger) -> int:
        async with self.session_factory() as db:
            run = ShipmentSyncRun(trigger=trigger, status=SyncRunStatus.RUNNING)
            db.add(run)
            await db.commit()
            return run.id

    async def _finish_run_record(self, report: SyncRunReport) -> None:
        async with self.session_factory() as db:
            result = await db.execute(select(ShipmentSyncRun).where(ShipmentSyncRun.id == report.run_id))
            run = result.scalar_one()
            run.status = report.status
            run.failure_reason = report.failure_reason
            run.read_count = report.read_count
            run.updated_count = report.updated_count
            run.unchanged_count = report.unchanged_count
            run.delivered_count = report.delivered_count
            run.skip_count = report.skip_count
            run.chunk_count = report.chunk_count
            run.finished_at = datetime.now(timezone.utc)
            db.add_all([
                ShipmentSyncSkip(
                    run_id=run.id,
                    shipment_id=skip.shipment_id,
                    tracking_number=skip.tracking_number,
                    kind=skip.kind,
                    reason=skip.reason,
                )
                for skip in report.skips
            ])
            await db.commit()
