"""
Run one shipment sync outside the API server.

Usage:
    python -m scripts.run_shipment_sync [--chunk-size N] [--skip-limit N] [--no-lock]

Exits 0 when the run completes, 1 when it fails or another run holds the lock.
"""

import argparse
import asyncio
import sys

from backend.app.core.config import settings
from backend.app.core.exceptions import AppException
from backend.app.core.observability import configure_logging
from backend.app.core.redis_client import redis_client
from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.models.shipment_enums import SyncRunStatus, SyncTrigger
from backend.app.services.shipment_side_effects import build_default_dispatcher, close_dispatcher
from backend.app.services.shipment_sync import ShipmentSyncJob
from backend.app.services.tracking.browser import BrowserSessionManager
from backend.app.services.tracking.scraper import CjLogisticsTracker

# Register tables
from backend.app.models.shipment import Shipment  # noqa: F401
from backend.app.models.shipment_sync_run import ShipmentSyncRun  # noqa: F401


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Reconcile shipment statuses with the courier once.")
    parser.add_argument("--chunk-size", type=int, default=settings.shipment_sync_chunk_size)
    parser.add_argument("--skip-limit", type=int, default=settings.shipment_sync_skip_limit)
    parser.add_argument("--no-lock", action="store_true", help="Do not take the Redis run lock")
    return parser.parse_args(argv)


async def run(args) -> int:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    dispatcher = build_default_dispatcher()
    job = ShipmentSyncJob(
        session_factory=AsyncSessionLocal,
        tracker=CjLogisticsTracker(),
        dispatcher=dispatcher,
        browser_manager=BrowserSessionManager(),
        redis=None if args.no_lock else redis_client,
        chunk_size=args.chunk_size,
        skip_limit=args.skip_limit,
    )
    try:
        report = await job.run(SyncTrigger.MANUAL)
    except AppException as exc:
        print(f"❌ Sync failed: {exc.error_code} {exc.message}")
        return 1
    finally:
        await close_dispatcher(dispatcher)
        await redis_client.aclose()
        await engine.dispose()

    print(
        f"Run {report.run_id}: {report.status.value} "
        f"read={report.read_count} updated={report.updated_count} "
        f"delivered={report.delivered_count} skipped={report.skip_count}"
    )
    if report.status != SyncRunStatus.COMPLETED:
        print(f"❌ {report.failure_reason}")
        return 1
    print("✅ Sync completed")
    return 0


def main(argv=None) -> int:
    configure_logging()
    return asyncio.run(run(parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
