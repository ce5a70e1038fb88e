"""
Dependency wiring for the shipment tracking pipeline.

FastAPI dependencies and factories that assemble the tracker, browser
manager, side-effect dispatcher and sync job. Tests override these.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.redis_client import get_redis
from backend.app.db.session import AsyncSessionLocal, get_session_factory
from backend.app.services.shipment_side_effects import SideEffectDispatcher
from backend.app.services.shipment_sync import ShipmentSyncJob
from backend.app.services.tracking.browser import BrowserSessionManager
from backend.app.services.tracking.scraper import CourierTracker, CjLogisticsTracker


def get_tracker() -> CourierTracker:
    """Courier scraper for the single supported courier."""
    return CjLogisticsTracker()


def get_browser_manager() -> BrowserSessionManager:
    return BrowserSessionManager()


def get_dispatcher(request: Request) -> SideEffectDispatcher:
    """
    Dispatcher created in the application lifespan.

    It holds the HTTP clients of the order and notification services.
    """
    return request.app.state.dispatcher


def build_sync_job(
    dispatcher: SideEffectDispatcher,
    redis,
    session_factory: async_sessionmaker = AsyncSessionLocal,
    tracker: CourierTracker = None,
    browser_manager: BrowserSessionManager = None,
) -> ShipmentSyncJob:
    """Assemble a sync job from production defaults."""
    return ShipmentSyncJob(
        session_factory=session_factory,
        tracker=tracker or get_tracker(),
        dispatcher=dispatcher,
        browser_manager=browser_manager or get_browser_manager(),
        redis=redis,
    )


async def get_sync_job(
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
    redis=Depends(get_redis),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    tracker: CourierTracker = Depends(get_tracker),
    browser_manager: BrowserSessionManager = Depends(get_browser_manager),
) -> ShipmentSyncJob:
    """FastAPI dependency for a manually triggered sync run."""
    return build_sync_job(
        dispatcher,
        redis,
        session_factory=session_factory,
        tracker=tracker,
        browser_manager=browser_manager,
    )
