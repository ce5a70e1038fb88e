"""
Centralized Test Configuration.
"""

import pytest
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool
from unittest.mock import AsyncMock

from backend.app.main import app
from backend.app.db.session import get_db, get_session_factory, Base
from backend.app.core.redis_client import get_redis
from backend.app.core.dependencies import get_tracker, get_browser_manager, get_dispatcher
from backend.app.core.exceptions import BrowserInitializationError
from backend.app.domain.shipment.status_mapper import CJ_STATUS_TABLE
from backend.app.models.shipment import Shipment
from backend.app.models.shipment_enums import ShipmentStatus
from backend.app.services.tracking.scraper import CourierTracker, ScrapeResult

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FakeTracker(CourierTracker):
    """
    Courier tracker returning canned raw statuses.

    ``responses`` maps tracking number to raw text, or to an exception
    instance to raise. Unlisted numbers get an unmapped in-transit text.
    """

    courier_name = "Fake Courier"
    status_table = CJ_STATUS_TABLE

    def __init__(self, responses=None, default="간선상차"):
        self.responses = dict(responses or {})
        self.default = default
        self.calls = []

    async def fetch_raw_status(self, session, tracking_number):
        self.calls.append(tracking_number)
        response = self.responses.get(tracking_number, self.default)
        if isinstance(response, Exception):
            raise response
        return ScrapeResult(
            tracking_number=tracking_number,
            raw_status=response,
            observed_at=datetime.now(timezone.utc),
        )


class FakeBrowser:
    closed = False


class FakeBrowserManager:
    """Counts session opens and closes; optionally fails to launch."""

    def __init__(self, fail_on_open=False):
        self.fail_on_open = fail_on_open
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def session(self):
        if self.fail_on_open:
            raise BrowserInitializationError("Browser initialization failed: no chromium")
        self.opened += 1
        browser = FakeBrowser()
        try:
            yield browser
        finally:
            browser.closed = True
            self.closed += 1


def _make_shipment(
    order_id=None,
    sale_id=None,
    status=ShipmentStatus.IN_TRANSIT,
    tracking_number="TRK-0001",
    courier="CJ Logistics"
) -> Shipment:
    """Build a shipment directly in ``status`` for fixture data."""
    shipment = Shipment(
        courier=courier,
        tracking_number=tracking_number,
        _status=status,
    )
    if sale_id is not None:
        shipment.sale_id = sale_id
    else:
        shipment.order_id = order_id
        shipment.receiver_name = "Kim Minji"
        shipment.receiver_phone = "010-1234-5678"
        shipment.postal_code = "04524"
        shipment.address = "1 Sejong-daero, Jung-gu, Seoul"
    return shipment


# Redis Fixture
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture
def fake_tracker():
    return FakeTracker()


@pytest.fixture
def fake_browser_manager():
    return FakeBrowserManager()


@pytest.fixture
def dispatcher():
    return AsyncMock()


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    yield

    # Restore and clear
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
def pipeline_overrides(fake_tracker, fake_browser_manager, dispatcher):
    """Route the endpoints' courier, browser and dispatcher to per-test fakes."""
    app.dependency_overrides[get_tracker] = lambda: fake_tracker
    app.dependency_overrides[get_browser_manager] = lambda: fake_browser_manager
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield
    for dependency in (get_tracker, get_browser_manager, get_dispatcher):
        app.dependency_overrides.pop(dependency, None)


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def make_shipment():
    return _make_shipment


@pytest.fixture
def seed_shipments():
    """Persist shipments in one transaction and return their IDs in order."""
    async def _seed(*shipments):
        async with TestingSessionLocal() as session:
            session.add_all(shipments)
            await session.commit()
            return [shipment.id for shipment in shipments]
    return _seed
