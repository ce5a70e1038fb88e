"""
Courier tracking page scrapers.

Each courier gets one ``CourierTracker`` implementation that knows its
tracking URL, its markup and its status-text table. The sync job only
talks to the interface.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional
from urllib.parse import urlencode

from playwright.async_api import Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    TrackingNumberInvalidError,
    TrackingNetworkError,
    TrackingTimeoutError,
    TrackingDataNotFoundError,
    TrackingParseError,
)
from backend.app.core.observability import timed
from backend.app.domain.shipment.status_mapper import CJ_STATUS_TABLE
from backend.app.models.shipment_enums import ShipmentStatus
from backend.app.services.tracking.browser import BrowserSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScrapeResult:
    """Raw courier status as observed on the tracking page."""
    tracking_number: str
    raw_status: str
    observed_at: datetime


class CourierTracker(ABC):
    """Reads the current raw status of a tracking number from one courier."""

    courier_name: str = None
    status_table: Mapping[str, ShipmentStatus] = {}

    @abstractmethod
    async def fetch_raw_status(self, session: BrowserSession, tracking_number: str) -> ScrapeResult:
        """
        Fetch the courier's latest status text.

        Raises:
            TrackingNumberInvalidError: blank tracking number
            TrackingScrapeError: any page, network, timeout or parse failure
        """
        ...


class CjLogisticsTracker(CourierTracker):
    """
    CJ Logistics tracking page.

    The page renders its status history into ``tbody#statusDetail`` with
    JavaScript; the last row is the latest event and its fifth cell holds
    the status text.
    """

    courier_name = "CJ Logistics"
    status_table = CJ_STATUS_TABLE

    def __init__(
        self,
        base_url: Optional[str] = None,
        status_selector: Optional[str] = None,
        status_column: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.base_url = base_url or settings.tracking_base_url
        self.status_selector = status_selector or settings.tracking_status_selector
        self.status_column = settings.tracking_status_column if status_column is None else status_column
        self.timeout_ms = timeout_ms or settings.tracking_timeout_ms

    def tracking_url(self, tracking_number: str) -> str:
        return f"{self.base_url}?{urlencode({'wblNo': tracking_number})}"

    @timed("cj_tracking_scrape")
    async def fetch_raw_status(self, session: BrowserSession, tracking_number: str) -> ScrapeResult:
        if not tracking_number or not tracking_number.strip():
            raise TrackingNumberInvalidError(tracking_number)
        tracking_number = tracking_number.strip()
        url = self.tracking_url(tracking_number)

        page = await session.new_page()
        try:
            page.set_default_timeout(self.timeout_ms)
            try:
                await page.goto(url, timeout=self.timeout_ms)
            except PlaywrightTimeoutError as exc:
                raise TrackingTimeoutError(
                    f"Tracking page did not load within {self.timeout_ms}ms", tracking_number
                ) from exc

            try:
                await page.wait_for_selector(self.status_selector, timeout=self.timeout_ms)
            except PlaywrightTimeoutError as exc:
                raise TrackingTimeoutError(
                    f"Status table did not render within {self.timeout_ms}ms", tracking_number
                ) from exc

            raw_status = await self._read_latest_status(page, tracking_number)
        except PlaywrightError as exc:
            raise TrackingNetworkError(
                f"Tracking page request failed: {exc}", tracking_number
            ) from exc
        finally:
            await self._close_page(page)

        logger.debug("Scraped tracking status", extra={"tracking_number": tracking_number, "raw_status": raw_status})
        return ScrapeResult(
            tracking_number=tracking_number,
            raw_status=raw_status,
            observed_at=datetime.now(timezone.utc),
        )

    async def _read_latest_status(self, page: Page, tracking_number: str) -> str:
        rows = page.locator(self.status_selector)
        row_count = await rows.count()
        if row_count == 0:
            raise TrackingDataNotFoundError(tracking_number)

        cells = rows.nth(row_count - 1).locator("td")
        if await cells.count() <= self.status_column:
            raise TrackingParseError(
                f"Latest status row has no column {self.status_column}", tracking_number
            )

        text = (await cells.nth(self.status_column).inner_text()).strip()
        if not text:
            raise TrackingParseError("Latest status cell is empty", tracking_number)
        return text

    async def _close_page(self, page: Page) -> None:
        try:
            await page.close()
        except Exception as exc:
            logger.warning("Page close failed: %s", exc)
