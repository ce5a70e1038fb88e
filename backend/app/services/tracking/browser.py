"""
Headless browser lifecycle for courier scraping.

A ``BrowserSession`` is an explicit handle: the sync job opens one at the
start of a run, passes it to every scrape, and closes it on every exit
path. There is no process-wide browser.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from playwright.async_api import async_playwright, Browser, Page, Playwright
from playwright.async_api import Error as PlaywrightError

from backend.app.core.config import settings
from backend.app.core.exceptions import BrowserInitializationError

logger = logging.getLogger(__name__)


class BrowserSession:
    """One launched Chromium instance, owned by a single run."""

    def __init__(self, playwright: Playwright, browser: Browser):
        self._playwright = playwright
        self._browser = browser
        self.closed = False

    async def new_page(self) -> Page:
        """
        Open a fresh page.

        Raises:
            BrowserInitializationError: if the session is closed or the
                browser can no longer create pages.
        """
        if self.closed:
            raise BrowserInitializationError("Browser session is already closed")
        try:
            return await self._browser.new_page()
        except PlaywrightError as exc:
            raise BrowserInitializationError(f"Could not open a browser page: {exc}") from exc

    async def close(self) -> None:
        """Shut the browser and the Playwright driver down. Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        try:
            await self._browser.close()  # closes every page too
        except Exception as exc:
            logger.warning("Browser close failed: %s", exc)
        try:
            await self._playwright.stop()
        except Exception as exc:
            logger.warning("Playwright stop failed: %s", exc)
        logger.info("Browser session closed")


class BrowserSessionManager:
    """
    Opens and closes browser sessions.

    Args:
        headless: Run Chromium without a window (default from settings)
        slow_mo_ms: Delay between browser operations (default from settings)
        playwright_factory: ``async_playwright`` or a test double
    """

    def __init__(
        self,
        headless: Optional[bool] = None,
        slow_mo_ms: Optional[int] = None,
        playwright_factory: Callable = async_playwright,
    ):
        self.headless = settings.browser_headless if headless is None else headless
        self.slow_mo_ms = settings.browser_slow_mo_ms if slow_mo_ms is None else slow_mo_ms
        self._playwright_factory = playwright_factory

    async def open(self) -> BrowserSession:
        """
        Launch Chromium.

        Raises:
            BrowserInitializationError: if the driver or browser fails to start.
        """
        playwright = None
        try:
            playwright = await self._playwright_factory().start()
            browser = await playwright.chromium.launch(
                headless=self.headless,
                slow_mo=self.slow_mo_ms,
            )
        except Exception as exc:
            logger.error("Browser launch failed: %s", exc)
            if playwright is not None:
                try:
                    await playwright.stop()
                except Exception as stop_exc:
                    logger.warning("Playwright stop after failed launch failed: %s", stop_exc)
            raise BrowserInitializationError(f"Browser initialization failed: {exc}") from exc

        logger.info(
            "Browser session opened",
            extra={"headless": self.headless, "slow_mo_ms": self.slow_mo_ms}
        )
        return BrowserSession(playwright, browser)

    async def close(self, session: BrowserSession) -> None:
        await session.close()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BrowserSession]:
        """Open a session and guarantee it is closed on exit."""
        handle = await self.open()
        try:
            yield handle
        finally:
            await self.close(handle)
