"""Browser lifecycle management with Playwright.

This module provides BrowserManager, which owns one Chromium process and one
browsing context for the Banesco Online session. It is constructed and
injected explicitly so the login flow and the scraper share the same
long-lived browser across sequential tool invocations.
"""

import asyncio

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Route,
    async_playwright,
)

from banesco_scraper.browser.surface import PageSurface

logger = structlog.get_logger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)


class BrowserManager:
    """Manager for a Playwright Chromium instance and its browsing context.

    Usage:
        manager = BrowserManager(headless=True)
        await manager.initialize()
        surface = await manager.new_surface()
        # ... use surface ...
        await manager.shutdown()
    """

    _playwright: Playwright | None
    _browser: Browser | None
    _context: BrowserContext | None
    _lock: asyncio.Lock

    def __init__(
        self,
        headless: bool = True,
        timeout_ms: int = 30000,
        block_resources: list[str] | None = None,
    ) -> None:
        """Initialize browser manager.

        Args:
            headless: Run Chromium without a window.
            timeout_ms: Default timeout applied to every page.
            block_resources: Playwright resource types to abort (image, font...).
        """
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.block_resources = frozenset(block_resources or ())
        self._playwright = None
        self._browser = None
        self._context = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def initialize(self) -> None:
        """Start Playwright and launch Chromium.

        Raises:
            RuntimeError: If browser fails to launch.
        """
        async with self._lock:
            if self._browser is not None:
                logger.info("browser_already_initialized")
                return

            try:
                logger.info("initializing_playwright", headless=self.headless)
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=[
                        "--no-sandbox",
                        "--disable-setuid-sandbox",
                        "--disable-dev-shm-usage",
                        "--disable-gpu",
                    ],
                )
                logger.info("browser_initialized_successfully")

            except Exception as e:
                logger.error(
                    "browser_initialization_failed",
                    error=str(e),
                    exc_info=True,
                )
                raise RuntimeError(f"Failed to initialize browser: {e}") from e

    async def get_context(self) -> BrowserContext:
        """Get the current browsing context, creating it on first use.

        Raises:
            RuntimeError: If the browser is not available.
        """
        if self._browser is None:
            await self.initialize()

        async with self._lock:
            if self._context is None:
                if self._browser is None:
                    raise RuntimeError("Browser is not available")
                self._context = await self._create_context(self._browser)

        return self._context

    async def _create_context(self, browser: Browser) -> BrowserContext:
        context = await browser.new_context(
            viewport={"width": 1366, "height": 768},
            locale="es-VE",
            timezone_id="America/Caracas",
            user_agent=USER_AGENT,
            extra_http_headers={"Accept-Language": "es-ES,es;q=0.9"},
        )
        context.set_default_timeout(self.timeout_ms)

        if self.block_resources:
            await context.route("**/*", self._route_request)

        logger.debug("browser_context_created", blocked=sorted(self.block_resources))
        return context

    async def _route_request(self, route: Route) -> None:
        if route.request.resource_type in self.block_resources:
            await route.abort()
        else:
            await route.continue_()

    async def new_page(self) -> Page:
        """Create a new page in the browsing context.

        The caller is responsible for closing the page after use.
        """
        context = await self.get_context()
        page = await context.new_page()

        logger.debug("new_page_created", total_pages=len(context.pages))
        return page

    async def new_surface(self) -> PageSurface:
        """Create a new page wrapped in a PageSurface."""
        return PageSurface(await self.new_page())

    async def reset(self) -> None:
        """Discard the browsing context so the next page starts clean.

        Cookies and storage from the discarded context are lost, which is
        what a restarted login needs after an active-session modal.
        """
        async with self._lock:
            if self._context is not None:
                try:
                    await self._context.close()
                except Exception as e:
                    logger.warning("error_closing_context", error=str(e))
                finally:
                    self._context = None

        logger.info("browser_context_reset")

    async def shutdown(self) -> None:
        """Close the browser and stop Playwright."""
        await self.reset()

        async with self._lock:
            if self._browser is not None:
                logger.info("closing_browser")
                try:
                    await self._browser.close()
                except Exception as e:
                    logger.warning("error_closing_browser", error=str(e))
                finally:
                    self._browser = None

            if self._playwright is not None:
                logger.info("stopping_playwright")
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.warning("error_stopping_playwright", error=str(e))
                finally:
                    self._playwright = None

            logger.info("browser_shutdown_complete")
