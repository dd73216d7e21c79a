"""Public entry point for Banesco Online automation.

BanescoClient ties the browser, the session store, the login flow and the
scraper together behind four calls: login, get_authenticated_context,
scrape_transactions and close. None of them raise for portal or browser
failures; outcomes are returned as LoginResult / ScrapeResult values.
"""

from typing import Any

import structlog

from banesco_scraper.browser.auth import AuthManager
from banesco_scraper.browser.context import BrowserManager
from banesco_scraper.browser.scraper import DEFAULT_MAX_PAGES, BanescoScraper
from banesco_scraper.browser.surface import PageSurface
from banesco_scraper.config import load_selectors
from banesco_scraper.models import (
    AuthConfig,
    Credentials,
    LoginResult,
    LoginStatus,
    ScrapeResult,
)
from banesco_scraper.session.sqlite_store import SessionStore

logger = structlog.get_logger(__name__)


class BanescoClient:
    """Login and transaction extraction for one Banesco Online user.

    Usage:
        client = BanescoClient(credentials, AuthConfig(), session_store=store)
        result = await client.login()
        if result.success:
            scrape = await client.scrape_transactions()
        await client.close()
    """

    def __init__(
        self,
        credentials: Credentials,
        config: AuthConfig | None = None,
        *,
        browser: BrowserManager | None = None,
        session_store: SessionStore | None = None,
        selectors: dict[str, Any] | None = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        auth: AuthManager | None = None,
        scraper: BanescoScraper | None = None,
    ) -> None:
        self.config = config or AuthConfig()
        self.selectors = selectors or load_selectors()
        self.browser = browser or BrowserManager(
            headless=self.config.headless, timeout_ms=self.config.timeout_ms
        )
        self.session_store = session_store
        self.auth = auth or AuthManager(
            self.browser,
            credentials,
            self.selectors,
            config=self.config,
            session_store=session_store,
        )
        self.scraper = scraper or BanescoScraper(self.selectors, max_pages=max_pages)

    async def login(self) -> LoginResult:
        try:
            return await self.auth.login()
        except Exception as e:
            logger.error("client_login_failed", error=str(e), exc_info=True)
            return LoginResult(status=LoginStatus.FAILED, message=f"Login failed: {e}")

    async def get_authenticated_context(self) -> PageSurface | None:
        """The authenticated page, or None when not logged in."""
        return self.auth.surface

    async def scrape_transactions(
        self,
        context: PageSurface | None = None,
        *,
        open_movements: bool = False,
        period: str | None = None,
    ) -> ScrapeResult:
        """Extract movements from an authenticated page.

        Args:
            context: Page to scrape. Defaults to the page of the last login.
            open_movements: Navigate to the account movements page first.
            period: Consultation period (value or label) to select before
                scraping, widened while the portal reports no movements.
        """
        surface = context or await self.get_authenticated_context()
        if surface is None:
            return ScrapeResult(
                success=False,
                message="Not authenticated; call login() first",
                metadata={"extraction_method": "none"},
            )
        return await self.scraper.scrape_transactions(
            surface, open_movements=open_movements, period=period
        )

    async def close(self) -> None:
        """Release the authenticated page, the browser and the session store."""
        try:
            await self.auth.close()
        except Exception as e:
            logger.warning("auth_close_error", error=str(e))

        try:
            await self.browser.shutdown()
        except Exception as e:
            logger.warning("browser_shutdown_error", error=str(e))

        if self.session_store is not None:
            try:
                await self.session_store.close()
            except Exception as e:
                logger.warning("session_store_close_error", error=str(e))

        logger.info("client_closed")
