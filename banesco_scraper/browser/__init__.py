"""Browser automation module for Banesco Online.

This module provides browser lifecycle management, the page surface used by
every component, the login flow, security question resolution and
transaction extraction using Playwright.
"""

from banesco_scraper.browser.auth import AuthManager
from banesco_scraper.browser.context import BrowserManager
from banesco_scraper.browser.scraper import BanescoScraper
from banesco_scraper.browser.security import SecurityQuestionResolver
from banesco_scraper.browser.surface import PageSurface

__all__ = [
    "AuthManager",
    "BanescoScraper",
    "BrowserManager",
    "PageSurface",
    "SecurityQuestionResolver",
]
