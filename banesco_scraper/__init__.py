"""Automated login and movement extraction for Banesco Online."""

from banesco_scraper.client import BanescoClient
from banesco_scraper.models import (
    AccountSummary,
    AuthConfig,
    Credentials,
    LoginResult,
    LoginStatus,
    ScrapeResult,
    TransactionRecord,
)

__version__ = "0.1.0"

__all__ = [
    "AccountSummary",
    "AuthConfig",
    "BanescoClient",
    "Credentials",
    "LoginResult",
    "LoginStatus",
    "ScrapeResult",
    "TransactionRecord",
]
