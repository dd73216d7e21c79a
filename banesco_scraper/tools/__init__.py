"""MCP tools module for Banesco Online access.

This module provides FastMCP tool implementations for:
- Login and stored session management
- Movements and account summary
- Health check
"""

from banesco_scraper.tools.auth import clear_sessions, list_sessions, login
from banesco_scraper.tools.health import health_check
from banesco_scraper.tools.transactions import get_account_summary, list_transactions

__all__ = [
    "login",
    "list_sessions",
    "clear_sessions",
    "list_transactions",
    "get_account_summary",
    "health_check",
]
