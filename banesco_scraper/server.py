"""FastMCP server entry point for the Banesco scraper.

This module provides the MCP server that exposes Banesco Online login and
movement extraction as FastMCP tools. The browser and the session store live
for the whole server lifetime and are reused by every tool call.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from fastmcp import FastMCP

from banesco_scraper.browser.context import BrowserManager
from banesco_scraper.client import BanescoClient
from banesco_scraper.config import load_selectors, settings
from banesco_scraper.models import AuthConfig, Credentials
from banesco_scraper.session.sqlite_store import SessionStore


# Configure structlog
def configure_logging() -> None:
    """Configure structlog for JSON or console output."""
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        # stdout carries the MCP stdio transport
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=True,
    )


# Initialize logging
configure_logging()
logger = structlog.get_logger(__name__)

# Global instances (initialized in lifespan)
client: BanescoClient | None = None
session_store: SessionStore | None = None


@asynccontextmanager
async def lifespan(server):
    """Manage server startup and shutdown."""
    global client, session_store

    logger.info(
        "mcp_server_starting",
        log_level=settings.log_level,
        log_format=settings.log_format,
    )

    try:
        selectors = load_selectors(settings.selectors_path)
        logger.info("selectors_loaded", path=settings.selectors_path)
    except Exception as e:
        logger.error("failed_to_load_selectors", error=str(e), exc_info=True)
        sys.exit(1)

    if not settings.banesco_username or not settings.banesco_password.get_secret_value():
        logger.error("credentials_missing")
        sys.exit(1)

    config = AuthConfig(
        headless=settings.browser_headless,
        timeout_ms=settings.browser_timeout_ms,
        max_modal_retries=settings.max_modal_retries,
        persist_session=settings.persist_session,
    )
    credentials = Credentials.from_config(
        settings.banesco_username,
        settings.banesco_password,
        settings.security_questions.get_secret_value(),
    )

    browser_manager = BrowserManager(
        headless=config.headless,
        timeout_ms=config.timeout_ms,
        block_resources=settings.browser_block_resources,
    )
    try:
        await browser_manager.initialize()
        logger.info("browser_manager_initialized")
    except Exception as e:
        logger.error("browser_initialization_failed", error=str(e), exc_info=True)
        sys.exit(1)

    try:
        session_store = SessionStore(
            db_path=settings.session_db_path,
            ttl=timedelta(hours=settings.session_ttl_hours),
            markers=selectors.get("markers"),
        )
        await session_store.initialize()
        await session_store.cleanup_expired()
        logger.info("session_store_ready")
    except Exception as e:
        logger.error("session_store_initialization_failed", error=str(e), exc_info=True)
        await browser_manager.shutdown()
        sys.exit(1)

    client = BanescoClient(
        credentials,
        config,
        browser=browser_manager,
        session_store=session_store,
        selectors=selectors,
        max_pages=settings.max_pages,
    )

    logger.info("mcp_server_startup_complete", user=credentials.masked_identity)

    try:
        yield
    finally:
        logger.info("mcp_server_shutting_down")
        await client.close()
        client = None
        session_store = None
        logger.info("mcp_server_shutdown_complete")


# Create FastMCP instance
mcp = FastMCP("Banesco Scraper", lifespan=lifespan)


def _not_initialized() -> dict:
    logger.error("server_not_initialized")
    return {
        "status": "error",
        "error": {"message": "Server not initialized", "type": "INITIALIZATION_ERROR"},
    }


# Tool: Login
@mcp.tool()
async def login() -> dict:
    """Log in to Banesco Online, reusing a stored session when it is still valid.

    Returns:
        Dictionary containing:
            - status: "success" or "error"
            - data: Login outcome (if success)
                - message: Human readable outcome
                - session_valid: Whether the landing page validated
                - restored: Whether a stored session was reused
            - error: type is LOGIN_FAILED, SYSTEM_UNAVAILABLE or
              MAX_RETRIES_EXCEEDED (if error)
    """
    from banesco_scraper.tools.auth import login as login_impl

    if not client:
        return _not_initialized()

    return await login_impl(client)


# Tool: List Transactions
@mcp.tool()
async def list_transactions(
    limit: int = 50, open_movements: bool = False, period: str | None = None
) -> dict:
    """List account movements from Banesco Online.

    Logs in if needed, then extracts movements from the current page,
    following pagination.

    Args:
        limit: Maximum number of movements to return (1-500, default: 50)
        open_movements: Navigate to the account movements page first
        period: Consultation period such as "Mes Anterior"; wider periods
            are tried while the portal reports no movements

    Returns:
        Dictionary containing:
            - status: "success" or "error"
            - data: Movement information (if success)
                - transactions: List of movements
                    - date: ISO date (str)
                    - description: Movement description (str)
                    - reference: Bank reference (str | None)
                    - amount: Non-negative amount (str)
                    - direction: "debit" or "credit"
                    - balance: Running balance (str | None)
                - total: Number of movements found
                - summary: Account summary
                - extraction: Extraction metadata
            - metadata: Response metadata
    """
    from banesco_scraper.tools.transactions import list_transactions as list_impl

    if not client:
        return _not_initialized()

    return await list_impl(
        client, limit=limit, open_movements=open_movements, period=period
    )


# Tool: Get Account Summary
@mcp.tool()
async def get_account_summary() -> dict:
    """Get balance, account number and account type from the current page.

    Returns:
        Dictionary containing:
            - status: "success" or "error"
            - data: Account summary (if success)
                - current_balance, previous_balance, account_number,
                  account_type (each may be null)
            - metadata: Response metadata
    """
    from banesco_scraper.tools.transactions import get_account_summary as summary_impl

    if not client:
        return _not_initialized()

    return await summary_impl(client)


# Tool: Health Check
@mcp.tool()
async def health_check() -> dict:
    """Check health of MCP server components.

    Verifies the status of the browser, the login and the session database.

    Returns:
        Dictionary containing:
            - status: "success" or "error"
            - data: Health status (if success)
            - metadata: Response metadata
    """
    from banesco_scraper.tools.health import health_check as health_check_impl

    if not client or not session_store:
        return _not_initialized()

    return await health_check_impl(client, session_store)


# Tool: List Sessions
@mcp.tool()
async def list_sessions() -> dict:
    """List stored sessions by hashed owner with their age and expiry flag."""
    from banesco_scraper.tools.auth import list_sessions as list_sessions_impl

    if not session_store:
        return _not_initialized()

    return await list_sessions_impl(session_store)


# Tool: Clear Sessions
@mcp.tool()
async def clear_sessions() -> dict:
    """Delete all stored sessions and forget the current login."""
    from banesco_scraper.tools.auth import clear_sessions as clear_sessions_impl

    if not session_store:
        return _not_initialized()

    return await clear_sessions_impl(session_store, client)


if __name__ == "__main__":
    # Recommended: fastmcp run banesco_scraper/server.py
    logger.info("starting_mcp_server_directly")
    mcp.run()
