"""MCP tool for health checking.

This module provides the health_check tool which verifies the status of
the browser, the Banesco Online login and the session database.
"""

from datetime import datetime, timezone
from typing import Any

import structlog

from banesco_scraper.tools.common import build_error_response, build_success_response

logger = structlog.get_logger(__name__)


async def health_check(client: Any, session_store: Any) -> dict[str, Any]:
    """Check health of MCP server components.

    Verifies the status of:
    - Browser instance
    - Banesco Online login (without triggering one)
    - Session database connection

    Args:
        client: BanescoClient instance.
        session_store: SessionStore instance.

    Returns:
        Standardized response containing:
            - browser_status: "running" or "stopped"
            - authenticated: Whether a login is active in-process
            - session_valid: Whether the authenticated page still validates
            - session_store_status: Session database status
            - stored_sessions: Number of stored sessions
            - checked_at: Timestamp of health check
    """
    logger.info("health_check_called")

    try:
        browser_status = "running" if client.browser.is_running else "stopped"

        surface = await client.get_authenticated_context()
        session_valid = False
        if surface is not None:
            session_valid = await session_store.is_valid(surface)

        store_status = "ok"
        stored_sessions = 0
        try:
            stored_sessions = len(await session_store.list_sessions())
        except Exception as e:
            logger.warning("session_store_health_check_failed", error=str(e))
            store_status = f"error: {str(e)}"

        result = {
            "browser_status": browser_status,
            "authenticated": surface is not None,
            "session_valid": session_valid,
            "session_store_status": store_status,
            "stored_sessions": stored_sessions,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }

        return build_success_response(result, source="health_check")

    except Exception as e:
        logger.error("health_check_failed", error=str(e), exc_info=True)
        return build_error_response(
            message=f"Health check failed: {str(e)}",
            error_type="HEALTH_CHECK_ERROR",
        )
