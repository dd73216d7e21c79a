"""MCP tools for logging in and managing stored sessions."""

from typing import Any

import structlog

from banesco_scraper.models import LoginStatus
from banesco_scraper.tools.common import build_error_response, build_success_response

logger = structlog.get_logger(__name__)

ERROR_TYPES = {
    LoginStatus.FAILED: "LOGIN_FAILED",
    LoginStatus.SYSTEM_UNAVAILABLE: "SYSTEM_UNAVAILABLE",
    LoginStatus.MAX_RETRIES_EXCEEDED: "MAX_RETRIES_EXCEEDED",
}


async def login(client: Any) -> dict[str, Any]:
    """Log in to Banesco Online.

    Args:
        client: BanescoClient instance.

    Returns:
        Standardized response containing:
            - status: Login status ("success")
            - message: Human readable outcome
            - session_valid: Whether the landing page validated
            - restored: Whether a stored session was reused
    """
    logger.info("login_tool_called")

    result = await client.login()
    if not result.success:
        return build_error_response(
            message=result.message,
            error_type=ERROR_TYPES.get(result.status, "LOGIN_FAILED"),
        )

    return build_success_response(
        {
            "status": result.status.value,
            "message": result.message,
            "session_valid": result.session_valid,
            "restored": result.restored,
        },
        source="session_store" if result.restored else "scraping",
        restored_session=result.restored,
    )


async def list_sessions(session_store: Any) -> dict[str, Any]:
    """List stored sessions (hashed owners, ages, expiry flags)."""
    logger.info("list_sessions_called")

    try:
        sessions = await session_store.list_sessions()
    except Exception as e:
        logger.error("list_sessions_failed", error=str(e), exc_info=True)
        return build_error_response(
            message=f"Failed to list sessions: {str(e)}",
            error_type="SESSION_STORE_ERROR",
        )

    return build_success_response(
        {"sessions": sessions, "count": len(sessions)}, source="session_store"
    )


async def clear_sessions(session_store: Any, client: Any | None = None) -> dict[str, Any]:
    """Delete every stored session and drop the in-process login."""
    logger.info("clear_sessions_called")

    try:
        deleted = await session_store.clear_all()
        if client is not None:
            await client.auth.close()
    except Exception as e:
        logger.error("clear_sessions_failed", error=str(e), exc_info=True)
        return build_error_response(
            message=f"Failed to clear sessions: {str(e)}",
            error_type="SESSION_STORE_ERROR",
        )

    return build_success_response({"deleted": deleted}, source="session_store")
