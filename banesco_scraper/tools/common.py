"""Common utilities for MCP tools.

This module provides shared functionality for all MCP tools including:
- Unified response formatting
- Error handling
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

# Venezuela (VET), no daylight saving
VET = timezone(timedelta(hours=-4))


def build_success_response(
    data: dict[str, Any],
    source: str = "scraping",
    restored_session: bool = False,
) -> dict[str, Any]:
    """Build a standardized success response.

    Args:
        data: The response data.
        source: Data source ("scraping", "session_store" or "health_check").
        restored_session: Whether the login came from a stored session.

    Returns:
        Standardized response dictionary.
    """
    return {
        "status": "success",
        "data": data,
        "metadata": {
            "fetched_at": datetime.now(VET).isoformat(),
            "source": source,
            "restored_session": restored_session,
        },
    }


def build_error_response(
    message: str,
    error_type: str = "UNKNOWN_ERROR",
) -> dict[str, Any]:
    """Build a standardized error response.

    Args:
        message: Error message.
        error_type: Error type identifier.

    Returns:
        Standardized error response dictionary.
    """
    return {
        "status": "error",
        "error": {
            "message": message,
            "type": error_type,
        },
        "metadata": {
            "fetched_at": datetime.now(VET).isoformat(),
        },
    }
