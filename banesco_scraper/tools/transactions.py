"""MCP tools for retrieving movements and the account summary.

This module provides the list_transactions and get_account_summary tools,
which log in when needed and scrape the authenticated Banesco Online page.
"""

from typing import Any

import structlog

from banesco_scraper.tools.auth import ERROR_TYPES
from banesco_scraper.tools.common import build_error_response, build_success_response

logger = structlog.get_logger(__name__)


async def _ensure_login(client: Any) -> dict[str, Any] | None:
    result = await client.login()
    if result.success:
        return None
    return build_error_response(
        message=result.message,
        error_type=ERROR_TYPES.get(result.status, "LOGIN_FAILED"),
    )


async def list_transactions(
    client: Any,
    limit: int = 50,
    open_movements: bool = False,
    period: str | None = None,
) -> dict[str, Any]:
    """List movements from Banesco Online.

    Args:
        client: BanescoClient instance.
        limit: Maximum number of movements to return (default: 50, max: 500).
        open_movements: Navigate to the movements page before scraping.
        period: Consultation period to select, e.g. "PeriodoMesAnterior" or
            "Mes Anterior". Wider periods are tried while none has movements.

    Returns:
        Standardized response containing:
            - transactions: List of movements (date, description, reference,
              amount, direction, balance)
            - summary: Account summary
            - extraction: Extraction metadata (method, pages, skipped rows)

    Examples:
        >>> response = await list_transactions(client, limit=10)
        >>> len(response["data"]["transactions"]) <= 10
        True
    """
    logger.info("list_transactions_called", limit=limit, period=period)

    # Validate limit parameter
    if limit < 1:
        limit = 1
    elif limit > 500:
        limit = 500

    try:
        error = await _ensure_login(client)
        if error:
            return error

        result = await client.scrape_transactions(
            open_movements=open_movements, period=period
        )
        if not result.success:
            return build_error_response(message=result.message, error_type="SCRAPING_ERROR")

        payload = result.model_dump(mode="json")
        return build_success_response(
            {
                "transactions": payload["records"][:limit],
                "total": len(payload["records"]),
                "summary": payload["summary"],
                "extraction": payload["metadata"],
                "message": result.message,
            }
        )

    except Exception as e:
        logger.error("list_transactions_failed", limit=limit, error=str(e), exc_info=True)
        return build_error_response(
            message=f"Failed to list transactions: {str(e)}",
            error_type="SCRAPING_ERROR",
        )


async def get_account_summary(client: Any) -> dict[str, Any]:
    """Read balance, account number and account type from the current page."""
    logger.info("get_account_summary_called")

    try:
        error = await _ensure_login(client)
        if error:
            return error

        surface = await client.get_authenticated_context()
        summary = await client.scraper.extract_account_summary(surface)
        return build_success_response(summary.model_dump(mode="json"))

    except Exception as e:
        logger.error("get_account_summary_failed", error=str(e), exc_info=True)
        return build_error_response(
            message=f"Failed to read account summary: {str(e)}",
            error_type="SCRAPING_ERROR",
        )
