"""Tests for MCP tools and the client facade.

This module tests the MCP tools including response formatting, login
error mapping, limit validation and error handling.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fakes import FakeBrowser, FakePortal

from banesco_scraper.browser.scraper import TABLE_ROWS_SCRIPT, TABLES_SCRIPT
from banesco_scraper.client import BanescoClient
from banesco_scraper.models import (
    AccountSummary,
    AuthConfig,
    Credentials,
    Direction,
    LoginResult,
    LoginStatus,
    ScrapeResult,
    TransactionRecord,
)
from banesco_scraper.tools.auth import clear_sessions, list_sessions, login
from banesco_scraper.tools.common import build_error_response, build_success_response
from banesco_scraper.tools.health import health_check
from banesco_scraper.tools.transactions import get_account_summary, list_transactions

OK = LoginResult(status=LoginStatus.SUCCESS, message="Login successful", session_valid=True)


def _record(day: int) -> TransactionRecord:
    return TransactionRecord(
        date=date(2024, 3, day),
        description=f"Pago {day}",
        amount=Decimal("150.00"),
        direction=Direction.DEBIT,
    )


def _client(login_result: LoginResult = OK) -> AsyncMock:
    client = AsyncMock()
    client.login.return_value = login_result
    return client


def test_build_success_response():
    """Test building success response."""
    data = {"current_balance": "12345.67"}

    response = build_success_response(data, source="scraping", restored_session=True)

    assert response["status"] == "success"
    assert response["data"] == data
    assert response["metadata"]["source"] == "scraping"
    assert response["metadata"]["restored_session"] is True
    assert response["metadata"]["fetched_at"].endswith("-04:00")


def test_build_error_response():
    """Test building error response."""
    response = build_error_response("Test error message", "TEST_ERROR")

    assert response["status"] == "error"
    assert response["error"]["message"] == "Test error message"
    assert response["error"]["type"] == "TEST_ERROR"
    assert "fetched_at" in response["metadata"]


@pytest.mark.asyncio
async def test_login_tool_success_from_stored_session():
    """Test login tool reporting a restored session."""
    client = _client(
        LoginResult(
            status=LoginStatus.SUCCESS,
            message="Session restored",
            session_valid=True,
            restored=True,
        )
    )

    response = await login(client)

    assert response["status"] == "success"
    assert response["data"]["restored"] is True
    assert response["metadata"]["source"] == "session_store"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error_type",
    [
        (LoginStatus.FAILED, "LOGIN_FAILED"),
        (LoginStatus.SYSTEM_UNAVAILABLE, "SYSTEM_UNAVAILABLE"),
        (LoginStatus.MAX_RETRIES_EXCEEDED, "MAX_RETRIES_EXCEEDED"),
    ],
)
async def test_login_tool_maps_failures(status, error_type):
    """Test that each login outcome has its own error type."""
    client = _client(LoginResult(status=status, message="nope"))

    response = await login(client)

    assert response["status"] == "error"
    assert response["error"]["type"] == error_type
    assert response["error"]["message"] == "nope"


@pytest.mark.asyncio
async def test_list_transactions_success():
    """Test list_transactions tool."""
    client = _client()
    client.scrape_transactions.return_value = ScrapeResult(
        success=True,
        message="2 movements extracted",
        records=[_record(1), _record(2)],
        summary=AccountSummary(current_balance=Decimal("100.50")),
        metadata={"extraction_method": "table", "pages_visited": 1},
    )

    response = await list_transactions(client, limit=10)

    assert response["status"] == "success"
    transactions = response["data"]["transactions"]
    assert len(transactions) == 2
    assert transactions[0]["date"] == "2024-03-01"
    assert transactions[0]["amount"] == "150.00"
    assert transactions[0]["direction"] == "debit"
    assert response["data"]["summary"]["current_balance"] == "100.50"
    assert response["data"]["extraction"]["extraction_method"] == "table"
    client.scrape_transactions.assert_called_once_with(open_movements=False, period=None)


@pytest.mark.asyncio
async def test_list_transactions_forwards_period():
    """Test that the period reaches the scraper and comes back in the metadata."""
    client = _client()
    client.scrape_transactions.return_value = ScrapeResult(
        success=True,
        message="1 movements extracted",
        records=[_record(4)],
        metadata={"extraction_method": "table", "period": "PeriodoMesAnterior"},
    )

    response = await list_transactions(client, open_movements=True, period="Mes Anterior")

    assert response["data"]["extraction"]["period"] == "PeriodoMesAnterior"
    client.scrape_transactions.assert_called_once_with(
        open_movements=True, period="Mes Anterior"
    )


@pytest.mark.asyncio
async def test_list_transactions_limit_validation():
    """Test limit parameter validation."""
    client = _client()
    client.scrape_transactions.return_value = ScrapeResult(
        success=True, message="3", records=[_record(1), _record(2), _record(3)]
    )

    response = await list_transactions(client, limit=0)
    assert len(response["data"]["transactions"]) == 1
    assert response["data"]["total"] == 3

    response = await list_transactions(client, limit=1000)
    assert len(response["data"]["transactions"]) == 3


@pytest.mark.asyncio
async def test_list_transactions_login_failure_skips_scraping():
    """Test that a failed login never reaches the scraper."""
    client = _client(LoginResult(status=LoginStatus.SYSTEM_UNAVAILABLE, message="down"))

    response = await list_transactions(client)

    assert response["status"] == "error"
    assert response["error"]["type"] == "SYSTEM_UNAVAILABLE"
    client.scrape_transactions.assert_not_called()


@pytest.mark.asyncio
async def test_list_transactions_scrape_failure():
    """Test that an unsuccessful scrape becomes a SCRAPING_ERROR."""
    client = _client()
    client.scrape_transactions.return_value = ScrapeResult(
        success=False, message="Failed to scrape transactions: boom"
    )

    response = await list_transactions(client)

    assert response["status"] == "error"
    assert response["error"]["type"] == "SCRAPING_ERROR"


@pytest.mark.asyncio
async def test_tool_error_handling():
    """Test error handling in tools."""
    client = _client()
    client.scrape_transactions.side_effect = Exception("Page crashed")

    response = await list_transactions(client)

    assert response["status"] == "error"
    assert response["error"]["type"] == "SCRAPING_ERROR"
    assert "Failed to list transactions" in response["error"]["message"]


@pytest.mark.asyncio
async def test_get_account_summary_success():
    """Test get_account_summary tool."""
    client = _client()
    client.scraper.extract_account_summary.return_value = AccountSummary(
        current_balance=Decimal("12345.67"),
        account_number="0134-0001-23-0001234567",
        account_type="corriente",
    )

    response = await get_account_summary(client)

    assert response["status"] == "success"
    assert response["data"]["current_balance"] == "12345.67"
    assert response["data"]["previous_balance"] is None
    assert response["data"]["account_type"] == "corriente"


@pytest.mark.asyncio
async def test_health_check_success():
    """Test health_check tool."""
    client = _client()
    client.browser = MagicMock(is_running=True)
    client.get_authenticated_context.return_value = object()

    session_store = AsyncMock()
    session_store.is_valid.return_value = True
    session_store.list_sessions.return_value = [{"owner": "abc"}]

    response = await health_check(client, session_store)

    assert response["status"] == "success"
    assert response["data"]["browser_status"] == "running"
    assert response["data"]["authenticated"] is True
    assert response["data"]["session_valid"] is True
    assert response["data"]["stored_sessions"] == 1
    assert response["data"]["session_store_status"] == "ok"
    client.login.assert_not_called()


@pytest.mark.asyncio
async def test_health_check_session_store_error():
    """Test health_check with session store error."""
    client = _client()
    client.browser = MagicMock(is_running=False)
    client.get_authenticated_context.return_value = None

    session_store = AsyncMock()
    session_store.list_sessions.side_effect = Exception("database is locked")

    response = await health_check(client, session_store)

    assert response["status"] == "success"
    assert response["data"]["browser_status"] == "stopped"
    assert response["data"]["authenticated"] is False
    assert "error" in response["data"]["session_store_status"]
    session_store.is_valid.assert_not_called()


@pytest.mark.asyncio
async def test_list_and_clear_sessions():
    """Test the session management tools."""
    session_store = AsyncMock()
    session_store.list_sessions.return_value = [{"owner": "abc", "expired": False}]
    session_store.clear_all.return_value = 1
    client = _client()

    listed = await list_sessions(session_store)
    cleared = await clear_sessions(session_store, client)

    assert listed["data"]["count"] == 1
    assert cleared["data"]["deleted"] == 1
    client.auth.close.assert_called_once()


@pytest.mark.asyncio
async def test_clear_sessions_error():
    """Test clear_sessions when the store fails."""
    session_store = AsyncMock()
    session_store.clear_all.side_effect = Exception("disk I/O error")

    response = await clear_sessions(session_store)

    assert response["status"] == "error"
    assert response["error"]["type"] == "SESSION_STORE_ERROR"


@pytest.mark.asyncio
async def test_client_scrape_requires_login(selectors):
    """Test that scraping before login is reported, not raised."""
    portal = FakePortal()
    client = BanescoClient(
        Credentials.from_config("jdoe1984", "s3cret!"),
        AuthConfig(persist_session=False),
        browser=FakeBrowser(portal.new_page),
        selectors=selectors,
    )

    result = await client.scrape_transactions()

    assert result.success is False
    assert "login" in result.message
    assert portal.pages == []


@pytest.mark.asyncio
async def test_client_login_and_scrape(selectors):
    """Test the login, scrape and close sequence."""
    portal = FakePortal()
    browser = FakeBrowser(portal.new_page)
    session_store = AsyncMock()
    session_store.restore.return_value = False
    client = BanescoClient(
        Credentials.from_config("jdoe1984", "s3cret!"),
        AuthConfig(persist_session=False),
        browser=browser,
        session_store=session_store,
        selectors=selectors,
    )
    client.auth._restart_delay_s = 0
    client.auth._settle_ms = 0

    assert (await client.login()).success

    rows = [
        ["Fecha", "Descripción", "Referencia", "Monto", "D/C", "Saldo"],
        ["05/03/2024", "Pago móvil", "1001", "150,00", "D", "9.850,00"],
    ]
    page = await client.get_authenticated_context()
    page.scripts = {
        TABLES_SCRIPT: lambda _: [{"index": 0, "nested": False, "rows": rows}],
        TABLE_ROWS_SCRIPT: lambda index: rows,
    }

    result = await client.scrape_transactions()
    await client.close()

    assert result.success is True
    assert result.records[0].amount == Decimal("150.00")
    assert browser.shutdowns == 1
    assert page.closed is True
    session_store.close.assert_called_once()


@pytest.mark.asyncio
async def test_client_login_never_raises(selectors):
    """Test that unexpected login errors become a failed LoginResult."""
    auth = AsyncMock()
    auth.login.side_effect = RuntimeError("browser crashed")
    client = BanescoClient(
        Credentials.from_config("jdoe1984", "s3cret!"),
        browser=FakeBrowser(FakePortal().new_page),
        selectors=selectors,
        auth=auth,
    )

    result = await client.login()

    assert result.status is LoginStatus.FAILED
    assert "browser crashed" in result.message
