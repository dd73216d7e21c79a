"""Tests for the Banesco login flow.

The portal is simulated with FakePortal, which scripts the login page, the
login iframe, the security questions and the banking area.
"""

from datetime import datetime, timezone

import pytest
from fakes import (
    HOME_URL,
    LOGIN_URL,
    MODAL,
    PASSWORD,
    FakeBrowser,
    FakePortal,
    FakeSurface,
)

from banesco_scraper.browser.auth import AuthManager, LoginState
from banesco_scraper.models import AuthConfig, Credentials, LoginStatus, SessionRecord
from banesco_scraper.session.sqlite_store import owner_hash

NO_STORE = AuthConfig(persist_session=False, timeout_ms=5000)


def _credentials(questions: str = "") -> Credentials:
    return Credentials.from_config("jdoe1984", "s3cret!", questions)


def _auth(portal: FakePortal, selectors, credentials=None, config=NO_STORE, store=None):
    browser = FakeBrowser(portal.new_page)
    manager = AuthManager(
        browser,
        credentials or _credentials(),
        selectors,
        config=config,
        session_store=store,
        restart_delay_s=0,
        settle_ms=0,
    )
    return manager, browser


@pytest.mark.asyncio
async def test_login_without_security_questions(selectors):
    """Test a plain user name and password login."""
    portal = FakePortal()
    auth, browser = _auth(portal, selectors)

    result = await auth.login()

    assert result.status is LoginStatus.SUCCESS
    assert result.session_valid is True
    assert result.restored is False
    assert portal.username == "jdoe1984"
    assert portal.password == "s3cret!"
    assert auth.state is LoginState.VERIFIED
    assert auth.surface is portal.page
    assert len(browser.surfaces) == 1


@pytest.mark.asyncio
async def test_login_with_partial_security_answers(selectors):
    """Test that two of four answered questions still reach the password step."""
    portal = FakePortal(
        questions=[
            "¿Nombre de su primera mascota?",
            "¿Color favorito?",
            "¿Nombre de soltera de su madre?",
            "¿Marca de su primer carro?",
        ]
    )
    credentials = _credentials("mascota:firulais,madre:maria,escuela:bolivar,ciudad:caracas")
    auth, _ = _auth(portal, selectors, credentials=credentials)

    result = await auth.login()

    assert result.success
    assert portal.answers["#txtPrimeraR"] == "firulais"
    assert portal.answers["#txtTerceraR"] == "maria"
    assert portal.answers["#txtSegundaR"] == ""
    assert portal.password == "s3cret!"


@pytest.mark.asyncio
async def test_login_fails_when_no_question_is_answered(selectors):
    """Test that zero answered questions stops before the password."""
    portal = FakePortal(questions=["¿Color favorito?", "¿Marca de su primer carro?"])
    auth, _ = _auth(portal, selectors, credentials=_credentials("mascota:firulais"))

    result = await auth.login()

    assert result.status is LoginStatus.FAILED
    assert "security question" in result.message
    assert portal.password is None
    assert PASSWORD not in portal.frame.elements
    assert auth.surface is None


@pytest.mark.asyncio
async def test_login_reports_system_unavailable(selectors):
    """Test that an outage banner short-circuits before the user name."""
    portal = FakePortal(unavailable=True)
    auth, browser = _auth(portal, selectors)

    result = await auth.login()

    assert result.status is LoginStatus.SYSTEM_UNAVAILABLE
    assert portal.username is None
    assert portal.frame.fills == []
    assert len(browser.surfaces) == 1
    assert portal.page.closed is True


@pytest.mark.asyncio
async def test_active_connection_modal_restarts_login(selectors):
    """Test that one active-connection modal is followed by a clean retry."""
    portal = FakePortal(active_modal_attempts=1)
    auth, browser = _auth(portal, selectors)

    result = await auth.login()

    assert result.success
    assert portal.attempts == 2
    assert browser.resets == 1
    assert portal.pages[0].closed is True
    assert "button:has-text(\"Aceptar\")" in portal.frames[0].clicks


@pytest.mark.asyncio
async def test_active_connection_modal_exhausts_retries(selectors):
    """Test that a persistent modal ends with max_retries_exceeded."""
    portal = FakePortal(active_modal_attempts=10)
    auth, browser = _auth(portal, selectors)

    result = await auth.login()

    assert result.status is LoginStatus.MAX_RETRIES_EXCEEDED
    assert portal.attempts == NO_STORE.max_modal_retries
    assert browser.resets == NO_STORE.max_modal_retries
    assert portal.username is None


@pytest.mark.asyncio
async def test_missing_iframe_is_fatal(selectors):
    """Test that an unreachable login iframe fails the login."""
    portal = FakePortal(with_iframe=False)
    auth, _ = _auth(portal, selectors)

    result = await auth.login()

    assert result.status is LoginStatus.FAILED
    assert "iframe" in result.message
    assert portal.attempts == 1


@pytest.mark.asyncio
async def test_missing_username_field_fails_after_retry(selectors):
    """Test that a missing element fails the step instead of hanging."""
    portal = FakePortal(with_username=False)
    auth, _ = _auth(portal, selectors)

    result = await auth.login()

    assert result.status is LoginStatus.FAILED
    assert "username_input" in result.message


@pytest.mark.asyncio
async def test_rejected_password(selectors):
    """Test that the portal's invalid credentials message fails the login."""
    portal = FakePortal(reject_password=True)
    auth, _ = _auth(portal, selectors)

    result = await auth.login()

    assert result.status is LoginStatus.FAILED
    assert "rejected" in result.message
    assert auth.surface is None


@pytest.mark.asyncio
async def test_second_login_uses_in_process_session(selectors):
    """Test the idempotent fast path."""
    portal = FakePortal()
    auth, browser = _auth(portal, selectors)

    first = await auth.login()
    second = await auth.login()

    assert first.success and second.success
    assert second.message == "Already authenticated"
    assert portal.attempts == 1
    assert len(browser.surfaces) == 1


@pytest.mark.asyncio
async def test_fresh_login_saves_session(selectors, session_store):
    """Test that a successful fresh login persists the session."""
    portal = FakePortal()
    auth, _ = _auth(portal, selectors, config=AuthConfig(), store=session_store)

    result = await auth.login()

    assert result.success
    record = await session_store.load("jdoe1984")
    assert record is not None
    assert record.last_url == HOME_URL


@pytest.mark.asyncio
async def test_valid_stored_session_skips_login_form(selectors, session_store):
    """Test that a restored, validated session returns immediately."""
    await session_store.put(
        SessionRecord(
            owner_hash=owner_hash("jdoe1984"),
            cookies=[{"name": "sid", "value": "1", "domain": "www.banesconline.com", "path": "/"}],
            last_url=HOME_URL,
            created_at=datetime.now(timezone.utc),
        )
    )

    def restored_page() -> FakeSurface:
        page = FakeSurface()
        page.on_navigate = lambda surface, url: surface.show_banking_area(url)
        return page

    browser = FakeBrowser(restored_page)
    auth = AuthManager(
        browser,
        _credentials(),
        selectors,
        config=AuthConfig(),
        session_store=session_store,
        restart_delay_s=0,
        settle_ms=0,
    )

    result = await auth.login()

    assert result.success
    assert result.restored is True
    assert browser.surfaces[0].navigations == [HOME_URL, HOME_URL]
    assert browser.surfaces[0].fills == []


@pytest.mark.asyncio
async def test_invalid_stored_session_falls_back_to_fresh_login(selectors, session_store):
    """Test that a stale session is cleared and a fresh login runs."""
    await session_store.put(
        SessionRecord(
            owner_hash=owner_hash("jdoe1984"),
            last_url=HOME_URL,
            created_at=datetime.now(timezone.utc),
        )
    )
    portal = FakePortal()
    auth, browser = _auth(portal, selectors, config=AuthConfig(), store=session_store)

    result = await auth.login()

    assert result.success
    assert result.restored is False
    assert browser.resets == 1
    assert portal.username == "jdoe1984"
    # the fresh login wrote a new record
    record = await session_store.load("jdoe1984")
    assert record is not None and record.local_storage == {}


@pytest.mark.asyncio
async def test_close_forgets_login(selectors):
    """Test that close drops the authenticated page."""
    portal = FakePortal()
    auth, _ = _auth(portal, selectors)
    await auth.login()

    await auth.close()

    assert auth.surface is None
    assert portal.page.closed is True


@pytest.mark.asyncio
async def test_status_iframe_outage_is_system_unavailable(selectors):
    """Test that a banner inside the CAU status iframe stops the login."""
    portal = FakePortal(status_outage=True)
    auth, _ = _auth(portal, selectors)

    result = await auth.login()

    assert result.status is LoginStatus.SYSTEM_UNAVAILABLE
    assert "interruption" in result.message
    assert portal.username is None
    assert portal.attempts == 1
    assert portal.page.closed is True


@pytest.mark.asyncio
async def test_verification_falls_back_to_home_url(selectors):
    """Test that an unrecognized landing page is confirmed via the home URL."""
    portal = FakePortal(land_elsewhere=True)
    auth, _ = _auth(portal, selectors)

    result = await auth.login()

    assert result.status is LoginStatus.SUCCESS
    assert portal.page.navigations == [LOGIN_URL, HOME_URL]
    assert auth.surface is portal.page


@pytest.mark.asyncio
async def test_banking_area_right_after_security_questions(selectors):
    """Test that a missing password step after the answers is not an error."""
    portal = FakePortal(questions=["¿Nombre de su primera mascota?"], skip_password=True)
    auth, _ = _auth(portal, selectors, credentials=_credentials("mascota:firulais"))

    result = await auth.login()

    assert result.status is LoginStatus.SUCCESS
    assert portal.answers["#txtPrimeraR"] == "firulais"
    assert portal.password is None
    assert PASSWORD not in [name for name, _ in portal.frame.fills]


@pytest.mark.asyncio
async def test_modal_check_waits_once_per_step(selectors):
    """Test that each modal check is a single wait on the whole selector list."""
    portal = FakePortal()
    auth, _ = _auth(portal, selectors)
    modal_selectors = ", ".join(auth.probes["modal"].selectors)

    await auth.login()

    frame_waits = [wait for wait in portal.frame.waits if MODAL in wait[0]]
    page_waits = [wait for wait in portal.page.waits if MODAL in wait[0]]
    assert frame_waits == [(modal_selectors, 500)] * 3
    assert page_waits == [(modal_selectors, 500)]


@pytest.mark.asyncio
async def test_stored_session_restored_without_persistence(selectors, session_store):
    """Test that persist_session=False still reads a stored session."""
    await session_store.put(
        SessionRecord(
            owner_hash=owner_hash("jdoe1984"),
            cookies=[{"name": "sid", "value": "1", "domain": "www.banesconline.com", "path": "/"}],
            last_url=HOME_URL,
            created_at=datetime.now(timezone.utc),
        )
    )

    def restored_page() -> FakeSurface:
        page = FakeSurface()
        page.on_navigate = lambda surface, url: surface.show_banking_area(url)
        return page

    auth = AuthManager(
        FakeBrowser(restored_page),
        _credentials(),
        selectors,
        config=NO_STORE,
        session_store=session_store,
        restart_delay_s=0,
        settle_ms=0,
    )

    result = await auth.login()

    assert result.success
    assert result.restored is True


@pytest.mark.asyncio
async def test_fresh_login_without_persistence_saves_nothing(selectors, session_store):
    """Test that persist_session=False skips the save after a fresh login."""
    portal = FakePortal()
    auth, _ = _auth(portal, selectors, store=session_store)

    result = await auth.login()

    assert result.success
    assert result.restored is False
    assert await session_store.load("jdoe1984") is None
    assert portal.attempts == 1
