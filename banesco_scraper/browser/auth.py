"""Authentication management for Banesco Online.

This module drives the portal's multi-page login, reuses stored sessions,
answers security questions and reacts to interrupt modals.

Login flow: Login page → iframe → User name → (Security questions) → Password → Banking area

Every step locates its elements through the probe chains declared in
selectors.yaml. An "active connection" modal restarts the whole flow in a
fresh browsing context, bounded by ``AuthConfig.max_modal_retries``.
"""

import asyncio
from enum import Enum
from typing import Any

import structlog

from banesco_scraper.browser.context import BrowserManager
from banesco_scraper.browser.probes import build_chains
from banesco_scraper.browser.security import SecurityQuestionResolver, question_slots
from banesco_scraper.browser.surface import PageSurface
from banesco_scraper.models import AuthConfig, Credentials, LoginResult, LoginStatus
from banesco_scraper.parsing import contains_any
from banesco_scraper.session.sqlite_store import SessionStore

logger = structlog.get_logger(__name__)

PROBE_NAMES = (
    "login_iframe",
    "username_input",
    "username_submit",
    "password_input",
    "password_submit",
    "question_probe",
    "questions_submit",
    "password_recheck",
    "modal",
    "modal_accept",
    "modal_close",
    "status_frames",
)


class AuthenticationError(Exception):
    """Raised when a login step cannot make forward progress."""

    pass


class ElementNotFoundError(AuthenticationError):
    """Raised when a required element is still missing after one retry."""

    pass


class FrameUnavailableError(AuthenticationError):
    """Raised when the login iframe cannot be reached."""

    pass


class SecurityQuestionUnresolvedError(AuthenticationError):
    """Raised when no security question slot could be answered."""

    pass


class SystemUnavailableError(Exception):
    """Raised when the portal reports an outage or maintenance window."""

    pass


class ActiveConnectionModalError(Exception):
    """Raised when the portal reports another active connection."""

    pass


class LoginState(str, Enum):
    INIT = "init"
    NAVIGATED = "navigated"
    IFRAME_READY = "iframe_ready"
    USERNAME_SUBMITTED = "username_submitted"
    MODAL_INTERRUPT = "modal_interrupt"
    SECURITY_QUESTIONS = "security_questions"
    PASSWORD_ENTRY = "password_entry"
    SUBMITTED = "submitted"
    VERIFIED = "verified"


class AuthManager:
    """Manages authentication and session state for Banesco Online.

    Handles the complete login flow including:
    1. Session restore from the SessionStore (fast path)
    2. System availability check right after navigation
    3. User name entry inside the login iframe
    4. Security questions (delegated to SecurityQuestionResolver)
    5. Password entry and verification of the landing page

    ``login()`` never raises; every outcome is reported as a LoginResult.
    """

    def __init__(
        self,
        browser: BrowserManager,
        credentials: Credentials,
        selectors: dict[str, Any],
        config: AuthConfig | None = None,
        session_store: SessionStore | None = None,
        resolver: SecurityQuestionResolver | None = None,
        restart_delay_s: float = 3.0,
        settle_ms: int = 2000,
    ) -> None:
        self.browser = browser
        self.credentials = credentials
        self.config = config or AuthConfig()
        self.session_store = session_store
        self.resolver = resolver or SecurityQuestionResolver(credentials.security_answers)
        self.portal = selectors["portal"]
        self.markers = selectors["markers"]
        self.probes = build_chains(selectors["auth"], PROBE_NAMES)
        self.slots = question_slots(selectors["auth"]["question_slots"])
        self.state = LoginState.INIT
        self._restart_delay_s = restart_delay_s
        self._settle_ms = settle_ms
        self._surface: PageSurface | None = None
        self._authenticated = False
        self._lock = asyncio.Lock()

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated and self._surface is not None

    @property
    def surface(self) -> PageSurface | None:
        """The authenticated page, or None before a successful login."""
        return self._surface if self.is_authenticated else None

    async def login(self) -> LoginResult:
        """Authenticate, reusing the in-process or stored session when possible.

        Returns:
            LoginResult with status success, failed, system_unavailable or
            max_retries_exceeded.
        """
        async with self._lock:
            if self.is_authenticated:
                logger.debug("login_already_authenticated")
                return LoginResult(
                    status=LoginStatus.SUCCESS,
                    message="Already authenticated",
                    session_valid=True,
                )

            logger.info("login_started", user=self.credentials.masked_identity)

            restored = await self._restore_session()
            if restored is not None:
                return restored

            return await self._fresh_login()

    async def close(self) -> None:
        """Forget the authenticated page and close it."""
        surface, self._surface = self._surface, None
        self._authenticated = False
        self.state = LoginState.INIT
        if surface is not None:
            await self._discard(surface)

    async def _restore_session(self) -> LoginResult | None:
        # persist_session only controls saving; stored sessions are always tried
        if self.session_store is None:
            return None

        identity = self.credentials.identity
        surface = await self.browser.new_surface()
        try:
            if await self.session_store.restore(surface, identity):
                if await self.session_store.is_valid(surface):
                    self._surface = surface
                    self._authenticated = True
                    self.state = LoginState.VERIFIED
                    logger.info("login_successful_from_session")
                    return LoginResult(
                        status=LoginStatus.SUCCESS,
                        message="Session restored",
                        session_valid=True,
                        restored=True,
                    )

                logger.info("restored_session_invalid")
                await self.session_store.clear(identity)
                await self._discard(surface)
                await self.browser.reset()
                return None
        except Exception as e:
            logger.warning("session_restore_path_failed", error=str(e))

        await self._discard(surface)
        return None

    async def _fresh_login(self) -> LoginResult:
        attempts = self.config.max_modal_retries

        for attempt in range(1, attempts + 1):
            logger.info("login_attempt_started", attempt=attempt, max_attempts=attempts)

            surface: PageSurface | None = None
            try:
                surface = await self.browser.new_surface()
                result = await self._run_flow(surface)

            except ActiveConnectionModalError:
                logger.warning("active_connection_modal_restart", attempt=attempt)
                await self._discard(surface)
                await self.browser.reset()
                if attempt < attempts:
                    await asyncio.sleep(self._restart_delay_s)
                continue

            except SystemUnavailableError as e:
                logger.warning("system_unavailable", message=str(e))
                await self._discard(surface)
                return LoginResult(status=LoginStatus.SYSTEM_UNAVAILABLE, message=str(e))

            except AuthenticationError as e:
                logger.error("login_failed", state=self.state.value, error=str(e))
                await self._discard(surface)
                return LoginResult(status=LoginStatus.FAILED, message=str(e))

            except Exception as e:
                logger.error(
                    "login_unexpected_error",
                    state=self.state.value,
                    error=str(e),
                    exc_info=True,
                )
                await self._discard(surface)
                return LoginResult(
                    status=LoginStatus.FAILED, message=f"Unexpected login error: {e}"
                )

            if not result.success:
                await self._discard(surface)
                return result

            self._surface = surface
            self._authenticated = True
            if self.config.persist_session and self.session_store is not None:
                await self.session_store.save(surface, self.credentials.identity)

            logger.info("login_successful", attempt=attempt)
            return result

        logger.error("login_max_retries_exceeded", attempts=attempts)
        return LoginResult(
            status=LoginStatus.MAX_RETRIES_EXCEEDED,
            message=f"Active connection persisted after {attempts} login attempts",
        )

    async def _run_flow(self, surface: PageSurface) -> LoginResult:
        """Drive one pass of the login flow.

        Raises:
            SystemUnavailableError: If the portal shows an outage banner.
            ActiveConnectionModalError: If another session is active.
            AuthenticationError: If a step cannot complete.
        """
        self.state = LoginState.INIT
        await surface.navigate(self.portal["login_url"], self.config.timeout_ms)
        self.state = LoginState.NAVIGATED
        logger.debug("navigated_to_login_page")

        await self._check_system_status(surface)

        frame = await self.probes["login_iframe"].frame(surface)
        if frame is None:
            raise FrameUnavailableError("Login iframe is not accessible")
        self.state = LoginState.IFRAME_READY

        await self._check_modal(frame)
        await self._fill(frame, "username_input", self.credentials.identity)
        await self._check_modal(frame)
        await frame.click(await self._require(frame, "username_submit"))
        self.state = LoginState.USERNAME_SUBMITTED
        logger.debug("username_submitted")

        await self._check_modal(frame)

        if await self.probes["question_probe"].first(frame) is not None:
            self.state = LoginState.SECURITY_QUESTIONS
            logger.info("security_questions_detected")

            if not await self.resolver.handle(frame, self.slots):
                raise SecurityQuestionUnresolvedError(
                    "No security question could be answered"
                )

            await frame.click(await self._require(frame, "questions_submit"))
            await self._check_modal(frame)

            if await self.probes["password_recheck"].first(frame) is None:
                logger.info("password_step_absent_after_questions")
                await surface.pause(self._settle_ms)
                return await self._verify(surface, frame)

        self.state = LoginState.PASSWORD_ENTRY
        await self._fill(
            frame, "password_input", self.credentials.secret.get_secret_value()
        )
        await frame.click(await self._require(frame, "password_submit"))
        self.state = LoginState.SUBMITTED
        logger.debug("password_submitted")

        await surface.pause(self._settle_ms)
        await self._check_modal(surface)

        return await self._verify(surface, frame)

    async def _require(self, scope: PageSurface, name: str) -> Any:
        """Locate a required element with one retry.

        Raises:
            ElementNotFoundError: If the element is still missing.
        """
        chain = self.probes[name]
        element = await chain.first(scope)
        if element is None:
            logger.info("element_not_ready_retrying", element=name)
            element = await chain.first(scope)
        if element is None:
            raise ElementNotFoundError(f"Element '{name}' not found ({self.state.value})")
        return element

    async def _fill(self, scope: PageSurface, name: str, text: str) -> None:
        field = await self._require(scope, name)
        await scope.fill(field, text)
        if await scope.value_of(field) != text:
            logger.info("fill_not_applied_retrying", element=name)
            await scope.fill(field, text)
            if await scope.value_of(field) != text:
                raise AuthenticationError(f"Could not fill '{name}'")

    async def _check_system_status(self, surface: PageSurface) -> None:
        """Look for an outage banner on the page and in the status iframes.

        Raises:
            SystemUnavailableError: If a banner is present.
        """
        markers = self.markers["system_unavailable"]

        if contains_any(await surface.text(), markers):
            raise SystemUnavailableError("Banesco Online is not available at the moment")

        try:
            status_frame = await self.probes["status_frames"].frame(surface)
            status_text = await status_frame.text() if status_frame else ""
        except Exception as e:
            logger.debug("status_frame_unreadable", error=str(e))
            return

        if contains_any(status_text, markers):
            raise SystemUnavailableError(
                "Banesco Online reports a service interruption"
            )

    async def _check_modal(self, scope: PageSurface) -> None:
        """Dismiss an interrupt modal if one is showing.

        Called after every step, so all modal selectors share one short wait.

        Raises:
            ActiveConnectionModalError: If the modal reports an active session.
        """
        modal = await self.probes["modal"].any_match(scope)
        if modal is None:
            return

        previous, self.state = self.state, LoginState.MODAL_INTERRUPT
        text = await scope.text_of(modal)
        logger.info("modal_detected", previous_state=previous.value)

        if contains_any(text, self.markers["active_connection"]):
            accept = await self.probes["modal_accept"].first(scope)
            if accept is not None:
                await scope.click(accept)
            raise ActiveConnectionModalError("Another Banesco Online session is active")

        close = await self.probes["modal_close"].first(scope)
        if close is None:
            close = await self.probes["modal_accept"].first(scope)

        if close is not None:
            await scope.click(close)
            logger.info("modal_dismissed")
        else:
            logger.warning("modal_without_close_control")

        self.state = previous

    async def _verify(self, surface: PageSurface, frame: PageSurface) -> LoginResult:
        """Decide whether the landing page is the banking area."""
        self.state = LoginState.VERIFIED

        for scope in (surface, frame):
            try:
                text = await scope.text()
            except Exception as e:
                logger.debug("verification_scope_unreadable", error=str(e))
                continue
            if contains_any(text, self.markers["login_failure"]):
                return LoginResult(
                    status=LoginStatus.FAILED,
                    message="Banesco Online rejected the credentials",
                )

        if await self._looks_authenticated(surface):
            return LoginResult(
                status=LoginStatus.SUCCESS, message="Login successful", session_valid=True
            )

        for url in self.portal.get("home_urls", []):
            logger.info("verifying_via_home_url", url=url)
            try:
                await surface.navigate(url, self.config.timeout_ms)
            except Exception as e:
                logger.warning("home_url_navigation_failed", url=url, error=str(e))
                continue
            if await self._looks_authenticated(surface):
                return LoginResult(
                    status=LoginStatus.SUCCESS,
                    message="Login successful",
                    session_valid=True,
                )

        logger.warning("login_verification_failed", url=await surface.current_url())
        return LoginResult(
            status=LoginStatus.FAILED, message="Could not confirm access to the banking area"
        )

    async def _looks_authenticated(self, surface: PageSurface) -> bool:
        url = await surface.current_url()
        if contains_any(url, self.markers["login_form"]):
            return False
        if contains_any(await surface.content(), self.markers["login_form"]):
            return False

        return contains_any(url, self.markers["success_url"]) or contains_any(
            await surface.title(), self.markers["success_title"]
        )

    async def _discard(self, surface: PageSurface | None) -> None:
        if surface is None:
            return
        try:
            await surface.close()
        except Exception as e:
            logger.debug("page_close_failed", error=str(e))
