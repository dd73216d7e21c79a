"""Minimal browser automation surface.

The login flow, session store and scraper talk to the browser only through
PageSurface. It wraps a Playwright page, optionally scoped to one of its
frames (the Banesco login form lives inside an iframe), and exposes a small
set of awaitable operations.
"""

from typing import Any

import structlog
from playwright.async_api import ElementHandle, Frame, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

logger = structlog.get_logger(__name__)

_READ_STORAGE = """() => {
    const dump = (store) => {
        const out = {};
        for (let i = 0; i < store.length; i++) {
            const key = store.key(i);
            out[key] = store.getItem(key);
        }
        return out;
    };
    return {local: dump(window.localStorage), session: dump(window.sessionStorage)};
}"""

_WRITE_STORAGE = """(data) => {
    for (const [key, value] of Object.entries(data.local || {})) {
        window.localStorage.setItem(key, value);
    }
    for (const [key, value] of Object.entries(data.session || {})) {
        window.sessionStorage.setItem(key, value);
    }
}"""

_BODY_TEXT = "() => document.body ? document.body.innerText : ''"

_OPTIONS = """(options) => options.map((option) => ({
    value: option.value,
    text: (option.textContent || '').trim(),
}))"""


class PageSurface:
    """Awaitable browser operations bound to a page or one of its frames.

    Attributes:
        page: Owning Playwright page (cookies live on its context).
        scope: The page itself or a child frame that queries run against.
    """

    def __init__(self, page: Page, scope: Page | Frame | None = None) -> None:
        self.page = page
        self.scope = scope or page

    async def navigate(self, url: str, timeout_ms: int = 30000) -> None:
        logger.debug("navigating_to_url", url=url)
        await self.scope.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

    async def query_selector(self, selector: str) -> ElementHandle | None:
        return await self.scope.query_selector(selector)

    async def wait_for(
        self, selector: str, *, timeout_ms: int = 5000, state: str = "visible"
    ) -> ElementHandle | None:
        """Wait for a selector to reach a state.

        Returns:
            The element handle, or None if the deadline passed.
        """
        try:
            return await self.scope.wait_for_selector(
                selector, timeout=timeout_ms, state=state
            )
        except PlaywrightTimeoutError:
            return None

    async def fill(self, ref: ElementHandle, text: str) -> None:
        await ref.fill(text)

    async def click(self, ref: ElementHandle) -> None:
        await ref.click()

    async def select_option(self, ref: ElementHandle, value: str) -> None:
        await ref.select_option(value=value)

    async def options_of(self, ref: ElementHandle) -> list[dict[str, str]]:
        """Value and label of every <option> under a <select>."""
        return await ref.eval_on_selector_all("option", _OPTIONS)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.scope.evaluate(script, arg)

    async def get_cookies(self) -> list[dict[str, Any]]:
        return [dict(cookie) for cookie in await self.page.context.cookies()]

    async def set_cookies(self, cookies: list[dict[str, Any]]) -> None:
        if cookies:
            await self.page.context.add_cookies(cookies)  # type: ignore[arg-type]

    async def get_storage(self) -> tuple[dict[str, str], dict[str, str]]:
        """Read localStorage and sessionStorage of the current document."""
        data = await self.scope.evaluate(_READ_STORAGE)
        return data.get("local", {}), data.get("session", {})

    async def set_storage(
        self, local: dict[str, str], session: dict[str, str]
    ) -> None:
        await self.scope.evaluate(_WRITE_STORAGE, {"local": local, "session": session})

    async def content(self) -> str:
        return await self.scope.content()

    async def text(self) -> str:
        """Visible text of the document body."""
        return await self.scope.evaluate(_BODY_TEXT)

    async def title(self) -> str:
        return await self.scope.title()

    async def current_url(self) -> str:
        return self.scope.url

    async def user_agent(self) -> str:
        return await self.scope.evaluate("() => navigator.userAgent")

    async def text_of(self, ref: ElementHandle) -> str:
        return ((await ref.text_content()) or "").strip()

    async def value_of(self, ref: ElementHandle) -> str:
        return await ref.input_value()

    async def is_visible(self, ref: ElementHandle) -> bool:
        return await ref.is_visible()

    async def is_enabled(self, ref: ElementHandle) -> bool:
        return await ref.is_enabled()

    async def frame(
        self, selector: str, *, timeout_ms: int = 10000, state: str = "attached"
    ) -> "PageSurface | None":
        """Scope into the iframe matched by selector.

        Returns:
            A surface bound to the frame, or None if it never became reachable.
        """
        handle = await self.wait_for(selector, timeout_ms=timeout_ms, state=state)
        if handle is None:
            return None

        frame = await handle.content_frame()
        if frame is None:
            return None

        try:
            await frame.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            logger.warning("frame_load_timeout", selector=selector)
            return None

        return PageSurface(self.page, frame)

    async def pause(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    async def close(self) -> None:
        if not self.page.is_closed():
            await self.page.close()
