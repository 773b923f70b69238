# rest_client_oauth2/browser.py
"""Browser sessions that capture the OAuth redirect by intercepting navigation."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import parse_qs, urlparse

from .errors import AuthorizationError

logger = logging.getLogger(__name__)


@dataclass
class RedirectResult:
    """Query parameters carried by the intercepted redirect."""

    code: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @classmethod
    def from_url(cls, url: str) -> "RedirectResult":
        query = parse_qs(urlparse(url).query)

        def first(name: str) -> Optional[str]:
            values = query.get(name)
            return values[0] if values else None

        return cls(
            code=first("code"),
            error=first("error"),
            error_description=first("error_description"),
        )


class BrowserSession(Protocol):
    """Interactive browser able to report the redirect to a local host."""

    async def launch(self) -> None: ...

    async def navigate_and_intercept_redirect(
        self, url: str, local_host: str
    ) -> RedirectResult: ...

    async def close(self) -> None: ...


class PlaywrightBrowserSession:
    """
    Chromium driven through Playwright.

    Every top-level navigation whose host equals ``local_host`` is aborted
    before it is fetched and its query string is reported; all other
    requests continue untouched. Closing the window before that redirect
    happens fails the acquisition.
    """

    def __init__(
        self,
        executable_path: Optional[str] = None,
        headless: bool = False,
    ):
        self.executable_path = executable_path
        self.headless = headless
        self._playwright = None
        self._browser = None
        self._context = None

    async def launch(self) -> None:
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        launch_kwargs: dict = {"headless": self.headless}
        if self.executable_path:
            launch_kwargs["executable_path"] = self.executable_path
        try:
            self._browser = await self._playwright.chromium.launch(**launch_kwargs)
            self._context = await self._browser.new_context()
        except Exception:
            await self.close()
            raise
        logger.debug("Browser launched")

    async def navigate_and_intercept_redirect(
        self, url: str, local_host: str
    ) -> RedirectResult:
        if self._context is None or self._browser is None:
            raise RuntimeError("Browser session is not launched")

        loop = asyncio.get_running_loop()
        result: asyncio.Future = loop.create_future()

        def fail_closed(*_args) -> None:
            if not result.done():
                result.set_exception(
                    AuthorizationError(
                        "browser_closed",
                        "The browser was closed before authorization completed",
                    )
                )

        async def handle_route(route) -> None:
            request = route.request
            if request.is_navigation_request() and _is_top_level(request):
                if urlparse(request.url).hostname == local_host:
                    # Result is settled before the abort can fail
                    if not result.done():
                        result.set_result(RedirectResult.from_url(request.url))
                    await route.abort()
                    return
            await route.continue_()

        # Routing on the context covers every page and frame it opens
        await self._context.route("**/*", handle_route)
        self._browser.on("disconnected", fail_closed)
        self._context.on("close", fail_closed)

        page = await self._context.new_page()
        page.on("close", fail_closed)

        try:
            await page.goto(url)
        except Exception as e:
            # Navigation errors are expected once the redirect is aborted
            if not result.done():
                raise AuthorizationError("navigation_failed", str(e)) from e

        return await result

    async def close(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._context = None
        self._browser = None
        self._playwright = None
        try:
            if browser is not None:
                await browser.close()
        finally:
            if playwright is not None:
                await playwright.stop()
        logger.debug("Browser closed")


def _is_top_level(request) -> bool:
    try:
        return request.frame.parent_frame is None
    except Exception:
        # Service worker requests have no frame
        return False
