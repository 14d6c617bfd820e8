"""Playwright-backed capability surface.

Owns a single browser page for the run and provides:

- Navigation serialized through a lock and paced by pyrate_limiter
- Typed remote operations via ``page.evaluate(script, arg)``
- Headed/headless switching by relaunching the context; cookies survive
  through the persistent profile directory or carried storage state
- Network capture via a response listener
- Interactive prompts that poll a login predicate
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from playwright.async_api import (
    BrowserContext,
    Page,
    Response,
    async_playwright,
)
from playwright.async_api import (
    Error as PlaywrightError,
)
from playwright.async_api import (
    TimeoutError as PlaywrightTimeoutError,
)
from pyrate_limiter import InMemoryBucket, Limiter, Rate

from dataport.common.exceptions import (
    RemoteOperationError,
    RemoteOperationTimeout,
    TransientException,
)
from dataport.common.poll import PollPolicy, poll
from dataport.worker.capabilities import Emitter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from playwright.async_api import Browser, Playwright

    from dataport.worker.remote import RemoteOperation

logger = logging.getLogger(__name__)

PROFILE_DIR_ENV = "DATAPORT_PROFILE_DIR"


def default_profile_dir(platform: str) -> Path | None:
    """Persistent profile directory for a platform, if configured.

    ``DATAPORT_PROFILE_DIR`` names a root directory; each platform gets its
    own subdirectory so sessions do not mix.
    """
    root = os.environ.get(PROFILE_DIR_ENV)
    if not root:
        return None
    return Path(root).expanduser() / platform


class PlaywrightCapabilities:
    """Capabilities backed by a real Playwright browser.

    Note: Use PlaywrightCapabilities.open() for proper async initialization.

    Args:
        playwright: A started Playwright instance.
        emitter: Emitter for prompts and network-capture notices.
        browser_type: "chromium", "firefox" or "webkit".
        headless: Initial headless state.
        user_data_dir: Persistent profile directory. When None the session
            lives in memory and is carried across relaunches as storage
            state.
        context_options: Keyword arguments for the browser context
            (viewport, locale, timezone_id, user_agent).
        rate_limiter: Optional limiter pacing navigations.
        navigation_timeout: Navigation timeout in seconds.
    """

    def __init__(
        self,
        playwright: Playwright,
        emitter: Emitter,
        browser_type: str = "chromium",
        headless: bool = False,
        user_data_dir: Path | None = None,
        context_options: dict[str, Any] | None = None,
        rate_limiter: Limiter | None = None,
        navigation_timeout: float = 30.0,
    ) -> None:
        self.playwright = playwright
        self.emitter = emitter
        self.browser_type = browser_type
        self.user_data_dir = user_data_dir
        self.context_options = context_options or {}
        self.rate_limiter = rate_limiter
        self.navigation_timeout = navigation_timeout

        self._headless = headless
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        # Navigation and page-state operations never overlap
        self._page_lock = asyncio.Lock()
        # key -> compiled URL pattern, for captures not yet satisfied
        self._capture_patterns: dict[str, re.Pattern[str]] = {}
        self._captured: dict[str, Any] = {}

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        emitter: Emitter,
        browser_type: str = "chromium",
        headless: bool = False,
        viewport: dict[str, int] | None = None,
        user_agent: str | None = None,
        locale: str = "en-US",
        timezone_id: str = "America/New_York",
        user_data_dir: Path | None = None,
        rates: list[Rate] | None = None,
        navigation_timeout: float = 30.0,
    ) -> AsyncIterator[PlaywrightCapabilities]:
        """Open a browser session as an async context manager.

        Args:
            emitter: Emitter for the run.
            browser_type: Browser type (default: "chromium").
            headless: Start hidden (default: False).
            viewport: Viewport size (default: None = 1280x720).
            user_agent: Custom user agent (default: None = browser default).
            locale: Browser locale (default: "en-US").
            timezone_id: Browser timezone (default: "America/New_York").
            user_data_dir: Persistent profile directory (default: None).
            rates: pyrate_limiter rates for navigation (default: None).
            navigation_timeout: Navigation timeout in seconds.

        Yields:
            Initialized PlaywrightCapabilities.

        Example:
            async with PlaywrightCapabilities.open(emitter) as caps:
                await caps.navigate("https://example.com")
        """
        if viewport is None:
            viewport = {"width": 1280, "height": 720}

        context_options: dict[str, Any] = {
            "viewport": viewport,
            "locale": locale,
            "timezone_id": timezone_id,
        }
        if user_agent:
            context_options["user_agent"] = user_agent

        rate_limiter = Limiter(InMemoryBucket(rates)) if rates else None

        playwright = await async_playwright().start()
        try:
            capabilities = cls(
                playwright,
                emitter,
                browser_type=browser_type,
                headless=headless,
                user_data_dir=user_data_dir,
                context_options=context_options,
                rate_limiter=rate_limiter,
                navigation_timeout=navigation_timeout,
            )
            await capabilities._launch()
            try:
                yield capabilities
            finally:
                await capabilities.close()
        finally:
            await playwright.stop()

    @property
    def headless(self) -> bool:
        return self._headless

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session is not open")
        return self._page

    # =========================================================================
    # Browser lifecycle
    # =========================================================================

    async def _launch(self, storage_state: dict[str, Any] | None = None) -> None:
        launcher = getattr(self.playwright, self.browser_type)

        if self.user_data_dir is not None:
            self.user_data_dir.mkdir(parents=True, exist_ok=True)
            self._context = await launcher.launch_persistent_context(
                str(self.user_data_dir),
                headless=self._headless,
                **self.context_options,
            )
        else:
            self._browser = await launcher.launch(headless=self._headless)
            options = dict(self.context_options)
            if storage_state is not None:
                options["storage_state"] = storage_state
            self._context = await self._browser.new_context(**options)

        pages = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()
        self._page.set_default_navigation_timeout(self.navigation_timeout * 1000)
        self._page.on("response", self._on_response)

        logger.debug(
            f"Launched {self.browser_type} "
            f"({'headless' if self._headless else 'headed'})"
        )

    async def _relaunch(self, headless: bool) -> None:
        """Restart the browser in the other mode, keeping the session."""
        async with self._page_lock:
            url = self._page.url if self._page else "about:blank"
            storage_state = None
            if self.user_data_dir is None and self._context is not None:
                storage_state = await self._context.storage_state()

            await self._close_browser()
            self._headless = headless
            await self._launch(storage_state)

            if url and url != "about:blank":
                await self._goto(url)

    async def _close_browser(self) -> None:
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        self._page = None

    async def close(self) -> None:
        await self._close_browser()

    async def show_browser(self, url: str | None = None) -> None:
        if self._headless:
            await self._relaunch(headless=False)
        if url:
            await self.navigate(url)

    async def go_headless(self) -> None:
        if not self._headless:
            await self._relaunch(headless=True)

    # =========================================================================
    # Navigation and remote operations
    # =========================================================================

    async def navigate(self, url: str) -> None:
        async with self._page_lock:
            if self.rate_limiter:
                await self.rate_limiter.try_acquire_async(
                    name="navigation", weight=1
                )
            await self._goto(url)

    async def _goto(self, url: str) -> None:
        try:
            await self.page.goto(url, wait_until="domcontentloaded")
        except PlaywrightTimeoutError as e:
            raise TransientException(
                f"Navigation to {url} timed out: {e}"
            ) from e

    async def invoke(
        self, operation: RemoteOperation[Any, Any], params: Any = None
    ) -> Any:
        arg = operation.prepare(params)
        if operation.concurrent:
            raw = await self._evaluate(operation, arg)
        else:
            async with self._page_lock:
                raw = await self._evaluate(operation, arg)
        return operation.parse_result(raw)

    async def _evaluate(
        self, operation: RemoteOperation[Any, Any], arg: Any
    ) -> Any:
        try:
            call = self.page.evaluate(operation.script, arg)
            if operation.timeout is None:
                return await call
            return await asyncio.wait_for(call, operation.timeout)
        except asyncio.TimeoutError as e:
            raise RemoteOperationTimeout(
                operation.name, operation.timeout or 0
            ) from e
        except PlaywrightError as e:
            raise RemoteOperationError(operation.name, str(e)) from e

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    # =========================================================================
    # User interaction
    # =========================================================================

    async def prompt_user(
        self,
        message: str,
        predicate: Callable[[], Awaitable[Any]],
        policy: PollPolicy,
    ) -> bool:
        await self.emitter.status({"type": "WAITING_FOR_USER", "message": message})
        return bool(await poll(predicate, policy, sleep=self.sleep))

    # =========================================================================
    # Network capture
    # =========================================================================

    async def capture_network(self, key: str, url_pattern: str) -> None:
        self._captured.pop(key, None)
        self._capture_patterns[key] = re.compile(url_pattern)
        logger.debug(f"Capturing responses matching {url_pattern!r} as '{key}'")

    async def get_captured(self, key: str) -> Any | None:
        return self._captured.get(key)

    async def _on_response(self, response: Response) -> None:
        """Store the body of the first response matching each capture."""
        for key, pattern in list(self._capture_patterns.items()):
            if not pattern.search(response.url):
                continue
            del self._capture_patterns[key]
            try:
                body: Any = await response.json()
            except (PlaywrightError, ValueError):
                try:
                    body = await response.text()
                except PlaywrightError as e:
                    logger.debug(f"Could not read captured body for '{key}': {e}")
                    self._capture_patterns[key] = pattern
                    continue
            self._captured[key] = body
            await self.emitter.network_captured(key, response.url)
