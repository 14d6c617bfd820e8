"""In-process simulation of the Bookshelf site.

SimulatedBookshelf answers the demo's remote operations by name from the
sample data, and SimulatedCapabilities implements the capability surface
on top of it with a virtual clock, so full runs (login included) complete
instantly and deterministically without a browser.

Example::

    site = SimulatedBookshelf(logged_in=False, login_after_checks=3)
    async with SimulatedCapabilities.open(site, emitter) as capabilities:
        lifecycle = WorkerLifecycle(
            BookshelfConnector(), capabilities, clock=capabilities.clock
        )
        envelope = await lifecycle.run(request)
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from dataport.common.exceptions import RemoteOperationError
from dataport.common.poll import PollPolicy, poll
from dataport.connector import BaseConnector
from dataport.data_types import RunRequest
from dataport.demo import data
from dataport.demo.connector import BOOKSHELF_URL, PER_PAGE
from dataport.worker.capabilities import Capabilities, Emitter
from dataport.worker.remote import RemoteOperation

logger = logging.getLogger(__name__)


class SimulatedFailure(RuntimeError):
    """Raised by an operation the simulation was told to break."""


class SimulatedBookshelf:
    """The Bookshelf site's browser-side behavior, in memory.

    Args:
        logged_in: Whether the session starts authenticated.
        login_after_checks: When not logged in, become logged in after this
            many login checks (the user finishing an interactive login).
            None means never.
        identity: Username reported by the page; None simulates a page
            that never exposes it.
        books: Shelf contents (default: the sample shelf).
        reviews: Review per book id (default: reviews for "read" books).
        feed: Feed posts (default: the sample feed).
        feed_batch: Posts revealed per scroll.
        broken: Operation names that fail.
        failing_reviews: Book ids whose review fetch fails.
        failing_pages: Books API page numbers that fail.
        capture_on_load: Whether loading the shelf page issues the first
            books API request (visible to network capture).
    """

    def __init__(
        self,
        logged_in: bool = True,
        login_after_checks: int | None = None,
        identity: str | None = data.USERNAME,
        books: list[dict[str, Any]] | None = None,
        reviews: dict[str, dict[str, Any]] | None = None,
        feed: list[dict[str, Any]] | None = None,
        feed_batch: int = 5,
        broken: Iterable[str] = (),
        failing_reviews: Iterable[str] = (),
        failing_pages: Iterable[int] = (),
        capture_on_load: bool = True,
    ) -> None:
        self.logged_in = logged_in
        self.login_after_checks = login_after_checks
        self.identity = identity
        self.books = data.make_books() if books is None else books
        self.reviews = data.make_reviews(self.books) if reviews is None else reviews
        self.feed = data.make_feed() if feed is None else feed
        self.feed_batch = feed_batch
        self.broken = set(broken)
        self.failing_reviews = set(failing_reviews)
        self.failing_pages = set(failing_pages)
        self.capture_on_load = capture_on_load

        self.calls: list[tuple[str, Any]] = []
        self.login_checks = 0
        self.visible_posts = 0

    def handle(self, name: str, arg: Any) -> Any:
        """Answer one remote operation with its raw (unvalidated) result."""
        self.calls.append((name, arg))
        if name in self.broken:
            raise SimulatedFailure(f"{name} is unavailable")
        handler = getattr(self, f"_op_{name}", None)
        if handler is None:
            raise SimulatedFailure(f"unknown operation {name}")
        return handler(arg)

    def call_count(self, name: str) -> int:
        return sum(1 for called, _ in self.calls if called == name)

    def responses_on_navigate(self, url: str) -> list[tuple[str, Any]]:
        """Network responses the page issues while loading ``url``."""
        if self.capture_on_load and url.rstrip("/").endswith("/shelf"):
            first = self._books_page(1, PER_PAGE)
            return [
                (
                    f"{BOOKSHELF_URL}/api/books?page=1&per_page={PER_PAGE}",
                    {"books": first["items"], "has_next": first["has_next"]},
                )
            ]
        return []

    # =========================================================================
    # Operations
    # =========================================================================

    def _op_is_logged_in(self, arg: Any) -> bool:
        self.login_checks += 1
        if (
            not self.logged_in
            and self.login_after_checks is not None
            and self.login_checks > self.login_after_checks
        ):
            self.logged_in = True
        return self.logged_in

    def _op_current_user(self, arg: Any) -> str | None:
        return self.identity if self.logged_in else None

    def _op_fetch_profile(self, arg: Any) -> dict[str, Any]:
        if not self.logged_in:
            raise SimulatedFailure("HTTP 401")
        return dict(data.PROFILE)

    def _op_scrape_profile(self, arg: Any) -> dict[str, Any] | None:
        if not self.logged_in:
            return None
        return {
            "username": data.PROFILE["username"],
            "display_name": data.PROFILE["display_name"],
        }

    def _op_fetch_books_page(self, arg: dict[str, Any]) -> dict[str, Any]:
        if arg["page"] in self.failing_pages:
            raise SimulatedFailure(f"HTTP 502 for books page {arg['page']}")
        return self._books_page(arg["page"], arg["per_page"])

    def _books_page(self, page: int, per_page: int) -> dict[str, Any]:
        start = (page - 1) * per_page
        items = self.books[start : start + per_page]
        return {"items": items, "has_next": start + per_page < len(self.books)}

    def _op_scrape_books(self, arg: Any) -> list[dict[str, Any]]:
        # The rendered shelf only shows the first page.
        return [dict(book) for book in self.books[:PER_PAGE]]

    def _op_fetch_review(self, arg: dict[str, Any]) -> dict[str, Any]:
        book_id = arg["book_id"]
        if book_id in self.failing_reviews:
            raise SimulatedFailure("HTTP 500")
        review = self.reviews.get(book_id, {})
        return {
            "book_id": book_id,
            "rating": review.get("rating"),
            "text": review.get("text", ""),
        }

    def _op_scroll_feed(self, arg: Any) -> list[dict[str, Any]]:
        self.visible_posts = min(self.visible_posts + self.feed_batch, len(self.feed))
        return [dict(post) for post in self.feed[: self.visible_posts]]


class SimulatedCapabilities:
    """Capability surface backed by a SimulatedBookshelf.

    Time is virtual: ``sleep`` advances ``now`` instead of waiting, and
    ``clock`` reads it.

    Attributes:
        navigations: URLs navigated to, in order.
        mode_changes: "headed"/"headless" switches, in order.
        prompts: Messages passed to prompt_user.
    """

    def __init__(
        self,
        site: SimulatedBookshelf,
        emitter: Emitter | None = None,
        headless: bool = False,
    ) -> None:
        self.site = site
        self.emitter = emitter or Emitter()
        self.now = 0.0
        self.navigations: list[str] = []
        self.mode_changes: list[str] = []
        self.prompts: list[str] = []
        self._headless = headless
        self._page_lock = asyncio.Lock()
        self._capture_patterns: dict[str, re.Pattern[str]] = {}
        self._captured: dict[str, Any] = {}

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        site: SimulatedBookshelf,
        emitter: Emitter | None = None,
        headless: bool = False,
    ) -> AsyncIterator[SimulatedCapabilities]:
        capabilities = cls(site, emitter, headless)
        try:
            yield capabilities
        finally:
            await capabilities.close()

    def clock(self) -> float:
        return self.now

    @property
    def headless(self) -> bool:
        return self._headless

    async def navigate(self, url: str) -> None:
        async with self._page_lock:
            self.navigations.append(url)
            for response_url, body in self.site.responses_on_navigate(url):
                await self._on_response(response_url, body)

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

    async def _evaluate(self, operation: RemoteOperation[Any, Any], arg: Any) -> Any:
        # Yield so concurrent fetches interleave as they would in a page.
        await asyncio.sleep(0)
        try:
            return self.site.handle(operation.name, arg)
        except SimulatedFailure as e:
            raise RemoteOperationError(operation.name, str(e)) from e

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)

    async def show_browser(self, url: str | None = None) -> None:
        if self._headless:
            self._headless = False
            self.mode_changes.append("headed")
        if url:
            await self.navigate(url)

    async def go_headless(self) -> None:
        if not self._headless:
            self._headless = True
            self.mode_changes.append("headless")

    async def prompt_user(
        self,
        message: str,
        predicate: Callable[[], Awaitable[Any]],
        policy: PollPolicy,
    ) -> bool:
        self.prompts.append(message)
        await self.emitter.status({"type": "WAITING_FOR_USER", "message": message})
        return bool(await poll(predicate, policy, sleep=self.sleep, clock=self.clock))

    async def capture_network(self, key: str, url_pattern: str) -> None:
        self._captured.pop(key, None)
        self._capture_patterns[key] = re.compile(url_pattern)

    async def get_captured(self, key: str) -> Any | None:
        return self._captured.get(key)

    async def _on_response(self, url: str, body: Any) -> None:
        for key, pattern in list(self._capture_patterns.items()):
            if pattern.search(url):
                del self._capture_patterns[key]
                self._captured[key] = body
                await self.emitter.network_captured(key, url)

    async def close(self) -> None:
        logger.debug(f"Simulated session closed after {len(self.site.calls)} calls")


def simulated_factory(
    site: SimulatedBookshelf,
) -> Callable[
    [Emitter, BaseConnector, RunRequest], AbstractAsyncContextManager[Capabilities]
]:
    """Capabilities factory for ``dataport.worker.worker.serve``."""

    def factory(
        emitter: Emitter, connector: BaseConnector, request: RunRequest
    ) -> AbstractAsyncContextManager[Capabilities]:
        return SimulatedCapabilities.open(site, emitter, headless=request.headless)

    return factory
