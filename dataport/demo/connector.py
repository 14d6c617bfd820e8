"""Bookshelf demo connector.

Exports three scopes:

- ``bookshelf.profile``: the account profile (API, then DOM)
- ``bookshelf.books``: every shelved book with its review, paginated over
  the shelf API with a captured-response and DOM fallback for page one,
  reviews fetched in bounded batches
- ``bookshelf.feed``: recent activity from an infinite-scroll feed
  (optional; some accounts have the feed disabled)
"""

from __future__ import annotations

import logging
from typing import Any

from pyrate_limiter import Duration, Rate

from dataport.common.progress import PhaseProgress
from dataport.connector import BaseConnector, CollectionPhase, PartialScope
from dataport.data_types import CollectionContext, Item
from dataport.extraction import (
    BatchFailure,
    CapturedResponseStrategy,
    FunctionStrategy,
    PageBatch,
    StopPolicy,
    Tier,
    collect,
    extract,
    fetch_in_batches,
    require,
)
from dataport.extraction.batch import error_suffix
from dataport.demo import operations as ops
from dataport.demo.models import BookRef, BooksPageParams

logger = logging.getLogger(__name__)

BOOKSHELF_URL = "https://bookshelf.example"
PER_PAGE = 10
MAX_PAGES = 60
REVIEW_BATCH_SIZE = 5
FEED_MAX_SCROLLS = 12
FEED_MAX_POSTS = 120


def parse_books_body(body: Any) -> list[Item]:
    """Items from a captured ``/api/books`` response body."""
    if not isinstance(body, dict) or not isinstance(body.get("books"), list):
        raise ValueError("captured books response has no 'books' list")
    return body["books"]


class BookshelfConnector(BaseConnector):
    """Connector for the Bookshelf demo site."""

    platform = "bookshelf"
    name = "Bookshelf"
    version = "1.0.0"
    connect_url = BOOKSHELF_URL
    login_url = f"{BOOKSHELF_URL}/login"
    noun = "book"
    count_scopes = ["bookshelf.books"]
    rate_limits = [Rate(2, Duration.SECOND)]

    async def is_logged_in(self, context: CollectionContext) -> bool:
        return await context.capabilities.invoke(ops.IS_LOGGED_IN)

    async def resolve_identity(self, context: CollectionContext) -> str | None:
        return await context.capabilities.invoke(ops.CURRENT_USER)

    async def prepare(self, context: CollectionContext) -> CollectionContext:
        # The shelf page requests its first page of books on load; capture
        # it so the network tier has something to read.
        capabilities = context.capabilities
        await capabilities.capture_network("books", r"/api/books\?page=1\b")
        await capabilities.navigate(f"{BOOKSHELF_URL}/shelf")
        return context.with_values(shelf_loaded=True)

    def phases(self) -> list[CollectionPhase]:
        return [
            CollectionPhase("bookshelf.profile", "Profile", self.collect_profile),
            CollectionPhase("bookshelf.books", "Books", self.collect_books),
            CollectionPhase(
                "bookshelf.feed", "Feed", self.collect_feed, optional=True
            ),
        ]

    def summary_details(self, scopes: dict[str, Any]) -> str | None:
        books = scopes.get("bookshelf.books") or []
        reviewed = sum(
            1 for book in books if (book.get("review") or {}).get("rating") is not None
        )
        posts = len(scopes.get("bookshelf.feed") or [])
        return f"{len(books)} books ({reviewed} reviewed), {posts} feed posts"

    # =========================================================================
    # Profile
    # =========================================================================

    async def collect_profile(
        self, context: CollectionContext, progress: PhaseProgress
    ) -> dict[str, Any]:
        async def from_api(ctx: CollectionContext) -> list[Item]:
            profile = await ctx.capabilities.invoke(ops.FETCH_PROFILE)
            return [profile.model_dump()]

        async def from_dom(ctx: CollectionContext) -> list[Item]:
            profile = await ctx.capabilities.invoke(ops.SCRAPE_PROFILE)
            return [profile.model_dump()]

        result = await extract(
            [
                FunctionStrategy("profile-api", from_api, Tier.API),
                FunctionStrategy("profile-dom", from_dom, Tier.DOM),
            ],
            context,
        )
        items = require(result, "bookshelf.profile", self.platform)
        if not items:
            return {"username": context.identity}
        return items[0]

    # =========================================================================
    # Books
    # =========================================================================

    async def collect_books(
        self, context: CollectionContext, progress: PhaseProgress
    ) -> list[Item] | PartialScope:
        has_next: dict[int, bool] = {}
        fallback: list[str] = []

        def api_page(page: int) -> FunctionStrategy:
            async def fetch(ctx: CollectionContext) -> list[Item]:
                result = await ctx.capabilities.invoke(
                    ops.FETCH_BOOKS_PAGE,
                    BooksPageParams(page=page, per_page=PER_PAGE),
                )
                has_next[page] = result.has_next
                return result.items

            return FunctionStrategy(f"books-api:{page}", fetch, Tier.API)

        async def scrape(ctx: CollectionContext) -> list[Item]:
            return await ctx.capabilities.invoke(ops.SCRAPE_BOOKS)

        async def fetch_page(iteration: int, cursor: Any) -> PageBatch:
            page = iteration + 1
            strategies = [api_page(page)]
            if page == 1:
                strategies += [
                    CapturedResponseStrategy("books", parse_books_body),
                    FunctionStrategy("books-dom", scrape, Tier.DOM),
                ]
            result = await extract(strategies, context)
            items = require(result, "bookshelf.books", self.platform)
            if result.strategy != f"books-api:{page}":
                # Fallback tiers only ever see the first page.
                fallback.append(result.strategy or "fallback")
                return PageBatch(items, has_next=False)
            return PageBatch(items, has_next=has_next.get(page))

        outcome = await collect(
            fetch_page,
            key_fn=lambda book: book.get("id"),
            stop_policy=StopPolicy(page_size=PER_PAGE),
            max_iterations=MAX_PAGES,
            progress=progress,
            noun="books",
        )
        logger.info(
            f"Collected {len(outcome.items)} books in {outcome.iterations} page(s) "
            f"({outcome.stop_reason.value})"
        )
        books = await self._attach_reviews(context, progress, outcome.items)

        if outcome.partial:
            return PartialScope(
                books, f"Stopped after {len(books)} books: {outcome.error}"
            )
        if fallback and len(books) >= PER_PAGE:
            return PartialScope(
                books,
                f"Only the first page of books was available ({fallback[0]})",
            )
        return books

    async def _attach_reviews(
        self,
        context: CollectionContext,
        progress: PhaseProgress,
        books: list[Item],
    ) -> list[Item]:
        if not books:
            return books

        async def fetch_review(book_id: str) -> dict[str, Any]:
            review = await context.capabilities.invoke(
                ops.FETCH_REVIEW, BookRef(book_id=book_id)
            )
            return review.model_dump(exclude={"book_id"})

        async def on_batch(done: int, total: int) -> None:
            await progress(f"Fetched reviews {done}/{total}", len(books))

        reviews = await fetch_in_batches(
            [book["id"] for book in books],
            fetch_review,
            batch_size=REVIEW_BATCH_SIZE,
            on_batch=on_batch,
        )

        enriched = []
        for book, review in zip(books, reviews):
            if isinstance(review, BatchFailure):
                enriched.append({**book, "review": None, "review_error": review.error})
            else:
                enriched.append({**book, "review": review})

        await progress(
            f"Fetched reviews for {len(books)} books{error_suffix(reviews)}",
            len(books),
        )
        return enriched

    # =========================================================================
    # Feed
    # =========================================================================

    async def collect_feed(
        self, context: CollectionContext, progress: PhaseProgress
    ) -> list[Item] | PartialScope:
        await context.capabilities.navigate(f"{BOOKSHELF_URL}/feed")

        async def scroll(iteration: int, cursor: Any) -> list[Item]:
            return await context.capabilities.invoke(ops.SCROLL_FEED)

        outcome = await collect(
            scroll,
            key_fn=lambda post: post.get("id"),
            stop_policy=StopPolicy(
                stagnant_limit=3,
                max_items=FEED_MAX_POSTS,
                stop_on_empty=False,
            ),
            max_iterations=FEED_MAX_SCROLLS,
            progress=progress,
            noun="posts",
        )
        if outcome.partial:
            return PartialScope(
                outcome.items,
                f"Feed stopped after {len(outcome.items)} posts: {outcome.error}",
            )
        return outcome.items
