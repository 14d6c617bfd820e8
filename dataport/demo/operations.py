"""Browser-side operations for the Bookshelf demo site.

Each script is a fixed JavaScript function expression; parameters arrive
as its single JSON argument.
"""

from __future__ import annotations

from typing import Any

from dataport.demo.models import (
    BookRef,
    BooksPage,
    BooksPageParams,
    Profile,
    Review,
)
from dataport.worker.remote import RemoteOperation

IS_LOGGED_IN: RemoteOperation[Any, bool] = RemoteOperation(
    name="is_logged_in",
    script="() => document.querySelector('[data-user]') !== null",
    result_model=bool,
)

CURRENT_USER: RemoteOperation[Any, str | None] = RemoteOperation(
    name="current_user",
    script="""() => {
        const el = document.querySelector('[data-user]');
        return el ? el.getAttribute('data-user') : null;
    }""",
    result_model=str | None,
)

FETCH_PROFILE: RemoteOperation[Any, Profile] = RemoteOperation(
    name="fetch_profile",
    script="""async () => {
        const r = await fetch('/api/me', {credentials: 'include'});
        if (!r.ok) throw new Error('HTTP ' + r.status);
        return await r.json();
    }""",
    result_model=Profile,
)

SCRAPE_PROFILE: RemoteOperation[Any, Profile] = RemoteOperation(
    name="scrape_profile",
    script="""() => {
        const el = document.querySelector('[data-user]');
        if (!el) return null;
        return {
            username: el.getAttribute('data-user'),
            display_name: (el.textContent || '').trim(),
        };
    }""",
    result_model=Profile,
)

FETCH_BOOKS_PAGE: RemoteOperation[BooksPageParams, BooksPage] = RemoteOperation(
    name="fetch_books_page",
    script="""async ({page, per_page}) => {
        const url = `/api/books?page=${page}&per_page=${per_page}`;
        const r = await fetch(url, {credentials: 'include'});
        if (!r.ok) throw new Error('HTTP ' + r.status);
        const body = await r.json();
        return {items: body.books || [], has_next: !!body.has_next};
    }""",
    params_model=BooksPageParams,
    result_model=BooksPage,
)

SCRAPE_BOOKS: RemoteOperation[Any, list[dict[str, Any]]] = RemoteOperation(
    name="scrape_books",
    script="""() => Array.from(document.querySelectorAll('[data-book-id]')).map(row => ({
        id: row.getAttribute('data-book-id'),
        title: (row.querySelector('.title')?.textContent || '').trim(),
        author: (row.querySelector('.author')?.textContent || '').trim(),
        shelf: row.getAttribute('data-shelf') || null,
    }))""",
    result_model=list[dict[str, Any]],
)

FETCH_REVIEW: RemoteOperation[BookRef, Review] = RemoteOperation(
    name="fetch_review",
    script="""async ({book_id}) => {
        const r = await fetch(`/api/books/${book_id}/review`, {credentials: 'include'});
        if (!r.ok) throw new Error('HTTP ' + r.status);
        const body = await r.json();
        return {book_id, rating: body.rating ?? null, text: body.text || ''};
    }""",
    params_model=BookRef,
    result_model=Review,
    concurrent=True,
)

SCROLL_FEED: RemoteOperation[Any, list[dict[str, Any]]] = RemoteOperation(
    name="scroll_feed",
    script="""async () => {
        window.scrollTo(0, document.body.scrollHeight);
        await new Promise(resolve => setTimeout(resolve, 800));
        return Array.from(document.querySelectorAll('article[data-post-id]')).map(a => ({
            id: a.getAttribute('data-post-id'),
            text: (a.querySelector('.body')?.textContent || '').trim(),
            posted_at: a.querySelector('time')?.getAttribute('datetime') || null,
        }));
    }""",
    result_model=list[dict[str, Any]],
    timeout=15.0,
)
