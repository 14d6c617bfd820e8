"""Sample data for the Bookshelf demo site."""

from __future__ import annotations

from typing import Any

USERNAME = "reader42"

PROFILE: dict[str, Any] = {
    "username": USERNAME,
    "display_name": "Avid Reader",
    "email": "reader42@bookshelf.example",
    "joined": "2019-04-02",
}

# (title, author, shelf)
_SHELF = [
    ("Middlemarch", "George Eliot", "read"),
    ("Moby-Dick", "Herman Melville", "read"),
    ("Pride and Prejudice", "Jane Austen", "read"),
    ("Bleak House", "Charles Dickens", "reading"),
    ("The Brothers Karamazov", "Fyodor Dostoevsky", "to-read"),
    ("Anna Karenina", "Leo Tolstoy", "read"),
    ("Great Expectations", "Charles Dickens", "read"),
    ("Jane Eyre", "Charlotte Bronte", "read"),
    ("Wuthering Heights", "Emily Bronte", "to-read"),
    ("The Count of Monte Cristo", "Alexandre Dumas", "read"),
    ("Don Quixote", "Miguel de Cervantes", "reading"),
    ("Madame Bovary", "Gustave Flaubert", "read"),
    ("Frankenstein", "Mary Shelley", "read"),
    ("Dracula", "Bram Stoker", "to-read"),
    ("The Odyssey", "Homer", "read"),
    ("War and Peace", "Leo Tolstoy", "to-read"),
    ("Emma", "Jane Austen", "read"),
    ("Little Women", "Louisa May Alcott", "read"),
    ("The Scarlet Letter", "Nathaniel Hawthorne", "to-read"),
    ("Persuasion", "Jane Austen", "read"),
    ("North and South", "Elizabeth Gaskell", "reading"),
    ("The Moonstone", "Wilkie Collins", "read"),
    ("Vanity Fair", "William Makepeace Thackeray", "to-read"),
]


def make_books() -> list[dict[str, Any]]:
    return [
        {"id": f"b{index:03d}", "title": title, "author": author, "shelf": shelf}
        for index, (title, author, shelf) in enumerate(_SHELF, start=1)
    ]


def make_reviews(books: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Reviews for every book on the "read" shelf."""
    return {
        book["id"]: {
            "rating": 3 + len(book["title"]) % 3,
            "text": f"Notes on {book['title']}.",
        }
        for book in books
        if book["shelf"] == "read"
    }


def make_feed(count: int = 18) -> list[dict[str, Any]]:
    return [
        {
            "id": f"p{index:03d}",
            "text": f"Update #{index} from {USERNAME}",
            "posted_at": f"2026-03-{(index % 28) + 1:02d}T12:00:00Z",
        }
        for index in range(1, count + 1)
    ]
