"""Pydantic models for Bookshelf remote operation parameters and results."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class BooksPageParams(BaseModel):
    page: int = Field(ge=1)
    per_page: int = Field(default=10, ge=1, le=100)


class BooksPage(BaseModel):
    """One page of the shelf API."""

    items: list[dict[str, Any]]
    has_next: bool = False


class BookRef(BaseModel):
    book_id: str


class Review(BaseModel):
    book_id: str
    rating: int | None = None
    text: str = ""


class Profile(BaseModel):
    username: str
    display_name: str = ""
    email: str | None = None
    joined: str | None = None
