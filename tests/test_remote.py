"""Tests for typed remote operations."""

import dataclasses
from typing import Any

import pytest
from pydantic import BaseModel

from dataport.common.exceptions import RemoteOperationError, TransientException
from dataport.demo import operations as ops
from dataport.demo.models import BooksPage, BooksPageParams
from dataport.worker.remote import RemoteOperation


class TestPrepare:
    """Tests for parameter validation."""

    def test_model_params(self) -> None:
        """A params model shall be dumped to the JSON argument."""
        arg = ops.FETCH_BOOKS_PAGE.prepare(BooksPageParams(page=3, per_page=20))

        assert arg == {"page": 3, "per_page": 20}

    def test_dict_params_are_validated(self) -> None:
        """Plain dict params shall be validated and defaulted by the model."""
        assert ops.FETCH_BOOKS_PAGE.prepare({"page": 2}) == {"page": 2, "per_page": 10}

    def test_invalid_params(self) -> None:
        """Invalid params shall raise RemoteOperationError before any script runs."""
        with pytest.raises(RemoteOperationError, match="invalid parameters"):
            ops.FETCH_BOOKS_PAGE.prepare({"page": 0})

    def test_missing_params(self) -> None:
        """An operation with a params model shall require params."""
        with pytest.raises(RemoteOperationError, match="parameters are required"):
            ops.FETCH_BOOKS_PAGE.prepare(None)

    def test_unexpected_params(self) -> None:
        """An operation without a params model shall refuse params."""
        with pytest.raises(RemoteOperationError, match="takes no parameters"):
            ops.IS_LOGGED_IN.prepare({"anything": 1})

        assert ops.IS_LOGGED_IN.prepare(None) is None

    def test_params_never_reach_the_script(self) -> None:
        """Hostile parameter values shall stay data, never script text."""
        class Query(BaseModel):
            term: str

        op = RemoteOperation(
            name="search",
            script="({term}) => window.search(term)",
            params_model=Query,
            result_model=list[str],
        )

        arg = op.prepare({"term": "'); alert(1); ('"})

        assert arg == {"term": "'); alert(1); ('"}
        assert op.script == "({term}) => window.search(term)"


class TestParseResult:
    """Tests for result validation."""

    def test_model_result(self) -> None:
        """A raw dict shall be validated into the result model."""
        page = ops.FETCH_BOOKS_PAGE.parse_result({"items": [{"id": "b001"}], "has_next": True})

        assert page == BooksPage(items=[{"id": "b001"}], has_next=True)

    def test_plain_type_result(self) -> None:
        """Non-model result types shall be validated too."""
        assert ops.CURRENT_USER.parse_result(None) is None
        assert ops.CURRENT_USER.parse_result("reader42") == "reader42"

    def test_wrong_shape(self) -> None:
        """A result of the wrong shape shall raise a transient RemoteOperationError."""
        with pytest.raises(RemoteOperationError, match="unexpected result shape") as exc_info:
            ops.SCRAPE_BOOKS.parse_result({"not": "a list"})

        assert isinstance(exc_info.value, TransientException)
        assert exc_info.value.operation == "scrape_books"


class TestDefinition:
    """Tests for the operation definition itself."""

    def test_is_frozen(self) -> None:
        """An operation's script shall not be replaceable at runtime."""
        with pytest.raises(dataclasses.FrozenInstanceError):
            ops.IS_LOGGED_IN.script = "() => true"  # type: ignore[misc]

    def test_review_fetches_may_overlap(self) -> None:
        """Background detail fetches shall be marked concurrent; page reads shall not."""
        assert ops.FETCH_REVIEW.concurrent
        assert not ops.SCROLL_FEED.concurrent

    def test_result_model_any(self) -> None:
        op: RemoteOperation[Any, Any] = RemoteOperation(
            name="anything", script="() => 1", result_model=Any
        )

        assert op.parse_result({"x": 1}) == {"x": 1}
