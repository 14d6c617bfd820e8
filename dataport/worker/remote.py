"""Typed remote operations executed inside the browser page.

A RemoteOperation is a named, closed unit of browser-side work: its script
is fixed when the operation is defined, its parameters are validated and
passed as a JSON argument, and its result is validated before it reaches
Python code. No caller ever builds script source from runtime values, so
there is nothing to escape and nothing to inject.

Example::

    class PageParams(BaseModel):
        page: int

    class RepoPage(BaseModel):
        items: list[dict[str, Any]]
        has_next: bool = False

    LIST_REPOS = RemoteOperation(
        name="list_repos",
        script="async ({page}) => { ... return {items, has_next}; }",
        params_model=PageParams,
        result_model=RepoPage,
    )

    page = await capabilities.invoke(LIST_REPOS, PageParams(page=2))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from dataport.common.exceptions import RemoteOperationError

P = TypeVar("P", bound=BaseModel)
R = TypeVar("R")


@dataclass(frozen=True)
class RemoteOperation(Generic[P, R]):
    """Definition of one browser-side operation.

    Attributes:
        name: Unique operation name, used in logs and by test doubles.
        script: JavaScript function expression taking one argument.
        result_model: Type the raw result is validated against (a pydantic
            model or any type pydantic can adapt, such as ``list[dict]``).
        params_model: Pydantic model for the argument, or None for
            operations that take no parameters.
        timeout: Per-call timeout in seconds; None disables it.
        concurrent: True for same-page background fetches that may run
            alongside each other. Operations that touch page state are
            serialized with navigation.
    """

    name: str
    script: str
    result_model: Any
    params_model: type[P] | None = None
    timeout: float | None = 30.0
    concurrent: bool = False

    def prepare(self, params: P | dict[str, Any] | None) -> dict[str, Any] | None:
        """Validate parameters and convert them to the JSON argument.

        Raises:
            RemoteOperationError: If parameters are missing or invalid.
        """
        if self.params_model is None:
            if params is not None:
                raise RemoteOperationError(
                    self.name, "operation takes no parameters"
                )
            return None

        if params is None:
            raise RemoteOperationError(self.name, "parameters are required")

        try:
            model = (
                params
                if isinstance(params, self.params_model)
                else self.params_model.model_validate(params)
            )
        except ValidationError as e:
            raise RemoteOperationError(
                self.name, f"invalid parameters: {e}"
            ) from e

        return model.model_dump(mode="json")

    def parse_result(self, raw: Any) -> R:
        """Validate the raw value returned by the browser.

        Raises:
            RemoteOperationError: If the result does not match result_model.
        """
        try:
            return TypeAdapter(self.result_model).validate_python(raw)
        except ValidationError as e:
            raise RemoteOperationError(
                self.name, f"unexpected result shape: {e}"
            ) from e
