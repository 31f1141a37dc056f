"""Query operations: the hooks a Query runs, in attachment order, when executed.

Lifecycle of an operation attached to a query::

    PENDING -> CALLED -> BUILDING -> EXECUTING -> COMPLETED
                                              \\-> FAILED (from any state)

``call`` runs when the operation is attached and may drop it by returning
False. ``on_before``, ``on_build``, ``query_executor`` and ``on_after`` run
while the query executes.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from ..errors import QueryBuildError

logger = logging.getLogger(__name__)


class OperationState(str, Enum):
    PENDING = "pending"
    CALLED = "called"
    BUILDING = "building"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[OperationState, frozenset[OperationState]] = {
    OperationState.PENDING: frozenset({OperationState.CALLED, OperationState.FAILED}),
    OperationState.CALLED: frozenset({OperationState.BUILDING, OperationState.FAILED}),
    OperationState.BUILDING: frozenset({OperationState.EXECUTING, OperationState.FAILED}),
    OperationState.EXECUTING: frozenset({OperationState.COMPLETED, OperationState.FAILED}),
    OperationState.COMPLETED: frozenset(),
    OperationState.FAILED: frozenset(),
}


class QueryOperation(BaseModel):
    """Base class for query operations.

    Subclasses override the hooks they need; the defaults do nothing.
    """

    model_config = {"arbitrary_types_allowed": True}

    is_write: ClassVar[bool] = False

    name: str
    options: dict[str, Any] = Field(default_factory=dict)
    state: OperationState = OperationState.PENDING
    args: tuple[Any, ...] = ()

    def transition(self, state: OperationState) -> None:
        """Move to state.

        Raises:
            QueryBuildError: if the lifecycle does not allow it.
        """
        if state not in _TRANSITIONS[self.state]:
            raise QueryBuildError(f"operation `{self.name}` cannot go from {self.state.value} to {state.value}")
        self.state = state

    def fork(self) -> QueryOperation:
        """Copy used by one execution, so the attached operation can run again."""
        return self.model_copy()

    # hooks

    def call(self, query, args: tuple[Any, ...]) -> bool:
        """Capture args when attached; False drops the operation."""
        self.args = args
        return True

    def on_before(self, query) -> None:
        """Validation run before any statement."""

    def on_build(self, query, statement) -> Any:
        """Adjust the SELECT statement; returning False resolves the query to []."""
        return None

    def query_executor(self, query) -> Any:
        """Write operations return the Statement (or Query) to run."""
        return None

    def on_after(self, query, result: Any) -> Any:
        return result

    def vetoed_result(self) -> Any:
        """Value a dropped write operation resolves its query to."""
        return self.args[0] if self.args else None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.state.value}>"
