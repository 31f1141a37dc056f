from __future__ import annotations

from typing import Any, ClassVar

from pydantic import PrivateAttr

from ..statement import UpdateStatement
from .base import QueryOperation


class UpdateOperation(QueryOperation):
    """Set columns on every row matched by the query; resolves to the number of rows.

    With ``patch`` only the given keys are validated, so required columns may
    be left out. Without it the data must validate as a whole model.
    """

    is_write: ClassVar[bool] = True

    patch: bool = False

    _values: dict[str, Any] = PrivateAttr(default_factory=dict)

    def call(self, query, args: tuple[Any, ...]) -> bool:
        super().call(query, args)
        data = args[0] if args else {}
        instance = query.model.from_json(data, patch=self.patch)
        self._values = instance.database_json()
        return bool(self._values)

    @property
    def values(self) -> dict[str, Any]:
        return self._values

    def vetoed_result(self) -> Any:
        return 0

    def query_executor(self, query) -> Any:
        return UpdateStatement(
            table=query.model.get_table_name(),
            values_to_set=dict(self._values),
            where=list(query.conditions),
        )
