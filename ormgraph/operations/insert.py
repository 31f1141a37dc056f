from __future__ import annotations

from typing import Any, ClassVar

from pydantic import PrivateAttr

from ..statement import InsertStatement
from .base import QueryOperation


class InsertOperation(QueryOperation):
    """Insert one model (dict or instance) or a list of them.

    Resolves to the inserted instance(s), identity columns filled in.
    """

    is_write: ClassVar[bool] = True

    _models: list[Any] = PrivateAttr(default_factory=list)
    _many: bool = PrivateAttr(default=False)

    def call(self, query, args: tuple[Any, ...]) -> bool:
        super().call(query, args)
        data = args[0] if args else {}
        self._many = isinstance(data, (list, tuple))
        items = list(data) if self._many else [data]
        self._models = [query.model.from_json(item) for item in items]
        return bool(self._models)

    @property
    def models(self) -> list[Any]:
        return self._models

    def vetoed_result(self) -> Any:
        return []

    def query_executor(self, query) -> Any:
        model = query.model
        return InsertStatement(
            table=model.get_table_name(),
            rows=[instance.database_json() for instance in self._models],
            returning=model.get_id_columns(),
        )

    def on_after(self, query, result: Any) -> Any:
        for instance, identity in zip(self._models, result or []):
            instance.set_values({column: value for column, value in identity.items() if value is not None})
        return self.result()

    def result(self) -> Any:
        if self._many:
            return list(self._models)
        return self._models[0]
