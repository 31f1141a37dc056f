from typing import Any, ClassVar

from ..statement import DeleteStatement
from .base import QueryOperation


class DeleteOperation(QueryOperation):
    """Delete every row matched by the query; resolves to the number of rows."""

    is_write: ClassVar[bool] = True

    def query_executor(self, query) -> Any:
        return DeleteStatement(table=query.model.get_table_name(), where=list(query.conditions))
