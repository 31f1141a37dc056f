from __future__ import annotations

from typing import Any, ClassVar, Optional

from pydantic import PrivateAttr

from ..errors import RelationExpressionError
from ..expression import RelationExpression
from ..graph import GraphInserter
from ..utils.composite_key import prop_key
from .base import QueryOperation


class InsertGraphOperation(QueryOperation):
    """Insert a nested graph; with ``fetch`` the roots are read back with the graph's relations."""

    is_write: ClassVar[bool] = True

    fetch: bool = False

    _many: bool = PrivateAttr(default=False)
    _inserter: Optional[GraphInserter] = PrivateAttr(default=None)

    def call(self, query, args: tuple[Any, ...]) -> bool:
        super().call(query, args)
        graph = args[0] if args else None
        self._many = isinstance(graph, (list, tuple))
        return bool(graph) if self._many else graph is not None

    def on_before(self, query) -> None:
        graph = self.args[0]
        if query.allowed_insert is not None:
            expression = RelationExpression.from_graph(query.model, graph)
            if not expression.is_subset_of(query.allowed_insert):
                raise RelationExpressionError(
                    f'insert graph not allowed: "{expression}" is not a subset of "{query.allowed_insert}"',
                    key="graph",
                )
        self._inserter = GraphInserter(query.model, graph, relation=query.relation, owner=query.owner).build()

    def query_executor(self, query) -> Any:
        return self._inserter.execute(query.connection)

    def on_after(self, query, result: Any) -> Any:
        roots = list(result)
        if self.fetch and roots:
            model = query.model
            expression = RelationExpression.from_graph(model, self.args[0])
            fetched = model.query().where_in_composite(
                model.get_id_columns(), [root.id_values() for root in roots]
            ).eager(expression).execute()
            by_id = {prop_key(row.id_values()): row for row in fetched}
            roots = [by_id.get(prop_key(root.id_values()), root) for root in roots]
        if self._many:
            return roots
        return roots[0] if roots else None
