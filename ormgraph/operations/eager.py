"""Eager loading: one query per relation edge per level, for all owners at once.

For owners ``R`` of a model and an expression ``E``, every relation named by
a child of ``E`` (or matched by ``*``) gets one related query restricted to
the distinct owner keys of ``R``. The child expression is attached to that
query, so nesting is handled by the related query's own eager operation.
Sibling queries run through ``run_all``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from pydantic import Field

from ..errors import RelationExpressionError
from ..expression import RelationExpression, WILDCARD
from ..utils.concurrency import run_all
from .base import QueryOperation

logger = logging.getLogger(__name__)


def _relation_names(model: type, expression: RelationExpression) -> list[str]:
    relations = model.get_relations()
    names = [name for name in expression.children if name != WILDCARD]
    if WILDCARD in expression.children:
        names = list(relations) + names
    if expression.recursive and expression.name in relations:
        names.append(expression.name)
    for name in names:
        if name not in relations:
            raise RelationExpressionError(f'unknown relation "{name}" in an eager expression', key="eager")
    return list(dict.fromkeys(names))


def _branch_query(relation, owners: Sequence[Any], child: RelationExpression):
    related_model = relation.related_model
    query = related_model.query().for_owners(relation, owners)
    for filter_name in child.args:
        filter_ = child.filters.get(filter_name) or related_model.NAMED_FILTERS.get(filter_name)
        if filter_ is None:
            raise RelationExpressionError(
                f'could not find filter "{filter_name}" for relation "{relation.name}"', key="eager"
            )
        query = query.modify(filter_)
    if child.children or child.recursive:
        query = query.eager(child)
    return query


def fetch_relations(model: type, owners: Sequence[Any], expression: RelationExpression) -> None:
    """Load the relations of expression onto owners (instances of model), in place.

    Every relation and filter name is checked before the first query runs.

    Raises:
        RelationExpressionError: for an unknown relation or filter name.
    """
    owners = list(owners)
    if not owners:
        return
    queries = []
    for name in _relation_names(model, expression):
        child = expression.child_expression(name)
        if child is None:
            continue
        queries.append(_branch_query(model.get_relation(name), owners, child))
    if not queries:
        return
    logger.debug(
        "Eager loading %s for %d %s", ", ".join(q.relation.name for q in queries), len(owners), model.__name__
    )
    run_all([query.execute for query in queries], model.get_connection())


def load_related(model: type, models, expression, filters: Optional[dict] = None):
    """Eager load expression onto already fetched models; returns models unchanged."""
    expression = RelationExpression.parse(expression)
    if filters:
        expression.filters.update(filters)
    items = models if isinstance(models, (list, tuple)) else [models]
    fetch_relations(model, [item for item in items if isinstance(item, model)], expression)
    return models


class EagerFetchOperation(QueryOperation):
    """Loads ``expression`` onto the rows a query resolved to."""

    expression: RelationExpression = Field(default_factory=RelationExpression)

    def call(self, query, args: tuple[Any, ...]) -> bool:
        super().call(query, args)
        self.expression = RelationExpression.parse(args[0])
        return not self.expression.is_empty or self.expression.recursive

    def on_before(self, query) -> None:
        allowed = query.allowed_eager
        if allowed is not None and not self.expression.is_subset_of(allowed):
            raise RelationExpressionError(
                f'eager expression not allowed: "{self.expression}" is not a subset of "{allowed}"', key="eager"
            )

    def on_after(self, query, result: Any) -> Any:
        items = result if isinstance(result, list) else [result]
        if not items or not all(isinstance(item, query.model) for item in items):
            return result
        fetch_relations(query.model, items, self.expression)
        return result
