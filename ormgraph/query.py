"""Query builder and operation pipeline.

A Query targets one model. Builder methods return a new Query; the ones that
attach an operation (insert, update, patch, delete, relate, unrelate,
insert_graph, insert_graph_and_fetch) run the operation's ``call`` right
away, so invalid input fails at attachment time. Nothing touches the database
until ``execute()`` (or ``all()``, ``first()``, iteration).

A Query started from an instance (``instance.related_query(name)``) works on
the rows related to that instance: reads are restricted to them and writes go
through the relation's operations.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from .errors import QueryBuildError
from .expression import RelationExpression
from .operations.base import OperationState, QueryOperation
from .operations.delete import DeleteOperation
from .operations.eager import EagerFetchOperation
from .operations.insert import InsertOperation
from .operations.insert_graph import InsertGraphOperation
from .operations.update import UpdateOperation
from .statement import (
    ColumnRef,
    Compare,
    Condition,
    In,
    IsNull,
    Join,
    OrderClause,
    Raw,
    SelectStatement,
    Statement,
    composite_equals,
    qualify,
)
from .utils.composite_key import normalize_ids

logger = logging.getLogger(__name__)

# Django-style lookup -> SQL operator for Query.where(**kwargs).
# "in" and "isnull" build their own conditions.
_WHERE_LOOKUP_MAP: dict[str, Optional[str]] = {
    "exact": "=",
    "lt": "<",
    "lte": "<=",
    "gt": ">",
    "gte": ">=",
    "like": "LIKE",
    "in": None,
    "isnull": None,
}


class Query(BaseModel):
    """Fluent query over a Model, executed as a pipeline of operations."""

    model_config = {"arbitrary_types_allowed": True}

    model: Any
    """The Model subclass this query targets."""
    relation: Any = None
    """Relation the query goes through (related queries and eager branches)."""
    owner: Any = None
    """Instance a related query was started from."""

    conditions: list[Condition] = Field(default_factory=list)
    joins: list[Join] = Field(default_factory=list)
    selections: list[str] = Field(default_factory=list)
    order: list[OrderClause] = Field(default_factory=list)
    limit_value: Optional[int] = None
    offset_value: Optional[int] = None
    distinct: bool = False

    operations: list[QueryOperation] = Field(default_factory=list)
    write_operation: Optional[str] = None
    """Name of the write operation attached, even if it dropped itself."""
    resolved: Optional[tuple[Any]] = None
    """When set, the query resolves to resolved[0] without running a SELECT or write."""
    single: bool = False

    eager_expression: Optional[RelationExpression] = None
    allowed_eager: Optional[RelationExpression] = None
    allowed_insert: Optional[RelationExpression] = None

    def clone_query_with(self, **changes) -> Query:
        """Return a new Query with the same state except for the given overrides."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        for name in ("conditions", "joins", "selections", "order", "operations"):
            data[name] = list(data[name])
        for key, value in changes.items():
            if key not in data:
                raise QueryBuildError(f"Query has no attribute `{key}`")
            data[key] = value
        return type(self)(**data)

    @property
    def connection(self):
        return self.model.get_connection()

    def _qualify(self, column: str) -> str:
        return qualify(self.model.get_table_name(), (column,))[0]

    # filtering

    def _lookup_condition(self, key: str, value: Any) -> Condition:
        column, _, lookup = key.rpartition("__")
        if not column or lookup not in _WHERE_LOOKUP_MAP:
            column, lookup = key, "exact"
        column = self._qualify(column)
        if lookup == "in":
            return In(columns=(column,), ids=[(item,) for item in value])
        if lookup == "isnull":
            return IsNull(column=column, negated=not value)
        return Compare(column=column, operator=_WHERE_LOOKUP_MAP[lookup], value=value)

    def where(self, *conditions: Condition | str, **lookups: Any) -> Query:
        """Add conditions, ANDed together.

        Examples:
            where(Compare(column="person.age", operator=">", value=18))
            where("person.name LIKE ?")  # raw SQL, no parameter
            where(name="Jennifer", age__gte=18, parent_id__isnull=True)
        """
        added = []
        for condition in conditions:
            if isinstance(condition, str):
                condition = Raw(text=condition)
            if not isinstance(condition, Condition):
                raise QueryBuildError(f"where() expects conditions or SQL strings, got {type(condition).__name__}")
            added.append(condition)
        added.extend(self._lookup_condition(key, value) for key, value in lookups.items())
        return self.clone_query_with(conditions=self.conditions + added)

    def where_composite(self, columns: str | Sequence[str], values: Any) -> Query:
        """Filter on a (composite) key: ``columns[i] = values[i]`` for every i."""
        columns = (columns,) if isinstance(columns, str) else tuple(columns)
        values = normalize_ids(values, columns, array_output=False)
        full_columns = tuple(self._qualify(column) for column in columns)
        return self.clone_query_with(conditions=self.conditions + composite_equals(full_columns, values))

    def where_in_composite(self, columns: str | Sequence[str], ids: Any) -> Query:
        """Filter on (composite) key membership in ids, or in the rows selected by another Query."""
        columns = (columns,) if isinstance(columns, str) else tuple(columns)
        full_columns = tuple(self._qualify(column) for column in columns)
        if isinstance(ids, Query):
            condition = In(columns=full_columns, subquery=ids.build_statement())
        else:
            condition = In(columns=full_columns, ids=normalize_ids(ids, columns))
        return self.clone_query_with(conditions=self.conditions + [condition])

    def where_ref(self, left: str, right: str, operator: str = "=") -> Query:
        """Compare two columns (e.g. of a joined table)."""
        condition = ColumnRef(left=self._qualify(left), right=right, operator=operator)
        return self.clone_query_with(conditions=self.conditions + [condition])

    def join(self, table: str, on: dict[str, str] | Iterable[tuple[str, str]],
             alias: Optional[str] = None, kind: str = "INNER") -> Query:
        pairs = list(on.items()) if isinstance(on, dict) else list(on)
        return self.clone_query_with(joins=self.joins + [Join(table=table, alias=alias, on=pairs, kind=kind)])

    def select(self, *columns: str) -> Query:
        return self.clone_query_with(selections=self.selections + [self._qualify(column) for column in columns])

    def order_by(self, *columns: str) -> Query:
        """Add ORDER BY items; a leading ``-`` sorts descending (e.g. ``"-age"``)."""
        order = [
            OrderClause(column=self._qualify(column.lstrip("-")), descending=column.startswith("-"))
            for column in columns
        ]
        return self.clone_query_with(order=self.order + order)

    def limit(self, limit: int) -> Query:
        return self.clone_query_with(limit_value=limit)

    def offset(self, offset: int) -> Query:
        return self.clone_query_with(offset_value=offset)

    def modify(self, modifier: Callable[..., Any] | str, *args: Any) -> Query:
        """Apply modifier(query, *args); a name is looked up in the model's NAMED_FILTERS."""
        if isinstance(modifier, str):
            name = modifier
            modifier = self.model.NAMED_FILTERS.get(name)
            if modifier is None:
                raise QueryBuildError(f"{self.model.__name__} has no named filter `{name}`")
        result = modifier(self, *args)
        return self if result is None else result

    def resolve(self, value: Any) -> Query:
        """Make the query resolve to value without touching the database."""
        return self.clone_query_with(resolved=(value,))

    # eager loading

    def eager(self, expression: str | RelationExpression, filters: Optional[dict[str, Callable]] = None) -> Query:
        """Load the relations of expression onto the results.

        Args:
            expression: e.g. ``"pets"``, ``"[pets(onlyDogs), movies]"``, ``"children^"``.
            filters: filter name -> callable(query) -> query, for the names used in expression.
        """
        expression = RelationExpression.parse(expression)
        if filters:
            expression.filters.update(filters)
        if self.eager_expression is not None:
            expression = self.eager_expression.merge(expression)
        return self.clone_query_with(eager_expression=expression)

    def modify_eager(self, path: str, filter_: Callable[..., Any]) -> Query:
        """Apply filter_ to the eager query of the relation at dotted path."""
        expression = (self.eager_expression or RelationExpression()).clone()
        expression.add_anonymous_filter_at_path(path, filter_)
        return self.clone_query_with(eager_expression=expression)

    def allow_eager(self, expression: str | RelationExpression) -> Query:
        """Reject eager expressions that are not a subset of expression."""
        return self.clone_query_with(allowed_eager=RelationExpression.parse(expression))

    def allow_insert(self, expression: str | RelationExpression) -> Query:
        """Reject insert graphs whose relations are not a subset of expression."""
        return self.clone_query_with(allowed_insert=RelationExpression.parse(expression))

    # operations

    def _add_operation(self, operation: QueryOperation, args: tuple[Any, ...] = ()) -> Query:
        if operation.is_write and self.write_operation is not None:
            raise QueryBuildError(
                f"cannot add `{operation.name}`: the query already has the write operation `{self.write_operation}`"
            )
        query = self.clone_query_with()
        if operation.is_write:
            query.write_operation = operation.name
        if operation.call(query, args):
            operation.transition(OperationState.CALLED)
            query.operations = query.operations + [operation]
        elif operation.is_write:
            logger.debug("%s on %s dropped: nothing to do", operation.name, self.model.__name__)
            query.resolved = (operation.vetoed_result(),)
        return query

    def for_owners(self, relation, owners: Sequence[Any]) -> Query:
        """Restrict to the rows related to owners through relation, attaching them on the owners."""
        query = relation.apply_modify(self.clone_query_with(relation=relation))
        return query._add_operation(relation.find(owners))

    def _relation_operation(self, action: str) -> QueryOperation:
        return getattr(self.relation, action)(self.owner)

    def _on_owner(self) -> bool:
        return self.relation is not None and self.owner is not None

    def insert(self, data: Any) -> Query:
        """Insert a model (dict or instance) or a list of them; resolves to the inserted instance(s)."""
        operation = self._relation_operation("insert") if self._on_owner() else InsertOperation(name="insert")
        return self._add_operation(operation, (data,))

    def update(self, data: Any) -> Query:
        """Update matched rows with data validated as a whole model; resolves to the row count."""
        operation = self._relation_operation("update") if self._on_owner() else UpdateOperation(name="update")
        return self._add_operation(operation, (data,))

    def patch(self, data: Any) -> Query:
        """Update matched rows with data validated key by key; resolves to the row count."""
        if self._on_owner():
            operation = self._relation_operation("patch")
        else:
            operation = UpdateOperation(name="patch", patch=True)
        return self._add_operation(operation, (data,))

    def delete(self) -> Query:
        operation = self._relation_operation("delete") if self._on_owner() else DeleteOperation(name="delete")
        return self._add_operation(operation)

    def relate(self, ids: Any) -> Query:
        """Link existing rows (ids, mappings or instances) to the owner of a related query."""
        if not self._on_owner():
            raise QueryBuildError("relate() can only be used on a related query (instance.related_query(name))")
        return self._add_operation(self._relation_operation("relate"), (ids,))

    def unrelate(self) -> Query:
        """Unlink the matched related rows from the owner of a related query."""
        if not self._on_owner():
            raise QueryBuildError("unrelate() can only be used on a related query (instance.related_query(name))")
        return self._add_operation(self._relation_operation("unrelate"))

    def insert_graph(self, graph: Any) -> Query:
        """Insert a nested graph of models and relations; resolves to the root instance(s)."""
        return self._add_operation(InsertGraphOperation(name="insert_graph"), (graph,))

    def insert_graph_and_fetch(self, graph: Any) -> Query:
        """Like insert_graph, then fetch the roots again with the graph's relations loaded."""
        return self._add_operation(InsertGraphOperation(name="insert_graph_and_fetch", fetch=True), (graph,))

    def find_by_id(self, id_: Any) -> Query:
        """Restrict to the row with identity id_; resolves to an instance or None."""
        query = self.where_composite(self.model.get_id_columns(), id_)
        return query.clone_query_with(single=True)

    # execution

    def build_statement(self) -> SelectStatement:
        """SELECT statement for this query's filters, before operations adjust it."""
        return SelectStatement(
            table=self.model.get_table_name(),
            columns=list(self.selections),
            joins=list(self.joins),
            where=list(self.conditions),
            order_by=list(self.order),
            limit=self.limit_value,
            offset=self.offset_value,
            distinct=self.distinct,
        )

    def _prepare(self) -> Query:
        query = self
        if self._on_owner() and self.write_operation is None:
            query = query.for_owners(self.relation, [self.owner])
            if self.relation.is_one_to_one:
                query = query.clone_query_with(single=True)
        if query.eager_expression is not None:
            query = query._add_operation(EagerFetchOperation(name="eager"), (query.eager_expression,))
        return query.clone_query_with(operations=[operation.fork() for operation in query.operations])

    def execute(self) -> Any:
        """Run the pipeline and return its result.

        Reads resolve to a list of instances (or one instance / None for
        find_by_id and to-one related queries); writes to what their operation
        returns. Writes run inside a transaction of the model's connection.
        """
        query = self._prepare()
        if any(operation.is_write for operation in query.operations):
            with query.connection.transaction():
                return query._run()
        return query._run()

    def _run_executor(self, executor: Any) -> Any:
        if isinstance(executor, Statement):
            return self.connection.run(executor)
        if isinstance(executor, Query):
            return executor.execute()
        return executor

    def _run(self) -> Any:
        operations = self.operations
        writer = next((operation for operation in operations if operation.is_write), None)
        try:
            for operation in operations:
                operation.on_before(self)
            for operation in operations:
                operation.transition(OperationState.BUILDING)
            resolved = self.resolved
            statement = self.build_statement()
            if resolved is None and writer is None:
                for operation in operations:
                    if operation.on_build(self, statement) is False:
                        resolved = ([],)
                        break
            for operation in operations:
                operation.transition(OperationState.EXECUTING)
            if resolved is not None:
                result = resolved[0]
            elif writer is not None:
                result = self._run_executor(writer.query_executor(self))
            else:
                result = [self.model.from_database_row(row) for row in self.connection.run(statement)]
            for operation in operations:
                result = operation.on_after(self, result)
                if isinstance(result, Query):
                    result = result.execute()
            for operation in operations:
                operation.transition(OperationState.COMPLETED)
        except Exception:
            for operation in operations:
                if operation.state not in (OperationState.COMPLETED, OperationState.FAILED):
                    operation.transition(OperationState.FAILED)
            raise
        if self.single and writer is None and isinstance(result, list):
            return result[0] if result else None
        return result

    def all(self) -> list[Any]:
        """Execute and return the matched instances as a list."""
        result = self.execute()
        if result is None:
            return []
        return result if isinstance(result, list) else [result]

    def first(self) -> Any:
        """Return the first matched instance, or None."""
        result = self.limit(1).execute()
        if isinstance(result, list):
            return result[0] if result else None
        return result

    def __iter__(self):
        yield from self.all()

