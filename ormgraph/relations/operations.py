"""Operations produced by Relation.find/insert/update/patch/delete/relate/unrelate.

``create_operation`` looks the operation class up in ``_OPERATIONS``, keyed by
(relation kind, action). Writes run on the owner given to the factory: the
instance a related query was started from.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, ClassVar

from pydantic import BaseModel, Field, PrivateAttr

from ..errors import CardinalityError, RelationError
from ..model import Model
from ..operations.base import QueryOperation
from ..operations.delete import DeleteOperation
from ..operations.insert import InsertOperation
from ..operations.update import UpdateOperation
from ..statement import (
    Condition,
    DeleteStatement,
    In,
    InsertStatement,
    Join,
    SelectStatement,
    UpdateStatement,
    composite_equals,
    qualify,
)
from ..utils.composite_key import normalize_ids

logger = logging.getLogger(__name__)

_INNER_ALIAS = "ormgraph_inner"


class _OnRelation(BaseModel):
    model_config = {"arbitrary_types_allowed": True}

    relation: Any
    owner: Any = None

    def _owner_values(self) -> tuple:
        return self.owner.values(self.relation.owner_columns)

    def _owner_identity_filter(self) -> list[Condition]:
        owner_model = type(self.owner)
        return composite_equals(owner_model.get_full_id_columns(), self.owner.id_values())

    def _append_to_owner(self, models: list[Any]) -> None:
        relation = self.relation
        if relation.is_one_to_one:
            relation.attach(self.owner, models[-1] if models else None)
            return
        existing = self.owner._get_value(relation.name)
        relation.attach(self.owner, list(existing or []) + list(models))


# find

class FindOperation(_OnRelation, QueryOperation):
    """Restrict the query to the rows related to ``owners`` and attach them on them."""

    owners: list[Any] = Field(default_factory=list)

    def on_build(self, query, statement: SelectStatement) -> Any:
        keys = self.relation.owner_keys(self.owners)
        if not keys:
            return False
        statement.where.append(In(columns=self.relation.full_related_columns, ids=keys))
        return None

    def on_after(self, query, result: Any) -> Any:
        if isinstance(result, list):
            self.relation.create_relation_prop(self.owners, result)
        return result


class ManyToManyFindOperation(FindOperation):
    """Join through the join table, selecting its owner key as hidden columns."""

    def on_build(self, query, statement: SelectStatement) -> Any:
        relation = self.relation
        keys = relation.owner_keys(self.owners)
        if not keys:
            return False
        statement.joins.append(Join(
            table=relation.join_table,
            on=list(zip(relation.full_join_table_related_columns, relation.full_related_columns)),
        ))
        columns = statement.columns or [f"{statement.source}.*"]
        columns += [
            f"{column} AS {hidden}"
            for column, hidden in zip(relation.full_join_table_owner_columns, relation.hidden_owner_columns)
        ]
        columns += list(qualify(relation.join_table, relation.join_table_extra_columns))
        statement.columns = columns
        statement.where.append(In(columns=relation.full_join_table_owner_columns, ids=keys))
        return None

    def on_after(self, query, result: Any) -> Any:
        result = super().on_after(query, result)
        if isinstance(result, list):
            self.relation.omit_extra_columns(result)
        return result


# insert

class BelongsToOneInsertOperation(_OnRelation, InsertOperation):
    """Insert the related row, then point the owner's foreign key at it."""

    def call(self, query, args: tuple[Any, ...]) -> bool:
        if not super().call(query, args):
            return False
        if len(self.models) > 1:
            raise CardinalityError(
                f"{self.relation.owner_model.__name__}.{self.relation.name}: "
                f"cannot insert {len(self.models)} rows into a to-one relation"
            )
        return True

    def on_after(self, query, result: Any) -> Any:
        result = super().on_after(query, result)
        related = self.models[0]
        foreign_key = dict(zip(self.relation.owner_columns, related.values(self.relation.related_columns)))
        query.connection.run(UpdateStatement(
            table=self.relation.owner_table,
            values_to_set=foreign_key,
            where=self._owner_identity_filter(),
        ))
        self.owner.set_values(foreign_key)
        self.relation.attach(self.owner, related)
        return result


class HasManyInsertOperation(_OnRelation, InsertOperation):
    """Insert related rows with their foreign key preset to the owner's key."""

    def call(self, query, args: tuple[Any, ...]) -> bool:
        if not super().call(query, args):
            return False
        if self.relation.is_one_to_one and len(self.models) > 1:
            raise CardinalityError(
                f"{self.relation.owner_model.__name__}.{self.relation.name}: "
                f"cannot insert {len(self.models)} rows into a to-one relation"
            )
        foreign_key = dict(zip(self.relation.related_columns, self._owner_values()))
        for model in self.models:
            model.set_values(foreign_key)
        return True

    def on_after(self, query, result: Any) -> Any:
        result = super().on_after(query, result)
        self._append_to_owner(self.models)
        return result


class ManyToManyInsertOperation(_OnRelation, InsertOperation):
    """Insert related rows, then one join row per related row."""

    def call(self, query, args: tuple[Any, ...]) -> bool:
        if not super().call(query, args):
            return False
        self.relation.omit_extra_columns(self.models)
        return True

    def on_after(self, query, result: Any) -> Any:
        result = super().on_after(query, result)
        rows = self.relation.create_join_rows(self._owner_values(), self.models)
        query.connection.run(InsertStatement(table=self.relation.join_table, rows=rows))
        self._append_to_owner(self.models)
        return result


# relate

class _RelateOperation(_OnRelation, QueryOperation):
    is_write: ClassVar[bool] = True

    _ids: list[tuple] = PrivateAttr(default_factory=list)

    def _id_columns(self) -> tuple[str, ...]:
        return self.relation.related_columns

    def call(self, query, args: tuple[Any, ...]) -> bool:
        super().call(query, args)
        self._ids = normalize_ids(args[0] if args else [], self._id_columns())
        if self.relation.is_one_to_one and len(self._ids) > 1:
            raise CardinalityError(
                f"{self.relation.owner_model.__name__}.{self.relation.name}: "
                f"cannot relate {len(self._ids)} rows to a to-one relation"
            )
        return bool(self._ids)

    def on_after(self, query, result: Any) -> Any:
        return self.args[0]


class BelongsToOneRelateOperation(_RelateOperation):
    """Point the owner's foreign key at the given related id."""

    def query_executor(self, query) -> Any:
        return UpdateStatement(
            table=self.relation.owner_table,
            values_to_set=dict(zip(self.relation.owner_columns, self._ids[0])),
            where=self._owner_identity_filter(),
        )

    def on_after(self, query, result: Any) -> Any:
        self.owner.set_values(dict(zip(self.relation.owner_columns, self._ids[0])))
        return super().on_after(query, result)


class HasManyRelateOperation(_RelateOperation):
    """Set the related rows' foreign key to the owner's key."""

    def _id_columns(self) -> tuple[str, ...]:
        return self.relation.related_model.get_id_columns()

    def query_executor(self, query) -> Any:
        related_model = self.relation.related_model
        return UpdateStatement(
            table=self.relation.related_table,
            values_to_set=dict(zip(self.relation.related_columns, self._owner_values())),
            where=[In(columns=related_model.get_full_id_columns(), ids=self._ids)],
        )


class ManyToManyRelateOperation(_RelateOperation):
    """Insert join rows; extras are taken from related objects given as input."""

    def query_executor(self, query) -> Any:
        items = self.args[0]
        if not isinstance(items, (list, tuple)):
            items = [items]
        if all(isinstance(item, (Mapping, Model)) for item in items):
            related = list(items)
        else:
            related = [dict(zip(self.relation.related_columns, id_)) for id_ in self._ids]
        rows = self.relation.create_join_rows(self._owner_values(), related)
        return InsertStatement(table=self.relation.join_table, rows=rows)


# unrelate

class _UnrelateOperation(_OnRelation, QueryOperation):
    is_write: ClassVar[bool] = True

    def vetoed_result(self) -> Any:
        return 0


class BelongsToOneUnrelateOperation(_UnrelateOperation):
    def query_executor(self, query) -> Any:
        return UpdateStatement(
            table=self.relation.owner_table,
            values_to_set={column: None for column in self.relation.owner_columns},
            where=self._owner_identity_filter(),
        )

    def on_after(self, query, result: Any) -> Any:
        self.owner.set_values({column: None for column in self.relation.owner_columns})
        self.relation.attach(self.owner, None)
        return result


class HasManyUnrelateOperation(_UnrelateOperation):
    def query_executor(self, query) -> Any:
        relation = self.relation
        return UpdateStatement(
            table=relation.related_table,
            values_to_set={column: None for column in relation.related_columns},
            where=composite_equals(relation.full_related_columns, self._owner_values()) + list(query.conditions),
        )


class ManyToManyUnrelateOperation(_UnrelateOperation):
    """Delete join rows of the owner, restricted to related rows matching the query."""

    def query_executor(self, query) -> Any:
        relation = self.relation
        owner_filter = composite_equals(relation.full_join_table_owner_columns, self._owner_values())
        if not query.conditions:
            return DeleteStatement(table=relation.join_table, where=owner_filter)
        if query.connection.dialect.SUPPORTS_MODIFY_SUBQUERY:
            subquery = SelectStatement(
                table=relation.related_table,
                columns=list(relation.full_related_columns),
                where=list(query.conditions),
            )
            return DeleteStatement(
                table=relation.join_table,
                where=owner_filter + [In(columns=relation.full_join_table_related_columns, subquery=subquery)],
            )
        rowid = query.connection.dialect.ROWID_COLUMN
        inner_owner_columns = qualify(_INNER_ALIAS, relation.join_table_owner_columns)
        subquery = SelectStatement(
            table=relation.join_table,
            alias=_INNER_ALIAS,
            columns=[f"{_INNER_ALIAS}.{rowid}"],
            joins=[Join(
                table=relation.related_table,
                on=list(zip(relation.full_related_columns, qualify(_INNER_ALIAS, relation.join_table_related_columns))),
            )],
            where=composite_equals(inner_owner_columns, self._owner_values()) + list(query.conditions),
        )
        return DeleteStatement(
            table=relation.join_table,
            where=[In(columns=(f"{relation.join_table}.{rowid}",), subquery=subquery)],
        )


# update, patch & delete of related rows

class _ForeignKeyFilter(_OnRelation):
    def _related_rows_filter(self, query) -> list[Condition]:
        return composite_equals(self.relation.full_related_columns, self._owner_values()) + list(query.conditions)


class _JoinTableFilter(_OnRelation):
    def _related_rows_filter(self, query) -> list[Condition]:
        relation = self.relation
        dialect = query.connection.dialect
        if dialect.SUPPORTS_MODIFY_SUBQUERY:
            subquery = SelectStatement(
                table=relation.join_table,
                columns=list(relation.full_join_table_related_columns),
                where=composite_equals(relation.full_join_table_owner_columns, self._owner_values()),
            )
            return [In(columns=relation.full_related_columns, subquery=subquery)] + list(query.conditions)
        rowid = dialect.ROWID_COLUMN
        subquery = SelectStatement(
            table=relation.related_table,
            alias=_INNER_ALIAS,
            columns=[f"{_INNER_ALIAS}.{rowid}"],
            joins=[Join(
                table=relation.join_table,
                on=list(zip(relation.full_join_table_related_columns, qualify(_INNER_ALIAS, relation.related_columns))),
            )],
            where=composite_equals(relation.full_join_table_owner_columns, self._owner_values()),
        )
        return [In(columns=(f"{relation.related_table}.{rowid}",), subquery=subquery)] + list(query.conditions)


class ForeignKeyUpdateOperation(_ForeignKeyFilter, UpdateOperation):
    def query_executor(self, query) -> Any:
        statement = super().query_executor(query)
        statement.where = self._related_rows_filter(query)
        return statement


class JoinTableUpdateOperation(_JoinTableFilter, UpdateOperation):
    def query_executor(self, query) -> Any:
        statement = super().query_executor(query)
        statement.where = self._related_rows_filter(query)
        return statement


class ForeignKeyDeleteOperation(_ForeignKeyFilter, DeleteOperation):
    def query_executor(self, query) -> Any:
        return DeleteStatement(table=self.relation.related_table, where=self._related_rows_filter(query))


class JoinTableDeleteOperation(_JoinTableFilter, DeleteOperation):
    def query_executor(self, query) -> Any:
        return DeleteStatement(table=self.relation.related_table, where=self._related_rows_filter(query))


def _row_operations(kind: str, find, insert, relate, unrelate, update, delete) -> dict[tuple[str, str], type]:
    return {
        (kind, "find"): find,
        (kind, "insert"): insert,
        (kind, "relate"): relate,
        (kind, "unrelate"): unrelate,
        (kind, "update"): update,
        (kind, "patch"): update,
        (kind, "delete"): delete,
    }


_OPERATIONS: dict[tuple[str, str], type[QueryOperation]] = {
    **_row_operations(
        "belongs_to_one", FindOperation, BelongsToOneInsertOperation, BelongsToOneRelateOperation,
        BelongsToOneUnrelateOperation, ForeignKeyUpdateOperation, ForeignKeyDeleteOperation,
    ),
    **_row_operations(
        "has_many", FindOperation, HasManyInsertOperation, HasManyRelateOperation,
        HasManyUnrelateOperation, ForeignKeyUpdateOperation, ForeignKeyDeleteOperation,
    ),
    **_row_operations(
        "has_one", FindOperation, HasManyInsertOperation, HasManyRelateOperation,
        HasManyUnrelateOperation, ForeignKeyUpdateOperation, ForeignKeyDeleteOperation,
    ),
    **_row_operations(
        "many_to_many", ManyToManyFindOperation, ManyToManyInsertOperation, ManyToManyRelateOperation,
        ManyToManyUnrelateOperation, JoinTableUpdateOperation, JoinTableDeleteOperation,
    ),
}


def create_operation(relation, action: str, **options) -> QueryOperation:
    """Operation implementing action for relation.

    Raises:
        RelationError: if the relation kind has no such operation.
    """
    try:
        operation_class = _OPERATIONS[(relation.kind, action)]
    except KeyError as error:
        raise RelationError(f"relation kind `{relation.kind}` has no `{action}` operation") from error
    if action == "patch":
        options["patch"] = True
    return operation_class(name=f"{relation.kind}.{action}", relation=relation, **options)
