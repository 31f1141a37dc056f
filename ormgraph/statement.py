"""Structured statement descriptions and their compilation to SQL.

Relation operations never concatenate SQL themselves: they build
SelectStatement / InsertStatement / UpdateStatement / DeleteStatement values
from the small condition vocabulary below, and the connection compiles them
for its dialect. Conditions render with a placeholder passed in by the
compiler and expose their bound ``values`` in the same order.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from .dialects import Dialect


class Condition(BaseModel):
    """Base type for WHERE / ON conditions."""

    model_config = {"arbitrary_types_allowed": True}

    def to_sql(self, placeholder: str) -> str:
        """SQL fragment for this condition, using placeholder for bound values."""
        raise NotImplementedError("Subclasses must implement `to_sql`")

    @property
    def values(self) -> tuple[Any, ...]:
        """Bound values, in the order of placeholders in to_sql()."""
        return ()


class Compare(Condition):
    """``column <operator> value``; ``= None`` renders as IS NULL."""

    column: str
    operator: str = "="
    value: Any = None

    def to_sql(self, placeholder: str) -> str:
        if self.value is None and self.operator in ("=", "!="):
            return f"{self.column} IS {'NOT ' if self.operator == '!=' else ''}NULL"
        return f"{self.column} {self.operator} {placeholder}"

    @property
    def values(self) -> tuple[Any, ...]:
        if self.value is None and self.operator in ("=", "!="):
            return ()
        return (self.value,)


class ColumnRef(Condition):
    """Comparison between two columns (join condition or correlated filter)."""

    left: str
    right: str
    operator: str = "="

    def to_sql(self, placeholder: str) -> str:
        return f"{self.left} {self.operator} {self.right}"


class IsNull(Condition):
    """``column IS NULL`` or ``column IS NOT NULL``."""

    column: str
    negated: bool = False

    def to_sql(self, placeholder: str) -> str:
        return f"{self.column} IS {'NOT ' if self.negated else ''}NULL"


class In(Condition):
    """Composite IN over literal tuples or over a subquery.

    An empty tuple list renders as an always-false condition.
    """

    columns: tuple[str, ...]
    ids: list[tuple] = Field(default_factory=list)
    subquery: Optional[SelectStatement] = None

    def _target(self) -> str:
        if len(self.columns) == 1:
            return self.columns[0]
        return "(" + ", ".join(self.columns) + ")"

    def to_sql(self, placeholder: str) -> str:
        if self.subquery is not None:
            sql, _ = self.subquery.render(placeholder)
            return f"{self._target()} IN ({sql})"
        if not self.ids:
            return "1 = 0"
        if len(self.columns) == 1:
            return f"{self.columns[0]} IN ({', '.join(placeholder for _ in self.ids)})"
        row = "(" + ", ".join(placeholder for _ in self.columns) + ")"
        return f"{self._target()} IN ({', '.join(row for _ in self.ids)})"

    @property
    def values(self) -> tuple[Any, ...]:
        if self.subquery is not None:
            return self.subquery.values
        return tuple(value for id_ in self.ids for value in id_)


class Raw(Condition):
    """Raw SQL fragment; ``?`` in text stands for each bound parameter."""

    text: str
    parameters: tuple[Any, ...] = ()

    def to_sql(self, placeholder: str) -> str:
        return self.text.replace("?", placeholder)

    @property
    def values(self) -> tuple[Any, ...]:
        return tuple(self.parameters)


class Join(BaseModel):
    """JOIN clause: ``<kind> JOIN table [AS alias] ON left = right [AND ...]``."""

    table: str
    alias: Optional[str] = None
    on: list[tuple[str, str]] = Field(default_factory=list)
    kind: str = "INNER"

    @property
    def sql(self) -> str:
        target = f"{self.table} AS {self.alias}" if self.alias else self.table
        on = " AND ".join(f"{left} = {right}" for left, right in self.on)
        return f"{self.kind} JOIN {target} ON {on}"


class OrderClause(BaseModel):
    """ORDER BY item."""

    column: str
    descending: bool = False

    @property
    def sql(self) -> str:
        return f"{self.column} {'DESC' if self.descending else 'ASC'}"


def _where_sql(conditions: Sequence[Condition], placeholder: str) -> str:
    if not conditions:
        return ""
    return "\nWHERE " + "\nAND ".join(f"({c.to_sql(placeholder)})" for c in conditions)


def _where_values(conditions: Sequence[Condition]) -> tuple[Any, ...]:
    return tuple(value for condition in conditions for value in condition.values)


class Statement(BaseModel):
    """Base type for statement descriptions run by Connection.run()."""

    model_config = {"arbitrary_types_allowed": True}

    table: str

    def compile(self, dialect: Dialect) -> tuple[str, tuple[Any, ...]]:
        """Return (sql, parameters) for the given dialect."""
        raise NotImplementedError("Subclasses must implement `compile`")


class SelectStatement(Statement):
    """SELECT with joins, conditions, ordering and pagination."""

    alias: Optional[str] = None
    columns: list[str] = Field(default_factory=list)
    joins: list[Join] = Field(default_factory=list)
    where: list[Condition] = Field(default_factory=list)
    order_by: list[OrderClause] = Field(default_factory=list)
    limit: Optional[int] = None
    offset: Optional[int] = None
    distinct: bool = False

    @property
    def source(self) -> str:
        """Name the selected table is referred to by (alias or table)."""
        return self.alias or self.table

    def render(self, placeholder: str) -> tuple[str, tuple[Any, ...]]:
        """Return (sql, values) with an explicit placeholder (used for subqueries)."""
        columns = ", ".join(self.columns) if self.columns else f"{self.source}.*"
        sql = "SELECT " + ("DISTINCT " if self.distinct else "") + columns
        sql += f"\nFROM {self.table}" + (f" AS {self.alias}" if self.alias else "")
        for join in self.joins:
            sql += "\n" + join.sql
        sql += _where_sql(self.where, placeholder)
        if self.order_by:
            sql += "\nORDER BY " + ", ".join(o.sql for o in self.order_by)
        if self.limit is not None:
            sql += f"\nLIMIT {int(self.limit)}"
        if self.offset is not None:
            sql += f"\nOFFSET {int(self.offset)}"
        return sql, self.values

    @property
    def values(self) -> tuple[Any, ...]:
        return _where_values(self.where)

    def compile(self, dialect: Dialect) -> tuple[str, tuple[Any, ...]]:
        return self.render(dialect.PLACEHOLDER)


class InsertStatement(Statement):
    """INSERT of one or more rows; one SQL statement is produced per row.

    ``returning`` names the identity columns whose values are reported back
    for each row.
    """

    rows: list[dict[str, Any]] = Field(default_factory=list)
    returning: tuple[str, ...] = ()

    def compile_row(self, row: dict[str, Any], dialect: Dialect) -> tuple[str, tuple[Any, ...]]:
        """Return (sql, parameters) inserting a single row."""
        if row:
            columns = ", ".join(row)
            placeholders = ", ".join(dialect.PLACEHOLDER for _ in row)
            sql = f"INSERT INTO {self.table} ({columns})\nVALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {self.table} {dialect.DEFAULT_VALUES}"
        if self.returning and dialect.SUPPORTS_RETURNING:
            sql += "\nRETURNING " + ", ".join(self.returning)
        return sql, tuple(row.values())

    def compile(self, dialect: Dialect) -> tuple[str, tuple[Any, ...]]:
        if len(self.rows) != 1:
            raise ValueError("InsertStatement.compile() needs exactly one row; use compile_row()")
        return self.compile_row(self.rows[0], dialect)


class UpdateStatement(Statement):
    """UPDATE table SET ... WHERE ..."""

    values_to_set: dict[str, Any] = Field(default_factory=dict)
    where: list[Condition] = Field(default_factory=list)

    def compile(self, dialect: Dialect) -> tuple[str, tuple[Any, ...]]:
        if not self.values_to_set:
            raise ValueError(f"UPDATE {self.table} without any value to set")
        placeholder = dialect.PLACEHOLDER
        sql = f"UPDATE {self.table}\nSET " + ", ".join(f"{k} = {placeholder}" for k in self.values_to_set)
        sql += _where_sql(self.where, placeholder)
        return sql, tuple(self.values_to_set.values()) + _where_values(self.where)


class DeleteStatement(Statement):
    """DELETE FROM table WHERE ..."""

    where: list[Condition] = Field(default_factory=list)

    def compile(self, dialect: Dialect) -> tuple[str, tuple[Any, ...]]:
        placeholder = dialect.PLACEHOLDER
        sql = f"DELETE FROM {self.table}" + _where_sql(self.where, placeholder)
        return sql, _where_values(self.where)


def qualify(table: str, columns: Sequence[str]) -> tuple[str, ...]:
    """Prefix each column with table (e.g. ('id',) -> ('person.id',))."""
    return tuple(column if "." in column else f"{table}.{column}" for column in columns)


def composite_equals(columns: Sequence[str], values: Sequence[Any]) -> list[Condition]:
    """One Compare per column of a composite key."""
    return [Compare(column=column, value=value) for column, value in zip(columns, values)]


In.model_rebuild()

__all__ = [
    "Condition",
    "Compare",
    "ColumnRef",
    "IsNull",
    "In",
    "Raw",
    "Join",
    "OrderClause",
    "Statement",
    "SelectStatement",
    "InsertStatement",
    "UpdateStatement",
    "DeleteStatement",
    "qualify",
    "composite_equals",
]
