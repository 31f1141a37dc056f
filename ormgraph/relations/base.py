"""Relation descriptors and the RELATION_MAPPINGS format they are built from.

A mapping looks like::

    "pets": {
        "relation": "has_many",
        "model_class": "Animal",
        "join": {"from": "person.id", "to": "animal.owner_id"},
    }

``relation`` is one of ``belongs_to_one``, ``has_one``, ``has_many`` and
``many_to_many``; the latter requires ``join.through`` (``from``, ``to`` and
optional ``extra`` columns of the join table). Composite keys are given as
lists of ``table.column`` references.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Callable, ClassVar, Literal, Optional, Sequence, Union

import pydantic
from pydantic import BaseModel, Field, PrivateAttr, TypeAdapter, model_validator

from ..errors import RelationError
from ..statement import qualify
from ..utils.composite_key import has_all_values, prop_key

logger = logging.getLogger(__name__)


# mappings

class ThroughMapping(BaseModel):
    """Join table description of a many-to-many mapping."""

    model_config = {"populate_by_name": True}

    from_: str | list[str] = Field(alias="from")
    to: str | list[str]
    extra: list[str] = Field(default_factory=list)


class JoinMapping(BaseModel):
    model_config = {"populate_by_name": True}

    from_: str | list[str] = Field(alias="from")
    to: str | list[str]
    through: Optional[ThroughMapping] = None


class _Mapping(BaseModel):
    model_config = {"arbitrary_types_allowed": True, "populate_by_name": True}

    model_class: Any
    join: JoinMapping
    modify: Any = None


class BelongsToOneMapping(_Mapping):
    relation: Literal["belongs_to_one"]


class HasManyMapping(_Mapping):
    relation: Literal["has_many"]


class HasOneMapping(_Mapping):
    relation: Literal["has_one"]


class ManyToManyMapping(_Mapping):
    relation: Literal["many_to_many"]

    @model_validator(mode="after")
    def _check_through(self) -> ManyToManyMapping:
        if self.join.through is None:
            raise ValueError("join must have the `through` that describes the join table")
        return self


RelationMapping = Annotated[
    Union[BelongsToOneMapping, HasManyMapping, HasOneMapping, ManyToManyMapping],
    Field(discriminator="relation"),
]
_MAPPING_ADAPTER = TypeAdapter(RelationMapping)


def parse_mapping(mapping: dict[str, Any]) -> _Mapping:
    try:
        return _MAPPING_ADAPTER.validate_python(mapping)
    except pydantic.ValidationError as error:
        raise RelationError(f"invalid relation mapping: {error}") from error


def parse_reference(reference: str | Sequence[str], what: str) -> tuple[str, tuple[str, ...]]:
    """Split ``table.column`` references into (table, columns); all must name one table."""
    references = [reference] if isinstance(reference, str) else list(reference)
    if not references:
        raise RelationError(f"{what} must have format table.column")
    tables, columns = set(), []
    for item in references:
        table, _, column = str(item).rpartition(".")
        if not table or not column:
            raise RelationError(
                f'{what} must have format table.column, for example "person.id" '
                f'or in case of composite key ["person.a", "person.b"] (got "{item}")'
            )
        tables.add(table)
        columns.append(column)
    if len(tables) > 1:
        raise RelationError(f"{what} columns must all belong to the same table (got {', '.join(sorted(tables))})")
    return tables.pop(), tuple(columns)


# descriptors

class Relation(BaseModel):
    """Immutable description of a relation between an owner and a related model.

    ``owner_columns[i]`` of an owner row matches ``related_columns[i]`` of its
    related rows (through the join table for many-to-many relations).
    """

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    KIND: ClassVar[str] = ""
    IS_ONE_TO_ONE: ClassVar[bool] = False

    name: str
    owner_model: Any
    related_model: Any
    owner_columns: tuple[str, ...]
    related_columns: tuple[str, ...]
    modify: Any = None

    # full column names, computed on first access
    _cache: dict[str, Any] = PrivateAttr(default_factory=dict)

    @classmethod
    def from_mapping(cls, name: str, owner_model: type, related_model: type, mapping: _Mapping) -> Relation:
        owner_table = owner_model.get_table_name()
        from_table, from_columns = parse_reference(mapping.join.from_, "join.from")
        to_table, to_columns = parse_reference(mapping.join.to, "join.to")
        swapped = from_table != owner_table
        if not swapped:
            owner_columns, related_columns, related_table = from_columns, to_columns, to_table
        elif to_table == owner_table:
            owner_columns, related_columns, related_table = to_columns, from_columns, from_table
        else:
            raise RelationError(
                f"{owner_model.__name__}.{name}: join.from or join.to must refer to table `{owner_table}`"
            )
        if related_table != related_model.get_table_name():
            raise RelationError(
                f"{owner_model.__name__}.{name}: join refers to table `{related_table}`, "
                f"but {related_model.__name__} uses table `{related_model.get_table_name()}`"
            )
        return cls(
            name=name,
            owner_model=owner_model,
            related_model=related_model,
            owner_columns=owner_columns,
            related_columns=related_columns,
            modify=mapping.modify,
            **cls._extra_fields(mapping, swapped),
        )

    @classmethod
    def _extra_fields(cls, mapping: _Mapping, swapped: bool) -> dict[str, Any]:
        """Fields specific to a relation class; swapped is True when join.to names the owner."""
        return {}

    @model_validator(mode="after")
    def _check_columns(self) -> Relation:
        if len(self.owner_columns) != len(self.related_columns):
            raise ValueError(
                f"{self.name}: owner and related column counts differ "
                f"({len(self.owner_columns)} != {len(self.related_columns)})"
            )
        if self.name in self.owner_model.model_fields:
            raise ValueError(f"{self.owner_model.__name__}.{self.name}: relation name collides with a column")
        return self

    def _cached(self, key: str, compute: Callable[[], Any]) -> Any:
        value = self._cache.get(key)
        if value is None:
            value = compute()
            self._cache[key] = value
        return value

    @property
    def kind(self) -> str:
        return self.KIND

    @property
    def is_one_to_one(self) -> bool:
        return self.IS_ONE_TO_ONE

    @property
    def owner_table(self) -> str:
        return self.owner_model.get_table_name()

    @property
    def related_table(self) -> str:
        return self.related_model.get_table_name()

    @property
    def full_owner_columns(self) -> tuple[str, ...]:
        return self._cached("full_owner_columns", lambda: qualify(self.owner_table, self.owner_columns))

    @property
    def full_related_columns(self) -> tuple[str, ...]:
        return self._cached("full_related_columns", lambda: qualify(self.related_table, self.related_columns))

    def bind(self, owner_model: type, related_model: type) -> Relation:
        """Clone for models bound to another connection; descriptor fields are shared."""
        bound = self.model_copy(update={"owner_model": owner_model, "related_model": related_model})
        bound._cache = {}
        return bound

    def apply_modify(self, query):
        """Apply the relation's modify filter (callable or NAMED_FILTERS name) to query."""
        modify = self.modify
        if modify is None:
            return query
        if isinstance(modify, str):
            name = modify
            modify = self.related_model.NAMED_FILTERS.get(name)
            if modify is None:
                raise RelationError(
                    f"{self.owner_model.__name__}.{self.name}: unknown filter `{name}` "
                    f"in {self.related_model.__name__}.NAMED_FILTERS"
                )
        result = modify(query)
        return query if result is None else result

    def owner_keys(self, owners: Sequence[Any]) -> list[tuple]:
        """Distinct complete owner keys, in owner order."""
        keys = (prop_key(owner.values(self.owner_columns)) for owner in owners)
        return list(dict.fromkeys(key for key in keys if has_all_values(key)))

    # attaching fetched rows

    def attach(self, owner: Any, value: Any) -> None:
        setattr(owner, self.name, value)

    def create_relation_prop(self, owners: Sequence[Any], related: Sequence[Any]) -> None:
        """Attach related rows to their owners, matching composite keys through a dict."""
        raise NotImplementedError("Subclasses must implement `create_relation_prop`")

    # operations

    def _operation(self, action: str, **options):
        from .operations import create_operation  # pylint: disable=import-outside-toplevel
        return create_operation(self, action, **options)

    def find(self, owners: Sequence[Any]):
        return self._operation("find", owners=list(owners))

    def insert(self, owner: Any):
        return self._operation("insert", owner=owner)

    def update(self, owner: Any):
        return self._operation("update", owner=owner)

    def patch(self, owner: Any):
        return self._operation("patch", owner=owner)

    def delete(self, owner: Any):
        return self._operation("delete", owner=owner)

    def relate(self, owner: Any):
        return self._operation("relate", owner=owner)

    def unrelate(self, owner: Any):
        return self._operation("unrelate", owner=owner)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.owner_model.__name__}.{self.name} -> {self.related_model.__name__}>"
