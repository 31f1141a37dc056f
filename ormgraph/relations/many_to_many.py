from collections.abc import Mapping
from typing import Any, ClassVar, Sequence

from pydantic import model_validator

from ..errors import RelationError
from ..statement import qualify
from ..utils.composite_key import has_all_values, prop_key
from .base import Relation, _Mapping, parse_reference

JOIN_OWNER_PREFIX = "ormgraph_join_owner_"


class ManyToManyRelation(Relation):
    """Owner and related rows linked through a join table.

    ``join_table_owner_columns`` reference the owner's ``owner_columns`` and
    ``join_table_related_columns`` the related ``related_columns``. Extra join
    table columns are read onto related rows and written from them.
    """

    KIND: ClassVar[str] = "many_to_many"

    join_table: str
    join_table_owner_columns: tuple[str, ...]
    join_table_related_columns: tuple[str, ...]
    join_table_extra_columns: tuple[str, ...] = ()

    @classmethod
    def _extra_fields(cls, mapping: _Mapping, swapped: bool) -> dict[str, Any]:
        through = mapping.join.through
        owner_reference, related_reference = (through.to, through.from_) if swapped else (through.from_, through.to)
        owner_table, owner_columns = parse_reference(owner_reference, "join.through.from")
        related_table, related_columns = parse_reference(related_reference, "join.through.to")
        if owner_table != related_table:
            raise RelationError(
                f"join.through.from and join.through.to must refer to the same join table "
                f"(got `{owner_table}` and `{related_table}`)"
            )
        return {
            "join_table": owner_table,
            "join_table_owner_columns": owner_columns,
            "join_table_related_columns": related_columns,
            "join_table_extra_columns": tuple(through.extra),
        }

    @model_validator(mode="after")
    def _check_join_columns(self) -> "ManyToManyRelation":
        if len(self.join_table_owner_columns) != len(self.owner_columns):
            raise ValueError(f"{self.name}: join table owner columns do not match the owner key")
        if len(self.join_table_related_columns) != len(self.related_columns):
            raise ValueError(f"{self.name}: join table related columns do not match the related key")
        return self

    @property
    def full_join_table_owner_columns(self) -> tuple[str, ...]:
        return self._cached(
            "full_join_table_owner_columns", lambda: qualify(self.join_table, self.join_table_owner_columns)
        )

    @property
    def full_join_table_related_columns(self) -> tuple[str, ...]:
        return self._cached(
            "full_join_table_related_columns", lambda: qualify(self.join_table, self.join_table_related_columns)
        )

    @property
    def hidden_owner_columns(self) -> tuple[str, ...]:
        """Aliases under which find() selects the join table's owner key."""
        return tuple(f"{JOIN_OWNER_PREFIX}{index}" for index in range(len(self.owner_columns)))

    def create_relation_prop(self, owners: Sequence[Any], related: Sequence[Any]) -> None:
        hidden = self.hidden_owner_columns
        by_key: dict[tuple, list] = {}
        for row in related:
            by_key.setdefault(prop_key(row.values(hidden)), []).append(row)
            for column in hidden:
                (row.__pydantic_extra__ or {}).pop(column, None)
        for owner in owners:
            key = prop_key(owner.values(self.owner_columns))
            self.attach(owner, list(by_key.get(key, [])) if has_all_values(key) else [])

    def create_join_rows(self, owner_values: Sequence[Any], related: Sequence[Any]) -> list[dict[str, Any]]:
        """One join table row per related item (model or mapping).

        Extra columns are copied only when the item carries them.
        """
        rows = []
        for item in related:
            if isinstance(item, Mapping):
                values = tuple(item.get(column) for column in self.related_columns)
                present = {column: item[column] for column in self.join_table_extra_columns if column in item}
            else:
                values = item.values(self.related_columns)
                extra = item.__pydantic_extra__ or {}
                present = {column: extra[column] for column in self.join_table_extra_columns if column in extra}
            row = dict(zip(self.join_table_owner_columns, owner_values))
            row.update(zip(self.join_table_related_columns, values))
            row.update(present)
            rows.append(row)
        return rows

    def omit_extra_columns(self, models: Sequence[Any]) -> None:
        """Keep join table extras out of the related rows' own columns."""
        if not self.join_table_extra_columns:
            return
        for model in models:
            model.omit_from_database_json(*self.join_table_extra_columns)
