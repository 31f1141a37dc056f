from typing import Any, ClassVar, Sequence

from ..utils.composite_key import has_all_values, prop_key
from .base import Relation, _Mapping


class HasManyRelation(Relation):
    """The related rows hold the foreign key (``related_columns``) to the owner.

    With ``one`` set (mapping kind ``has_one``) at most one related row is
    attached, as an instance or None.
    """

    KIND: ClassVar[str] = "has_many"

    one: bool = False

    @classmethod
    def _extra_fields(cls, mapping: _Mapping, swapped: bool) -> dict[str, Any]:
        return {"one": mapping.relation == "has_one"}

    @property
    def kind(self) -> str:
        return "has_one" if self.one else "has_many"

    @property
    def is_one_to_one(self) -> bool:
        return self.one

    def create_relation_prop(self, owners: Sequence[Any], related: Sequence[Any]) -> None:
        by_key: dict[tuple, list] = {}
        for row in related:
            by_key.setdefault(prop_key(row.values(self.related_columns)), []).append(row)
        for owner in owners:
            key = prop_key(owner.values(self.owner_columns))
            rows = by_key.get(key, []) if has_all_values(key) else []
            if self.one:
                self.attach(owner, rows[0] if rows else None)
            else:
                self.attach(owner, list(rows))
