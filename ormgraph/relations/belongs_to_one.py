from typing import Any, ClassVar, Sequence

from ..utils.composite_key import has_all_values, prop_key
from .base import Relation


class BelongsToOneRelation(Relation):
    """The owner row holds the foreign key (``owner_columns``) to one related row."""

    KIND: ClassVar[str] = "belongs_to_one"
    IS_ONE_TO_ONE: ClassVar[bool] = True

    def create_relation_prop(self, owners: Sequence[Any], related: Sequence[Any]) -> None:
        by_key = {}
        for row in related:
            by_key.setdefault(prop_key(row.values(self.related_columns)), row)
        for owner in owners:
            key = prop_key(owner.values(self.owner_columns))
            self.attach(owner, by_key.get(key) if has_all_values(key) else None)
