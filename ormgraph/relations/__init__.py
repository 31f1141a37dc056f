"""Relation descriptors built from Model.RELATION_MAPPINGS."""

from typing import Any

import pydantic

from ..errors import RelationError
from ..utils.find_subclass import resolve_model_class
from .base import Relation, parse_mapping, parse_reference
from .belongs_to_one import BelongsToOneRelation
from .has_many import HasManyRelation
from .many_to_many import ManyToManyRelation

_RELATION_CLASSES: dict[str, type[Relation]] = {
    "belongs_to_one": BelongsToOneRelation,
    "has_many": HasManyRelation,
    "has_one": HasManyRelation,
    "many_to_many": ManyToManyRelation,
}


def _is_unbound(model_class: type) -> bool:
    return model_class.__dict__.get("_BOUND_FROM") is None


def build_relation(name: str, owner_model: type, mapping: dict[str, Any]) -> Relation:
    """Build the descriptor of relation name of owner_model from its mapping.

    Raises:
        RelationError: if the mapping is invalid or inconsistent with the models.
    """
    from ..model import Model  # pylint: disable=import-outside-toplevel

    parsed = parse_mapping(mapping)
    try:
        related_model = resolve_model_class(Model, parsed.model_class, accept=_is_unbound)
    except ValueError as error:
        raise RelationError(f"{owner_model.__name__}.{name}: {error}") from error
    try:
        return _RELATION_CLASSES[parsed.relation].from_mapping(name, owner_model, related_model, parsed)
    except pydantic.ValidationError as error:
        raise RelationError(f"{owner_model.__name__}.{name}: {error}") from error


__all__ = [
    "Relation",
    "BelongsToOneRelation",
    "HasManyRelation",
    "ManyToManyRelation",
    "build_relation",
    "parse_mapping",
    "parse_reference",
]
