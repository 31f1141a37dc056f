"""Normalize single or composite identifiers into ordered value tuples."""

from collections.abc import Mapping
from typing import Any, Sequence

from ..errors import ValidationError


def _is_model(thing: Any) -> bool:
    from ..model import Model
    return isinstance(thing, Model)


def _values_of(item: Any, columns: Sequence[str]) -> tuple:
    """Read the values of columns from a model instance or a mapping."""
    if _is_model(item):
        return item.values(columns)
    return tuple(item.get(column) for column in columns)


def normalize_ids(ids: Any, columns: Sequence[str], array_output: bool = True) -> list[tuple] | tuple:
    """Return one tuple of len(columns) values per logical id, in input order.

    Accepted inputs: a model instance, a mapping, a scalar, a tuple (one
    composite id), or a list of any of these. A flat list of scalars is split
    into chunks of len(columns).

    Raises:
        ValidationError: if a flat list cannot be split evenly.
    """
    arity = len(columns)
    result: list[tuple] = []

    if isinstance(ids, tuple):
        if len(ids) != arity:
            raise ValidationError({"id": f"expected {arity} values, got {len(ids)}: {ids!r}"})
        result.append(ids)
    elif _is_model(ids) or isinstance(ids, Mapping):
        result.append(_values_of(ids, columns))
    elif isinstance(ids, (list, set, frozenset)):
        items = list(ids)
        if items and all(isinstance(item, (tuple, list)) for item in items):
            for item in items:
                if len(item) != arity:
                    raise ValidationError({"id": f"expected {arity} values, got {len(item)}: {item!r}"})
                result.append(tuple(item))
        elif items and all(_is_model(item) or isinstance(item, Mapping) for item in items):
            result.extend(_values_of(item, columns) for item in items)
        else:
            if len(items) % arity != 0:
                raise ValidationError({
                    "id": f"cannot split {len(items)} values into ids of {arity} columns ({', '.join(columns)})"
                })
            for index in range(0, len(items), arity):
                result.append(tuple(items[index:index + arity]))
    else:
        if arity != 1:
            raise ValidationError({"id": f"expected {arity} values, got a single value {ids!r}"})
        result.append((ids,))

    if array_output:
        return result
    if len(result) != 1:
        raise ValidationError({"id": f"expected a single id, got {len(result)}"})
    return result[0]


def prop_key(values: Sequence[Any]) -> tuple:
    """Hashable key for matching owners and related rows on a composite key.

    Values are compared positionally; numeric strings and ints are not unified.
    """
    return tuple(values)


def has_all_values(values: Sequence[Any]) -> bool:
    """True when no position of a composite key is None."""
    return all(value is not None for value in values)
