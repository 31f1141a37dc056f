"""Resolve model classes named in relation mappings."""

from typing import Callable, Iterable, Optional


def _get_subclasses(base: type) -> Iterable[type]:
    """Recursively yield all subclasses of base in depth-first order."""
    for subclass in base.__subclasses__()[::-1]:
        yield from _get_subclasses(subclass)
        yield subclass


def find_subclass(base: type, name: str, accept: Optional[Callable[[type], bool]] = None):
    """Return the unique subclass of base with __name__ == name, or None.

    ``accept`` filters out candidates (e.g. classes bound to another connection).

    Raises if multiple subclasses match.
    """
    subclasses = []
    for subclass in _get_subclasses(base):
        if subclass.__name__ == name and (accept is None or accept(subclass)):
            subclasses.append(subclass)
    if len(subclasses) > 1:
        raise ValueError(f"More than one subclass of `{base.__name__}` found with name `{name}`")
    if len(subclasses) == 0:
        return None
    return subclasses[0]


def resolve_model_class(base: type, reference, accept: Optional[Callable[[type], bool]] = None) -> type:
    """Turn a relation target (class, class name or zero-argument factory) into a subclass of base.

    Raises:
        ValueError: if the reference names no known subclass, or something that is not one.
    """
    if isinstance(reference, str):
        found = find_subclass(base, reference.rsplit(".", 1)[-1], accept=accept)
        if found is None:
            raise ValueError(f"No subclass of `{base.__name__}` found with name `{reference}`")
        return found
    if not isinstance(reference, type) and callable(reference):
        reference = reference()
    if not (isinstance(reference, type) and issubclass(reference, base)):
        raise ValueError(f"`{reference!r}` is not a subclass of `{base.__name__}`")
    return reference
