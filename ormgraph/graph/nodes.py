"""Nodes and edges of a flattened insert graph."""

from __future__ import annotations

import re
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from ..errors import GraphError

ID_MARKER = "#id"
"""Declares the uid of a node: ``{"#id": "jennifer", ...}``."""

ALIAS_MARKER = "#ref"
"""Re-uses a node declared elsewhere in the graph: ``{"#ref": "jennifer"}``."""

DB_REF_MARKER = "#dbRef"
"""Points at an existing row by identity instead of inserting one: ``{"#dbRef": 12}``."""

MARKERS = frozenset({ID_MARKER, ALIAS_MARKER, DB_REF_MARKER})

REF_PATTERN = re.compile(r"#ref\{([^.}]+)\.([^}]+)\}")
"""Property value (or part of one) replaced by a column of another node, e.g. ``#ref{jennifer.id}``."""


class InsertNode(BaseModel):
    """One row of the graph: to insert, or existing (``#dbRef`` and the owner of a related query)."""

    model_config = {"arbitrary_types_allowed": True}

    uid: str
    index: int
    model: Any
    existing: bool = False
    props: dict[str, Any] = Field(default_factory=dict)
    identity: Optional[tuple] = None
    instance: Any = None
    deferred: dict[str, str] = Field(default_factory=dict)
    """Properties whose #ref could not be resolved at insert time."""

    @property
    def done(self) -> bool:
        """True once the row exists in the database."""
        return self.existing or self.instance is not None

    def can_provide(self, columns: Sequence[str]) -> bool:
        if self.instance is not None or not self.existing:
            return True
        return set(columns) <= set(self.model.get_id_columns())

    def values(self, columns: Sequence[str]) -> tuple:
        if self.instance is not None:
            return self.instance.values(columns)
        if self.existing:
            known = dict(zip(self.model.get_id_columns(), self.identity or ()))
            return tuple(known.get(column) for column in columns)
        raise GraphError(f"node `{self.uid}` is read before it is inserted")

    def ref_references(self) -> list[tuple[str, str]]:
        """(uid, column) pairs of every #ref{...} in this node's string properties."""
        references = []
        for value in self.props.values():
            if isinstance(value, str):
                references.extend(REF_PATTERN.findall(value))
        return references

    def __repr__(self) -> str:
        return f"<InsertNode {self.uid} {self.model.__name__}{' existing' if self.existing else ''}>"


class GraphEdge(BaseModel):
    """``related`` is reached from ``owner`` through ``relation``; ``extra`` holds join table extras."""

    model_config = {"arbitrary_types_allowed": True}

    relation: Any
    owner: InsertNode
    related: InsertNode
    extra: dict[str, Any] = Field(default_factory=dict)
