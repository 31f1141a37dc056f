"""Insertion of nested graphs of models."""

from .nodes import ALIAS_MARKER, DB_REF_MARKER, ID_MARKER, REF_PATTERN, GraphEdge, InsertNode
from .resolver import GraphInserter

__all__ = [
    "ALIAS_MARKER",
    "DB_REF_MARKER",
    "ID_MARKER",
    "REF_PATTERN",
    "GraphEdge",
    "GraphInserter",
    "InsertNode",
]
