"""Relation expressions: which relations (and filters) to expand from a model."""

from .node import FilterRegistry, RelationExpression, WILDCARD

__all__ = ["FilterRegistry", "RelationExpression", "WILDCARD"]
