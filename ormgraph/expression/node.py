"""Relation expression tree and its filter registry."""

from __future__ import annotations

import itertools
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field, PrivateAttr

from ..errors import RelationExpressionError

WILDCARD = "*"


class FilterRegistry(BaseModel):
    """Named query filters available to one expression tree.

    A filter is a callable taking a Query and returning the narrowed Query.
    """

    model_config = {"arbitrary_types_allowed": True}

    filters: dict[str, Callable[..., Any]] = Field(default_factory=dict)
    _counter: Any = PrivateAttr(default_factory=itertools.count)

    def register(self, name: str, filter_: Callable[..., Any]) -> str:
        self.filters[name] = filter_
        return name

    def register_anonymous(self, filter_: Callable[..., Any]) -> str:
        """Register filter_ under a generated name and return that name."""
        while True:
            name = f"_anonymous_filter_{next(self._counter)}"
            if name not in self.filters:
                return self.register(name, filter_)

    def get(self, name: str) -> Optional[Callable[..., Any]]:
        return self.filters.get(name)

    def update(self, filters: dict[str, Callable[..., Any]]) -> None:
        self.filters.update(filters)

    def copy(self) -> FilterRegistry:
        registry = FilterRegistry(filters=dict(self.filters))
        registry._counter = itertools.count(len(self.filters))
        return registry

    def __contains__(self, name: str) -> bool:
        return name in self.filters

    def __len__(self) -> int:
        return len(self.filters)


class RelationExpression(BaseModel):
    """Node of a relation expression.

    The root has the empty name; each child is keyed by relation name (or
    ``*``). ``args`` names filters from ``filters``, a registry shared by every
    node of the tree. A recursive node (``name^`` / ``name^N``) stands for an
    edge back to itself, ``max_depth`` counting the levels left including its
    own (None for unbounded).
    """

    model_config = {"arbitrary_types_allowed": True}

    name: str = ""
    args: list[str] = Field(default_factory=list)
    children: dict[str, RelationExpression] = Field(default_factory=dict)
    recursive: bool = False
    max_depth: Optional[int] = None
    filters: FilterRegistry = Field(default_factory=FilterRegistry, repr=False)

    # construction

    @classmethod
    def parse(cls, expression: str | RelationExpression | None) -> RelationExpression:
        """Parse expression text; an existing expression is returned as a clone.

        Raises:
            RelationExpressionError: on malformed syntax.
        """
        if isinstance(expression, RelationExpression):
            return expression.clone()
        if expression is None:
            return cls()
        if not isinstance(expression, str):
            raise RelationExpressionError(
                f"relation expression must be a string, got {type(expression).__name__}"
            )
        from .parser import parse  # pylint: disable=import-outside-toplevel
        return parse(expression)

    @classmethod
    def from_graph(cls, model: type, graph: Any) -> RelationExpression:
        """Expression of the relations present in an insert graph for model."""
        root = cls()
        _collect_graph_relations(root, model, graph)
        return root.with_filters(root.filters)

    def with_filters(self, registry: FilterRegistry) -> RelationExpression:
        """Make every node of this tree share registry; returns self."""
        self.filters = registry
        for child in self.children.values():
            child.with_filters(registry)
        return self

    def add_child(self, child: RelationExpression) -> RelationExpression:
        """Merge child into this node's children (same name nodes are unioned)."""
        existing = self.children.get(child.name)
        if existing is None:
            self.children[child.name] = child
        else:
            existing.merge_node(child)
        return self.children[child.name].with_filters(self.filters)

    def merge_node(self, other: RelationExpression) -> None:
        """Union other into this node in place (args concatenated, children merged)."""
        for arg in other.args:
            if arg not in self.args:
                self.args.append(arg)
        if other.recursive:
            if not self.recursive:
                self.recursive, self.max_depth = True, other.max_depth
            elif self.max_depth is not None:
                self.max_depth = None if other.max_depth is None else max(self.max_depth, other.max_depth)
        for child in other.children.values():
            self.add_child(child._clone_node())

    def clone(self) -> RelationExpression:
        """Deep independent copy, with a copy of the filter registry."""
        return self._clone_node().with_filters(self.filters.copy())

    def _clone_node(self) -> RelationExpression:
        return RelationExpression(
            name=self.name,
            args=list(self.args),
            children={name: child._clone_node() for name, child in self.children.items()},
            recursive=self.recursive,
            max_depth=self.max_depth,
        )

    def merge(self, other: str | RelationExpression) -> RelationExpression:
        """Return a new expression holding the union of self and other."""
        other = RelationExpression.parse(other)
        merged = self.clone()
        merged.filters.update(other.filters.filters)
        merged.merge_node(other)
        return merged.with_filters(merged.filters)

    # filters

    def add_anonymous_filter_at_path(self, path: str, filter_: Callable[..., Any]) -> str:
        """Attach filter_ to the node reached by the dotted path (created if missing)."""
        node = self
        for part in [part.strip() for part in (path or "").split(".") if part.strip()]:
            child = node.children.get(part)
            if child is None:
                child = node.add_child(RelationExpression(name=part))
            node = child
        name = self.filters.register_anonymous(filter_)
        node.args.append(name)
        return name

    # traversal

    def child_expression(self, name: str) -> Optional[RelationExpression]:
        """Subtree to apply for relation name, or None if name is not expanded.

        Combines the wildcard child, the specific child and, for a recursive
        node named name, the edge back to itself.
        """
        candidates = []
        if self.recursive and name == self.name and (self.max_depth is None or self.max_depth > 1):
            again = self._clone_node()
            if again.max_depth is not None:
                again.max_depth -= 1
            candidates.append(again)
        for key in (WILDCARD, name):
            child = self.children.get(key)
            if child is not None:
                candidates.append(child._clone_node())
        if not candidates:
            return None
        result = candidates[0]
        result.name = name
        for candidate in candidates[1:]:
            result.merge_node(candidate)
        return result.with_filters(self.filters)

    def is_subset_of(self, other: str | RelationExpression) -> bool:
        """True when every path and filter reachable in self is reachable in other."""
        other = RelationExpression.parse(other) if isinstance(other, str) else other
        if self.recursive:
            if not other.recursive:
                return False
            if other.max_depth is not None and (self.max_depth is None or self.max_depth > other.max_depth):
                return False
        if not set(self.args) <= set(other.args):
            return False
        for name, child in self.children.items():
            other_child = other.child_expression(name)
            if other_child is None or not child.is_subset_of(other_child):
                return False
        return True

    # rendering & comparison

    def _segment_string(self) -> str:
        text = self.name
        if self.args:
            text += "(" + ", ".join(self.args) + ")"
        if self.recursive:
            text += "^" + (str(self.max_depth) if self.max_depth is not None else "")
        return text

    def _children_string(self) -> str:
        parts = [child._node_string() for child in self.children.values()]
        if len(parts) == 1:
            return parts[0]
        return "[" + ", ".join(parts) + "]"

    def _node_string(self) -> str:
        if not self.children:
            return self._segment_string()
        return self._segment_string() + "." + self._children_string()

    def to_string(self) -> str:
        """Textual form; parse(to_string()) is structurally equal to self."""
        if self.name:
            return self._node_string()
        return ", ".join(child._node_string() for child in self.children.values())

    def __str__(self) -> str:
        return self.to_string()

    def _structure(self) -> tuple:
        return (
            self.name,
            tuple(sorted(self.args)),
            self.recursive,
            self.max_depth,
            frozenset((name, child._structure()) for name, child in self.children.items()),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RelationExpression):
            return NotImplemented
        return self._structure() == other._structure()

    def __hash__(self) -> int:
        return hash(self._structure())

    @property
    def is_empty(self) -> bool:
        return not self.children


def _collect_graph_relations(node: RelationExpression, model: type, graph: Any) -> None:
    items = graph if isinstance(graph, (list, tuple)) else [graph]
    relations = model.get_relations()
    for item in items:
        if item is None:
            continue
        data = item.to_json() if hasattr(item, "to_json") else item
        if not isinstance(data, dict):
            continue
        for key, value in data.items():
            relation = relations.get(key)
            if relation is None or value is None:
                continue
            child = node.children.get(key) or node.add_child(RelationExpression(name=key))
            _collect_graph_relations(child, relation.related_model, value)


RelationExpression.model_rebuild()
