"""Insert a nested graph of models in dependency order.

``GraphInserter.build()`` flattens the graph into nodes and edges and orders
the nodes; it raises before anything is written. ``execute()`` then inserts
the nodes in that order inside one transaction:

- a belongs-to-one related row is inserted before its owner, whose foreign
  key is copied from it; a has-many owner is inserted before its related rows;
- many-to-many endpoints are unordered; join rows are inserted once both
  exist;
- ``#dbRef`` rows are never inserted: links to them are set through the
  foreign key of the inserted side, or patched once it exists;
- ``#ref{uid.column}`` properties order the referenced node first when that
  keeps the graph acyclic; otherwise they are patched after all inserts.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Mapping
from typing import Any, Optional

from ..errors import GraphError
from ..model import Model
from ..statement import InsertStatement, UpdateStatement, composite_equals
from ..utils.composite_key import normalize_ids
from .nodes import ALIAS_MARKER, DB_REF_MARKER, ID_MARKER, MARKERS, REF_PATTERN, GraphEdge, InsertNode

logger = logging.getLogger(__name__)

_UNRESOLVED = object()
"""Value of a #ref column whose node is not inserted yet."""


def _sort(nodes: list[InsertNode], edges: set[tuple[int, int]]) -> tuple[list[InsertNode], list[InsertNode]]:
    """Kahn's algorithm over (before, after) index pairs; ties go to graph order.

    Returns the sorted nodes and the nodes left on a cycle.
    """
    successors: dict[int, list[int]] = {node.index: [] for node in nodes}
    in_degree = {node.index: 0 for node in nodes}
    for before, after in edges:
        successors[before].append(after)
        in_degree[after] += 1
    ready = [index for index, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    ordered = []
    while ready:
        index = heapq.heappop(ready)
        ordered.append(nodes[index])
        for successor in successors[index]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, successor)
    left = [node for node in nodes if in_degree[node.index] > 0]
    return ordered, left


class GraphInserter:
    """Resolve and insert one graph for model.

    Args:
        model: Model class of the graph's root(s).
        graph: A dict or model instance, or a list of them.
        relation: For a related query, the relation from owner to the roots.
        owner: For a related query, the instance it was started from.
    """

    def __init__(self, model: type, graph: Any, relation=None, owner=None):
        self.model = model
        self.graph = graph
        self.relation = relation
        self.owner = owner
        self.nodes: list[InsertNode] = []
        self.edges: list[GraphEdge] = []
        self.roots: list[InsertNode] = []
        self.order: list[InsertNode] = []
        self._by_uid: dict[str, InsertNode] = {}
        self._aliases: list[tuple[Any, InsertNode, str, dict[str, Any]]] = []
        self._built = False

    # analysis

    def _new_node(self, model: type, **fields) -> InsertNode:
        node = InsertNode(index=len(self.nodes), model=model, **fields)
        self.nodes.append(node)
        return node

    def _join_extra(self, relation, data: Mapping) -> dict[str, Any]:
        columns = getattr(relation, "join_table_extra_columns", ())
        return {column: data[column] for column in columns if column in data}

    def _visit(self, item: Any, model: type, parent: Optional[InsertNode] = None, relation=None) -> None:
        if isinstance(item, Model):
            data = {name: getattr(item, name) for name in item.model_fields_set}
            data.update(item.__pydantic_extra__ or {})
        elif isinstance(item, Mapping):
            data = dict(item)
        else:
            raise GraphError(f"expected an object for {model.__name__} in the insert graph, got {item!r}")

        if ALIAS_MARKER in data:
            if parent is None:
                raise GraphError(f'"{ALIAS_MARKER}" cannot be used on a root of the insert graph')
            self._aliases.append((relation, parent, str(data[ALIAS_MARKER]), self._join_extra(relation, data)))
            return

        relations = model.get_relations()
        props = {key: value for key, value in data.items() if key not in relations and key not in MARKERS}
        if DB_REF_MARKER in data:
            identity = normalize_ids(data[DB_REF_MARKER], model.get_id_columns(), array_output=False)
            node = self._new_node(model, uid=f"{DB_REF_MARKER}:{model.__name__}:{identity}", existing=True,
                                  identity=identity, props=props)
        else:
            uid = data.get(ID_MARKER)
            if uid is not None:
                uid = str(uid)
                if uid in self._by_uid:
                    raise GraphError(f'duplicate "{ID_MARKER}" `{uid}` in the insert graph')
            node = self._new_node(model, uid=uid or f"__node_{len(self.nodes)}", props=props)
            self._by_uid[node.uid] = node

        if parent is None:
            self.roots.append(node)
        else:
            self.edges.append(GraphEdge(relation=relation, owner=parent, related=node,
                                        extra=self._join_extra(relation, data)))

        for name, value in data.items():
            child_relation = relations.get(name)
            if child_relation is None or value is None:
                continue
            children = value if isinstance(value, (list, tuple)) else [value]
            for child in children:
                self._visit(child, child_relation.related_model, node, child_relation)

    def _resolve_aliases(self) -> None:
        for relation, parent, uid, extra in self._aliases:
            node = self._by_uid.get(uid)
            if node is None:
                raise GraphError(f'could not resolve "{ALIAS_MARKER}" `{uid}`: no node has "{ID_MARKER}" `{uid}`')
            self.edges.append(GraphEdge(relation=relation, owner=parent, related=node, extra=extra))

    def _check_existing(self, edge: GraphEdge) -> None:
        relation = edge.relation
        for node, columns in ((edge.owner, relation.owner_columns), (edge.related, relation.related_columns)):
            if not node.can_provide(columns):
                raise GraphError(
                    f'"{DB_REF_MARKER}" rows of {node.model.__name__} can only be linked through their '
                    f"identity columns; {relation.owner_model.__name__}.{relation.name} uses {', '.join(columns)}"
                )

    def _hard_edges(self) -> set[tuple[int, int]]:
        edges = set()
        for edge in self.edges:
            self._check_existing(edge)
            if edge.owner.existing or edge.related.existing:
                continue
            kind = edge.relation.kind
            if kind == "belongs_to_one":
                edges.add((edge.related.index, edge.owner.index))
            elif kind in ("has_many", "has_one"):
                edges.add((edge.owner.index, edge.related.index))
        return edges

    def _soft_edges(self) -> set[tuple[int, int]]:
        edges = set()
        for node in self.nodes:
            for uid, _ in node.ref_references():
                referenced = self._by_uid.get(uid)
                if referenced is None:
                    raise GraphError(f'could not resolve "#ref{{{uid}...}}": no node has "{ID_MARKER}" `{uid}`')
                if referenced is not node and not referenced.existing and not node.existing:
                    edges.add((referenced.index, node.index))
        return edges

    def build(self) -> GraphInserter:
        """Flatten and order the graph.

        Raises:
            GraphError: on duplicate ``#id``, dangling ``#ref``, or a cycle of
                must-exist-before dependencies.
        """
        if self._built:
            return self
        if self.owner is not None:
            owner_node = self._new_node(type(self.owner), uid="__owner", existing=True,
                                        identity=self.owner.id_values(), instance=self.owner)
        items = self.graph if isinstance(self.graph, (list, tuple)) else [self.graph]
        for item in items:
            if self.owner is not None:
                self._visit(item, self.model, owner_node, self.relation)
            else:
                self._visit(item, self.model)
        self._resolve_aliases()
        if self.owner is not None:
            self.roots = [edge.related for edge in self.edges if edge.owner is owner_node]

        hard = self._hard_edges()
        ordered, left = _sort(self.nodes, hard | self._soft_edges())
        if left:
            ordered, left = _sort(self.nodes, hard)
        if left:
            raise GraphError(
                "the insert graph contains a cyclic dependency between "
                + ", ".join(f"{node.model.__name__} `{node.uid}`" for node in left)
            )
        self.order = ordered
        self._built = True
        logger.debug("Insert graph order: %s", ", ".join(node.uid for node in ordered if not node.existing))
        return self

    # execution

    def _column_value(self, uid: str, column: str) -> Any:
        node = self._by_uid[uid]
        if not node.done:
            return _UNRESOLVED
        return node.values((column,))[0]

    def _substitute(self, value: str) -> tuple[Any, bool]:
        whole = REF_PATTERN.fullmatch(value)
        if whole is not None:
            resolved = self._column_value(*whole.groups())
            if resolved is _UNRESOLVED:
                return value, False
            return resolved, True
        unresolved = []

        def replace(match):
            resolved = self._column_value(*match.groups())
            if resolved is _UNRESOLVED:
                unresolved.append(match.group(0))
                return match.group(0)
            # NULL renders as an empty string inside text
            return "" if resolved is None else str(resolved)

        result = REF_PATTERN.sub(replace, value)
        return result, not unresolved

    def _foreign_keys(self, node: InsertNode) -> dict[str, Any]:
        values = {}
        for edge in self.edges:
            relation = edge.relation
            if relation.kind == "belongs_to_one" and edge.owner is node and edge.related.done:
                values.update(zip(relation.owner_columns, edge.related.values(relation.related_columns)))
            elif relation.kind in ("has_many", "has_one") and edge.related is node and edge.owner.done:
                values.update(zip(relation.related_columns, edge.owner.values(relation.owner_columns)))
        return values

    def _insert(self, node: InsertNode, connection) -> None:
        props = dict(node.props)
        for key, value in node.props.items():
            if isinstance(value, str) and REF_PATTERN.search(value):
                resolved, ok = self._substitute(value)
                if ok:
                    props[key] = resolved
                else:
                    node.deferred[key] = value
                    del props[key]
        props.update(self._foreign_keys(node))
        instance = node.model.validate_json(props, patch=bool(node.deferred))
        for edge in self.edges:
            if edge.related is node and edge.relation.kind == "many_to_many":
                edge.relation.omit_extra_columns([instance])
        model = node.model
        identity = connection.run(InsertStatement(
            table=model.get_table_name(),
            rows=[instance.database_json()],
            returning=model.get_id_columns(),
        ))[0]
        instance.set_values({column: value for column, value in identity.items() if value is not None})
        node.instance = instance

    def _relate_patches(self, connection) -> None:
        for edge in self.edges:
            relation = edge.relation
            if relation.kind == "belongs_to_one" and edge.owner.existing:
                target, values = edge.owner, dict(zip(relation.owner_columns,
                                                      edge.related.values(relation.related_columns)))
            elif relation.kind in ("has_many", "has_one") and edge.related.existing:
                target, values = edge.related, dict(zip(relation.related_columns,
                                                        edge.owner.values(relation.owner_columns)))
            else:
                continue
            model = target.model
            connection.run(UpdateStatement(
                table=model.get_table_name(),
                values_to_set=values,
                where=composite_equals(model.get_full_id_columns(), target.identity),
            ))
            if target.instance is not None:
                target.instance.set_values(values)

    def _join_rows(self, connection) -> None:
        for edge in self.edges:
            relation = edge.relation
            if relation.kind != "many_to_many":
                continue
            related = dict(zip(relation.related_columns, edge.related.values(relation.related_columns)))
            related.update(edge.extra)
            rows = relation.create_join_rows(edge.owner.values(relation.owner_columns), [related])
            connection.run(InsertStatement(table=relation.join_table, rows=rows))

    def _ref_patches(self) -> None:
        for node in self.order:
            if not node.deferred:
                continue
            values = {}
            for key, value in node.deferred.items():
                resolved, ok = self._substitute(value)
                if not ok:
                    raise GraphError(f"could not resolve `{value}` of {node.model.__name__} `{node.uid}`")
                values[key] = resolved
            model = node.model
            model.query().where_composite(model.get_id_columns(), node.instance.id_values()).patch(values).execute()
            node.instance.set_values(values)

    def _attach(self) -> None:
        for node in self.nodes:
            if node.instance is None:
                identity = dict(zip(node.model.get_id_columns(), node.identity or ()))
                node.instance = node.model.from_database_row({**node.props, **identity})
        attached: dict[tuple[int, str], list[Any]] = {}
        for edge in self.edges:
            relation = edge.relation
            key = (edge.owner.index, relation.name)
            if key not in attached:
                existing = edge.owner.instance._get_value(relation.name) if edge.owner.uid == "__owner" else None
                attached[key] = list(existing) if isinstance(existing, list) else []
            attached[key].append(edge.related.instance)
            value = attached[key] if not relation.is_one_to_one else attached[key][-1]
            relation.attach(edge.owner.instance, value)

    def execute(self, connection) -> list[Any]:
        """Insert the graph and return the root instances, relations attached."""
        self.build()
        with connection.transaction():
            for node in self.order:
                if not node.existing:
                    self._insert(node, connection)
            self._relate_patches(connection)
            self._join_rows(connection)
            self._ref_patches()
        self._attach()
        return [node.instance for node in self.roots]
