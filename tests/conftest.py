"""Shared fixtures: in-memory stores that interpret the engine's statements."""

from collections import defaultdict
from itertools import count
from typing import Any, Dict, List, Optional

import pytest

from tenant_graph_sync.database.interface import GraphStore, SourceStore
from tenant_graph_sync.database.models import Direction
from tenant_graph_sync.errors import WriteConflictError


class FakeNode:
    _ids = count()

    def __init__(self, label: str, properties: Dict[str, Any]):
        self.node_id = next(self._ids)
        self.label = label
        self.properties = dict(properties)


class FakeGraphStore(GraphStore):
    """
    Graph store emulating the semantics of every statement kind the
    builders produce. Failures can be injected per statement kind.
    """

    def __init__(self):
        self.nodes: Dict[str, List[FakeNode]] = defaultdict(list)
        self.edges: List[tuple] = []
        self.constraints: Dict[str, tuple] = {}
        self.indexes: set = set()
        self.executed: List[Any] = []
        self.rejected_keys: set = set()
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self.closed = False

    # -- test helpers ---------------------------------------------------

    def fail_next(self, kind: str, error: Exception, times: int = 1) -> None:
        self._failures[kind].extend([error] * times)

    def add_node(self, label: str, **properties) -> FakeNode:
        node = FakeNode(label, properties)
        self.nodes[label].append(node)
        return node

    def add_edge(self, source: FakeNode, relationship: str, target: FakeNode) -> None:
        self.edges.append((source, relationship, target))

    def node(self, label: str, key: Any, key_field: str = "id") -> Optional[FakeNode]:
        for node in self.nodes[label]:
            if node.properties.get(key_field) == key:
                return node
        return None

    def count_edges(self, relationship: str) -> int:
        return sum(1 for _, rel, _ in self.edges if rel == relationship)

    # -- GraphStore -----------------------------------------------------

    def query(self, statement, params=None):
        if statement == "RETURN 1 AS ok":
            return [{"ok": 1}]
        raise NotImplementedError("FakeGraphStore only runs builder statements")

    def test_connection(self):
        return True

    def close(self):
        self.closed = True

    def execute(self, statement):
        self.executed.append(statement)
        pending = self._failures.get(statement.kind)
        if pending:
            raise pending.pop(0)
        handler = getattr(self, f"_run_{statement.kind}")
        return handler(statement.params, **statement.meta)

    # -- schema ---------------------------------------------------------

    def _run_create_constraint(self, params, name, label, properties):
        if name in self.constraints:
            return []
        seen = set()
        for node in self.nodes[label]:
            values = tuple(node.properties.get(p) for p in properties)
            if None in values:
                continue
            if values in seen:
                raise WriteConflictError(f"Unable to create constraint {name}")
            seen.add(values)
        self.constraints[name] = (label, tuple(properties))
        return []

    def _run_create_index(self, params, name, label, properties):
        self.indexes.add(name)
        return []

    def _run_drop_constraint(self, params, name):
        self.constraints.pop(name, None)
        return []

    def _run_drop_index(self, params, name):
        self.indexes.discard(name)
        return []

    def _run_show_constraints(self, params):
        return [{"name": name} for name in sorted(self.constraints)]

    def _run_show_indexes(self, params):
        return [{"name": name} for name in sorted(self.indexes)]

    # -- writes ---------------------------------------------------------

    def _run_merge_nodes(self, params, label, key_field, scope_field, name_field):
        rows = params["rows"]
        rejected = [row["key"] for row in rows if row["key"] in self.rejected_keys]
        if rejected:
            # The whole statement rolls back, as a transaction would.
            raise WriteConflictError(f"Constraint violated by {rejected}")

        applied = []
        for row in rows:
            if scope_field and name_field:
                holders = [
                    n
                    for n in self.nodes[label]
                    if n.properties.get(scope_field) == row["tenant_id"]
                    and n.properties.get(name_field) == row["name"]
                    and n.properties.get(key_field) != row["key"]
                ]
                if holders:
                    continue
            node = self.node(label, row["key"], key_field)
            if node is None:
                node = self.add_node(label, **{key_field: row["key"]})
            node.properties.update(row["properties"])
            applied.append(row["key"])
        return [{"applied": applied}]

    def _run_link(self, params, source_label, target_label, rule):
        pairs = []
        if rule.is_indirect:
            for via in self.nodes[rule.via_label]:
                sources = [
                    s
                    for s in self.nodes[source_label]
                    if _matches(via, s, rule.source_on)
                ]
                targets = [
                    t
                    for t in self.nodes[target_label]
                    if _matches(via, t, rule.target_on)
                ]
                pairs.extend((s, t) for s in sources for t in targets)
        else:
            for s in self.nodes[source_label]:
                for t in self.nodes[target_label]:
                    if _matches(s, t, rule.on):
                        pairs.append((s, t))

        created = 0
        seen = set()
        for s, t in pairs:
            if (s.node_id, t.node_id) in seen:
                continue
            seen.add((s.node_id, t.node_id))
            if any(
                a is s and rel == rule.relationship and b is t
                for a, rel, b in self.edges
            ):
                continue
            self.edges.append((s, rule.relationship, t))
            created += 1
        return [{"created": created}]

    def _run_prune_links(self, params, source_label, target_label, rule):
        def implied(s, t):
            if not rule.is_indirect:
                return _matches(s, t, rule.on)
            return any(
                _matches(via, s, rule.source_on) and _matches(via, t, rule.target_on)
                for via in self.nodes[rule.via_label]
            )

        stale = [
            (a, rel, b)
            for a, rel, b in self.edges
            if rel == rule.relationship
            and a.label == source_label
            and b.label == target_label
            and not implied(a, b)
        ]
        self.edges = [edge for edge in self.edges if edge not in stale]
        return [{"removed": len(stale)}]

    def _run_delete_parallel_relationships(self, params, relationship):
        kept = []
        seen = set()
        removed = 0
        for a, rel, b in self.edges:
            if rel == relationship:
                if (a.node_id, b.node_id) in seen:
                    removed += 1
                    continue
                seen.add((a.node_id, b.node_id))
            kept.append((a, rel, b))
        self.edges = kept
        return [{"removed": removed}]

    def _run_delete_nodes(self, params, label, key_field):
        keys = set(params["keys"])
        doomed = [n for n in self.nodes[label] if n.properties.get(key_field) in keys]
        self.nodes[label] = [n for n in self.nodes[label] if n not in doomed]
        self.edges = [
            (a, rel, b) for a, rel, b in self.edges if a not in doomed and b not in doomed
        ]
        return [{"removed": [n.properties.get(key_field) for n in doomed]}]

    # -- reads ----------------------------------------------------------

    def _run_find_duplicates(self, params, label, key_field, scope_field, name_field):
        groups = defaultdict(list)
        for node in self.nodes[label]:
            scope = node.properties.get(scope_field)
            name = node.properties.get(name_field)
            if scope is None or name is None:
                continue
            groups[(scope, name)].append(node.properties.get(key_field))
        return [
            {"scope_key": scope, "name_key": name, "record_keys": keys}
            for (scope, name), keys in sorted(groups.items(), key=lambda i: (i[0][1], i[0][0]))
            if len(keys) > 1
        ]

    def _run_find_duplicate_keys(self, params, label, key_field):
        copies = defaultdict(int)
        for node in self.nodes[label]:
            copies[node.properties.get(key_field)] += 1
        return [
            {"key": key, "copies": n}
            for key, n in sorted(copies.items())
            if key is not None and n > 1
        ]

    def _run_find_orphans(
        self, params, label, relationship, direction, key_field, name_field
    ):
        rows = []
        for node in self.nodes[label]:
            if direction == Direction.OUTGOING:
                linked = any(a is node and rel == relationship for a, rel, _ in self.edges)
            else:
                linked = any(b is node and rel == relationship for _, rel, b in self.edges)
            if not linked:
                rows.append(
                    {
                        "key": node.properties.get(key_field),
                        "name": node.properties.get(name_field) if name_field else None,
                    }
                )
        # Deliberately unordered: callers must sort.
        return list(reversed(rows))

    def _run_find_parallel_relationships(self, params, relationship):
        counts = defaultdict(int)
        for a, rel, b in self.edges:
            if rel == relationship:
                counts[(a.node_id, b.node_id)] += 1
        multi = [n for n in counts.values() if n > 1]
        return [{"pairs": len(multi), "extra_edges": sum(n - 1 for n in multi)}]

    def _run_count_memberships(self, params, label, relationship):
        nodes = self.nodes[label]
        memberships = sum(
            1
            for a, rel, b in self.edges
            if rel == relationship and a in nodes and b.label == "Tenant"
        )
        return [{"nodes": len(nodes), "memberships": memberships}]

    def _run_find_multiple_memberships(self, params, label, relationship, key_field):
        memberships = defaultdict(int)
        keys = {}
        for a, rel, b in self.edges:
            if rel == relationship and a.label == label and b.label == "Tenant":
                memberships[a.node_id] += 1
                keys[a.node_id] = a.properties.get(key_field)
        return sorted(
            (
                {"key": keys[node_id], "memberships": n}
                for node_id, n in memberships.items()
                if n > 1
            ),
            key=lambda row: str(row["key"]),
        )

    def _run_fetch_group(self, params, label, key_field, scope_field, name_field):
        return [
            {
                "key": n.properties.get(key_field),
                "updated_at": n.properties.get("updated_at"),
                "created_at": n.properties.get("created_at"),
            }
            for n in sorted(
                self.nodes[label], key=lambda n: str(n.properties.get(key_field))
            )
            if n.properties.get(scope_field) == params["scope_key"]
            and n.properties.get(name_field) == params["name_key"]
        ]


def _matches(left: FakeNode, right: FakeNode, pairs) -> bool:
    for left_prop, right_prop in pairs:
        value = left.properties.get(left_prop)
        if value is None or value != right.properties.get(right_prop):
            return False
    return True


class FakeSourceStore(SourceStore):
    """Relational source holding rows per table, answering builder statements."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables = tables or {}
        self.executed: List[Any] = []
        self.connected = False
        self.connect_count = 0

    def connect(self):
        self.connected = True
        self.connect_count += 1

    def close(self):
        self.connected = False

    def query(self, sql, params=None):
        raise NotImplementedError("FakeSourceStore only runs builder statements")

    def test_connection(self):
        return True

    def execute(self, statement):
        self.executed.append(statement)
        rows = [
            row
            for row in self.tables.get(statement.table, [])
            if all(str(row.get(column)) == str(value) for column, value in statement.filters)
        ]

        if statement.kind == "count_rows":
            return [{"count": len(rows)}]

        if statement.kind == "find_duplicates":
            groups = defaultdict(int)
            for row in rows:
                groups[tuple(row.get(c) for c in statement.group_by)] += 1
            return [
                dict(zip(statement.group_by, values), count=n)
                for values, n in sorted(groups.items(), key=lambda i: str(i[0][1]))
                if n > 1
            ]

        rows = sorted(rows, key=lambda row: row[statement.order_by])
        start = statement.offset or 0
        return [dict(row) for row in rows[start : start + statement.limit]]


@pytest.fixture
def graph():
    return FakeGraphStore()


@pytest.fixture
def source():
    return FakeSourceStore()
