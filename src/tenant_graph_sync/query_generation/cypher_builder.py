"""
Parameterized Cypher statements, one builder per operation kind.

Labels, relationship types and property names cannot be bound as
parameters in Cypher, so they are validated against a strict identifier
pattern and backtick-quoted. Every data value is bound through `params`.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..database.models import Direction, JoinRule

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class CypherStatement:
    """
    A Cypher statement ready for execution.

    `kind` names the operation and `meta` carries the structured arguments
    the statement was built from; neither is sent to the server.
    """

    kind: str
    text: str
    params: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)


def quote_identifier(name: str) -> str:
    """Validate and backtick-quote a label, type or property name."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid graph identifier: {name!r}")
    return f"`{name}`"


class CypherBuilder:
    """Builds the statements used by the synchronization components."""

    # ------------------------------------------------------------------
    # Schema declarations
    # ------------------------------------------------------------------

    @staticmethod
    def unique_constraint(
        name: str, label: str, properties: Sequence[str]
    ) -> CypherStatement:
        """Declare uniqueness of one property or a composite of properties."""
        if not properties:
            raise ValueError("A uniqueness constraint needs at least one property")
        quoted = [f"n.{quote_identifier(prop)}" for prop in properties]
        target = quoted[0] if len(quoted) == 1 else f"({', '.join(quoted)})"
        text = (
            f"CREATE CONSTRAINT {quote_identifier(name)} IF NOT EXISTS "
            f"FOR (n:{quote_identifier(label)}) REQUIRE {target} IS UNIQUE"
        )
        return CypherStatement(
            kind="create_constraint",
            text=text,
            meta={"name": name, "label": label, "properties": tuple(properties)},
        )

    @staticmethod
    def property_index(name: str, label: str, prop: str) -> CypherStatement:
        text = (
            f"CREATE INDEX {quote_identifier(name)} IF NOT EXISTS "
            f"FOR (n:{quote_identifier(label)}) ON (n.{quote_identifier(prop)})"
        )
        return CypherStatement(
            kind="create_index",
            text=text,
            meta={"name": name, "label": label, "properties": (prop,)},
        )

    @staticmethod
    def drop_constraint(name: str) -> CypherStatement:
        return CypherStatement(
            kind="drop_constraint",
            text=f"DROP CONSTRAINT {quote_identifier(name)} IF EXISTS",
            meta={"name": name},
        )

    @staticmethod
    def drop_index(name: str) -> CypherStatement:
        return CypherStatement(
            kind="drop_index",
            text=f"DROP INDEX {quote_identifier(name)} IF EXISTS",
            meta={"name": name},
        )

    @staticmethod
    def show_constraints() -> CypherStatement:
        return CypherStatement(
            kind="show_constraints", text="SHOW CONSTRAINTS YIELD name RETURN name"
        )

    @staticmethod
    def show_indexes() -> CypherStatement:
        return CypherStatement(
            kind="show_indexes", text="SHOW INDEXES YIELD name RETURN name"
        )

    # ------------------------------------------------------------------
    # Node upserts
    # ------------------------------------------------------------------

    @staticmethod
    def merge_nodes(
        label: str,
        rows: List[Dict[str, Any]],
        key_field: str = "id",
        scope_field: Optional[str] = None,
        name_field: Optional[str] = None,
    ) -> CypherStatement:
        """
        Upsert a batch of nodes in one round trip.

        Each row is `{key, tenant_id, name, properties}`. For name-bearing
        labels a row is skipped when another key already holds the same
        name in the same tenant; the keys that were actually merged come
        back as `applied`.
        """
        node = quote_identifier(label)
        key = quote_identifier(key_field)

        if scope_field and name_field:
            scope = quote_identifier(scope_field)
            name = quote_identifier(name_field)
            text = f"""
            UNWIND $rows AS row
            OPTIONAL MATCH (existing:{node} {{{scope}: row.tenant_id, {name}: row.name}})
            WHERE existing.{key} <> row.key
            WITH row, count(existing) AS conflicts
            WHERE conflicts = 0
            MERGE (n:{node} {{{key}: row.key}})
            SET n += row.properties
            RETURN collect(row.key) AS applied
            """
        else:
            text = f"""
            UNWIND $rows AS row
            MERGE (n:{node} {{{key}: row.key}})
            SET n += row.properties
            RETURN collect(row.key) AS applied
            """

        return CypherStatement(
            kind="merge_nodes",
            text=_dedent(text),
            params={"rows": rows},
            meta={
                "label": label,
                "key_field": key_field,
                "scope_field": scope_field,
                "name_field": name_field,
            },
        )

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    @staticmethod
    def link(source_label: str, target_label: str, rule: JoinRule) -> CypherStatement:
        """
        Create missing relationships between already written nodes.

        The relationship is created only where no edge of the same type
        already joins the ordered pair, so repeated runs add nothing.
        """
        source = quote_identifier(source_label)
        target = quote_identifier(target_label)
        rel = quote_identifier(rule.relationship)

        if rule.is_indirect:
            if not rule.source_on or not rule.target_on:
                raise ValueError(
                    f"Indirect rule {rule.relationship} needs source_on and target_on"
                )
            via = quote_identifier(rule.via_label)
            source_match = _conditions("s", "v", [(s, v) for v, s in rule.source_on])
            target_match = _conditions("t", "v", [(t, v) for v, t in rule.target_on])
            text = f"""
            MATCH (v:{via})
            MATCH (s:{source}) WHERE {source_match}
            MATCH (t:{target}) WHERE {target_match}
            WITH DISTINCT s, t
            WHERE NOT (s)-[:{rel}]->(t)
            CREATE (s)-[:{rel}]->(t)
            RETURN count(*) AS created
            """
        else:
            if not rule.on:
                raise ValueError(f"Rule {rule.relationship} has no join conditions")
            target_match = _conditions("t", "s", [(t, s) for s, t in rule.on])
            text = f"""
            MATCH (s:{source})
            MATCH (t:{target}) WHERE {target_match}
            WITH DISTINCT s, t
            WHERE NOT (s)-[:{rel}]->(t)
            CREATE (s)-[:{rel}]->(t)
            RETURN count(*) AS created
            """

        return CypherStatement(
            kind="link",
            text=_dedent(text),
            meta={
                "source_label": source_label,
                "target_label": target_label,
                "rule": rule,
            },
        )

    @staticmethod
    def prune_links(
        source_label: str, target_label: str, rule: JoinRule
    ) -> CypherStatement:
        """
        Delete relationships of the rule's type that the rule no longer implies.

        A node whose tenant or name changed keeps its old edges otherwise;
        pruning before linking leaves exactly the edges the rule derives.
        """
        source = quote_identifier(source_label)
        target = quote_identifier(target_label)
        rel = quote_identifier(rule.relationship)

        if rule.is_indirect:
            if not rule.source_on or not rule.target_on:
                raise ValueError(
                    f"Indirect rule {rule.relationship} needs source_on and target_on"
                )
            via = quote_identifier(rule.via_label)
            conditions = " AND ".join(
                [
                    _conditions("s", "v", [(s, v) for v, s in rule.source_on]),
                    _conditions("t", "v", [(t, v) for v, t in rule.target_on]),
                ]
            )
            text = f"""
            MATCH (s:{source})-[r:{rel}]->(t:{target})
            WHERE NOT EXISTS {{ MATCH (v:{via}) WHERE {conditions} }}
            DELETE r
            RETURN count(r) AS removed
            """
        else:
            if not rule.on:
                raise ValueError(f"Rule {rule.relationship} has no join conditions")
            conditions = _conditions("t", "s", [(t, s) for s, t in rule.on])
            # A null comparison counts as a mismatch.
            text = f"""
            MATCH (s:{source})-[r:{rel}]->(t:{target})
            WHERE NOT coalesce({conditions}, false)
            DELETE r
            RETURN count(r) AS removed
            """

        return CypherStatement(
            kind="prune_links",
            text=_dedent(text),
            meta={
                "source_label": source_label,
                "target_label": target_label,
                "rule": rule,
            },
        )

    @staticmethod
    def delete_parallel_relationships(relationship: str) -> CypherStatement:
        """Keep one relationship per ordered node pair and delete the rest."""
        rel = quote_identifier(relationship)
        text = f"""
        MATCH (a)-[r:{rel}]->(b)
        WITH a, b, collect(r) AS edges
        WHERE size(edges) > 1
        UNWIND edges[1..] AS extra
        DELETE extra
        RETURN count(extra) AS removed
        """
        return CypherStatement(
            kind="delete_parallel_relationships",
            text=_dedent(text),
            meta={"relationship": relationship},
        )

    # ------------------------------------------------------------------
    # Consistency queries (read only)
    # ------------------------------------------------------------------

    @staticmethod
    def find_duplicates(
        label: str, key_field: str, scope_field: str, name_field: str
    ) -> CypherStatement:
        node = quote_identifier(label)
        key = quote_identifier(key_field)
        scope = quote_identifier(scope_field)
        name = quote_identifier(name_field)
        text = f"""
        MATCH (n:{node})
        WHERE n.{scope} IS NOT NULL AND n.{name} IS NOT NULL
        WITH n.{scope} AS scope_key, n.{name} AS name_key, collect(n.{key}) AS record_keys
        WHERE size(record_keys) > 1
        RETURN scope_key, name_key, record_keys
        ORDER BY name_key, scope_key
        """
        return CypherStatement(
            kind="find_duplicates",
            text=_dedent(text),
            meta={
                "label": label,
                "key_field": key_field,
                "scope_field": scope_field,
                "name_field": name_field,
            },
        )

    @staticmethod
    def find_duplicate_keys(label: str, key_field: str) -> CypherStatement:
        node = quote_identifier(label)
        key = quote_identifier(key_field)
        text = f"""
        MATCH (n:{node})
        WHERE n.{key} IS NOT NULL
        WITH n.{key} AS key, count(n) AS copies
        WHERE copies > 1
        RETURN key, copies
        ORDER BY key
        """
        return CypherStatement(
            kind="find_duplicate_keys",
            text=_dedent(text),
            meta={"label": label, "key_field": key_field},
        )

    @staticmethod
    def find_orphans(
        label: str,
        relationship: str,
        direction: Direction = Direction.OUTGOING,
        key_field: str = "id",
        name_field: Optional[str] = None,
    ) -> CypherStatement:
        node = quote_identifier(label)
        rel = quote_identifier(relationship)
        key = quote_identifier(key_field)
        pattern = (
            f"(n)-[:{rel}]->()"
            if direction == Direction.OUTGOING
            else f"(n)<-[:{rel}]-()"
        )
        name_expr = f"n.{quote_identifier(name_field)}" if name_field else "null"
        text = f"""
        MATCH (n:{node})
        WHERE NOT {pattern}
        RETURN n.{key} AS key, {name_expr} AS name
        ORDER BY name, key
        """
        return CypherStatement(
            kind="find_orphans",
            text=_dedent(text),
            meta={
                "label": label,
                "relationship": relationship,
                "direction": direction,
                "key_field": key_field,
                "name_field": name_field,
            },
        )

    @staticmethod
    def find_parallel_relationships(relationship: str) -> CypherStatement:
        rel = quote_identifier(relationship)
        text = f"""
        MATCH (a)-[r:{rel}]->(b)
        WITH a, b, count(r) AS edges
        WHERE edges > 1
        RETURN count(*) AS pairs, coalesce(sum(edges - 1), 0) AS extra_edges
        """
        return CypherStatement(
            kind="find_parallel_relationships",
            text=_dedent(text),
            meta={"relationship": relationship},
        )

    @staticmethod
    def count_memberships(label: str, relationship: str) -> CypherStatement:
        node = quote_identifier(label)
        rel = quote_identifier(relationship)
        text = f"""
        MATCH (n:{node})
        OPTIONAL MATCH (n)-[r:{rel}]->(:`Tenant`)
        RETURN count(DISTINCT n) AS nodes, count(r) AS memberships
        """
        return CypherStatement(
            kind="count_memberships",
            text=_dedent(text),
            meta={"label": label, "relationship": relationship},
        )

    @staticmethod
    def find_multiple_memberships(
        label: str, relationship: str, key_field: str = "id"
    ) -> CypherStatement:
        node = quote_identifier(label)
        rel = quote_identifier(relationship)
        key = quote_identifier(key_field)
        text = f"""
        MATCH (n:{node})-[r:{rel}]->(:`Tenant`)
        WITH n, count(r) AS memberships
        WHERE memberships > 1
        RETURN n.{key} AS key, memberships
        ORDER BY key
        """
        return CypherStatement(
            kind="find_multiple_memberships",
            text=_dedent(text),
            meta={"label": label, "relationship": relationship, "key_field": key_field},
        )

    # ------------------------------------------------------------------
    # Duplicate resolution
    # ------------------------------------------------------------------

    @staticmethod
    def fetch_group(
        label: str,
        key_field: str,
        scope_field: str,
        name_field: str,
        scope_key: Any,
        name_key: Any,
    ) -> CypherStatement:
        node = quote_identifier(label)
        key = quote_identifier(key_field)
        scope = quote_identifier(scope_field)
        name = quote_identifier(name_field)
        text = f"""
        MATCH (n:{node})
        WHERE n.{scope} = $scope_key AND n.{name} = $name_key
        RETURN n.{key} AS key, n.updated_at AS updated_at, n.created_at AS created_at
        ORDER BY key
        """
        return CypherStatement(
            kind="fetch_group",
            text=_dedent(text),
            params={"scope_key": scope_key, "name_key": name_key},
            meta={
                "label": label,
                "key_field": key_field,
                "scope_field": scope_field,
                "name_field": name_field,
            },
        )

    @staticmethod
    def delete_nodes(label: str, key_field: str, keys: List[Any]) -> CypherStatement:
        """Delete nodes by key together with all their relationships."""
        node = quote_identifier(label)
        key = quote_identifier(key_field)
        text = f"""
        MATCH (n:{node})
        WHERE n.{key} IN $keys
        WITH n, n.{key} AS key
        DETACH DELETE n
        RETURN collect(key) AS removed
        """
        return CypherStatement(
            kind="delete_nodes",
            text=_dedent(text),
            params={"keys": list(keys)},
            meta={"label": label, "key_field": key_field},
        )


def _conditions(left: str, right: str, pairs: List[Tuple[str, str]]) -> str:
    """Render `left.a = right.b AND ...` for (a, b) property pairs."""
    return " AND ".join(
        f"{left}.{quote_identifier(a)} = {right}.{quote_identifier(b)}"
        for a, b in pairs
    )


def _dedent(text: str) -> str:
    return "\n".join(line.strip() for line in text.strip().splitlines())
