"""
Read-only consistency checks over the synchronized graph.

Findings are returned as data; the analyzer never raises because of what
it finds and never writes.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..database.interface import GraphStore, SourceStore
from ..database.models import ConsistencyReport, Direction, DuplicateGroup, EntityType
from ..query_generation import sql_builder
from ..query_generation.cypher_builder import CypherBuilder
from .mapping import ENTITY_MAPPINGS, EntityMapping
from .relationships import BELONGS_TO_TENANT, HAS_SUBSCRIPTION, INVESTED_IN

logger = logging.getLogger(__name__)

# (entity type, relationship, direction) checked by `summarize`
DEFAULT_ORPHAN_CHECKS: Tuple[Tuple[EntityType, str, Direction], ...] = (
    (EntityType.USER, BELONGS_TO_TENANT, Direction.OUTGOING),
    (EntityType.ENTITY, BELONGS_TO_TENANT, Direction.OUTGOING),
    (EntityType.FUND, BELONGS_TO_TENANT, Direction.OUTGOING),
    (EntityType.SUBSCRIPTION, BELONGS_TO_TENANT, Direction.OUTGOING),
    (EntityType.FUND, HAS_SUBSCRIPTION, Direction.OUTGOING),
    (EntityType.ENTITY, INVESTED_IN, Direction.OUTGOING),
    (EntityType.SUBSCRIPTION, HAS_SUBSCRIPTION, Direction.INCOMING),
)

DEFAULT_PARALLEL_CHECKS = (BELONGS_TO_TENANT, HAS_SUBSCRIPTION, INVESTED_IN)


def orphan_check_name(
    entity_type: EntityType, relationship: str, direction: Direction
) -> str:
    """Key of an orphan check in a `ConsistencyReport`."""
    arrow = "->" if direction == Direction.OUTGOING else "<-"
    return f"{ENTITY_MAPPINGS[entity_type].label}{arrow}{relationship}"


class ConsistencyAnalyzer:
    """Finds duplicates, orphans and parallel relationships in the graph."""

    def __init__(
        self,
        graph: GraphStore,
        mappings: Optional[Dict[EntityType, EntityMapping]] = None,
    ):
        self.graph = graph
        self.mappings = mappings or ENTITY_MAPPINGS

    def find_duplicates(self, entity_type: EntityType) -> List[DuplicateGroup]:
        """
        Groups of nodes sharing a tenant scope and a name.

        Args:
            entity_type: A name-bearing entity type

        Returns:
            Duplicate groups ordered by name then scope; keys sorted ascending.
            Empty for types without a tenant-unique name.
        """
        mapping = self.mappings[entity_type]
        if not (mapping.scope_field and mapping.name_field):
            return []

        rows = self.graph.execute(
            CypherBuilder.find_duplicates(
                mapping.label, mapping.key_field, mapping.scope_field, mapping.name_field
            )
        )
        groups = [
            DuplicateGroup(
                entity_type=entity_type,
                scope_key=row["scope_key"],
                name_key=row["name_key"],
                record_keys=tuple(sorted(row["record_keys"])),
            )
            for row in rows
            if len(row["record_keys"]) > 1
        ]
        groups.sort(key=lambda g: (str(g.name_key), str(g.scope_key)))
        return groups

    def find_duplicate_ids(self, entity_type: EntityType) -> List[Dict[str, Any]]:
        """Keys carried by more than one node of a label, with their copy counts."""
        mapping = self.mappings[entity_type]
        rows = self.graph.execute(
            CypherBuilder.find_duplicate_keys(mapping.label, mapping.key_field)
        )
        return [{"key": row["key"], "copies": row["copies"]} for row in rows]

    def find_orphans(
        self,
        entity_type: EntityType,
        relationship: str,
        direction: Direction = Direction.OUTGOING,
    ) -> List[Any]:
        """
        Keys of nodes that have no relationship of the given type.

        Returns:
            Keys ordered by node name (when the type has one), then by key
        """
        mapping = self.mappings[entity_type]
        rows = self.graph.execute(
            CypherBuilder.find_orphans(
                mapping.label,
                relationship,
                direction,
                key_field=mapping.key_field,
                name_field=mapping.name_field,
            )
        )
        rows = sorted(
            rows, key=lambda r: (r.get("name") is None, r.get("name") or "", r["key"])
        )
        return [row["key"] for row in rows]

    def find_parallel_relationships(self, relationship: str) -> int:
        """Number of surplus edges between node pairs joined more than once."""
        rows = self.graph.execute(
            CypherBuilder.find_parallel_relationships(relationship)
        )
        if not rows:
            return 0
        extra = int(rows[0].get("extra_edges") or 0)
        if extra:
            logger.warning(
                "%d surplus %s edge(s) across %d node pair(s)",
                extra,
                relationship,
                rows[0].get("pairs", 0),
            )
        return extra

    def membership_counts(self, entity_type: EntityType) -> Dict[str, int]:
        """Node count of a label against its tenant membership edge count."""
        mapping = self.mappings[entity_type]
        rows = self.graph.execute(
            CypherBuilder.count_memberships(mapping.label, BELONGS_TO_TENANT)
        )
        row = rows[0] if rows else {}
        return {
            "nodes": int(row.get("nodes") or 0),
            "memberships": int(row.get("memberships") or 0),
        }

    def find_multiple_memberships(self, entity_type: EntityType) -> List[Any]:
        """Keys of nodes with more than one tenant membership edge."""
        mapping = self.mappings[entity_type]
        rows = self.graph.execute(
            CypherBuilder.find_multiple_memberships(
                mapping.label, BELONGS_TO_TENANT, mapping.key_field
            )
        )
        keys = [row["key"] for row in rows]
        if keys:
            logger.warning(
                "%d %s node(s) have more than one tenant membership",
                len(keys),
                mapping.label,
            )
        return keys

    def summarize(
        self,
        entity_types: Optional[Sequence[EntityType]] = None,
        orphan_checks: Sequence[
            Tuple[EntityType, str, Direction]
        ] = DEFAULT_ORPHAN_CHECKS,
        parallel_checks: Sequence[str] = DEFAULT_PARALLEL_CHECKS,
    ) -> ConsistencyReport:
        """Run every check and collect the findings into one report."""
        selected = list(self.mappings if entity_types is None else entity_types)
        report = ConsistencyReport()

        for entity_type in selected:
            mapping = self.mappings[entity_type]
            if mapping.name_field:
                report.duplicates[mapping.label] = self.find_duplicates(entity_type)
            if mapping.is_scoped:
                report.membership_counts[mapping.label] = self.membership_counts(
                    entity_type
                )
                report.multiple_memberships[mapping.label] = (
                    self.find_multiple_memberships(entity_type)
                )

        for entity_type, relationship, direction in orphan_checks:
            if entity_type not in selected:
                continue
            report.orphans[orphan_check_name(entity_type, relationship, direction)] = (
                self.find_orphans(entity_type, relationship, direction)
            )

        for relationship in parallel_checks:
            report.parallel_relationships[relationship] = (
                self.find_parallel_relationships(relationship)
            )

        logger.info(
            "Analysis: %d duplicate group(s), %d orphan(s), %d multi-tenant node(s)",
            report.duplicate_group_count,
            report.orphan_count,
            report.multiple_membership_count,
        )
        return report


def find_source_duplicates(
    source: SourceStore,
    entity_type: EntityType,
    tenant_id: Optional[Any] = None,
) -> List[Dict[str, Any]]:
    """
    Scope/name pairs that already repeat in the relational source.

    Running this before a migration shows which rows will end up as write
    conflicts.

    Returns:
        Dicts with `scope_key`, `name_key` and `count`, ordered by name
    """
    mapping = ENTITY_MAPPINGS[entity_type]
    if not (mapping.scope_field and mapping.name_field):
        return []
    filters = ((mapping.scope_field, tenant_id),) if tenant_id is not None else ()
    rows = source.execute(
        sql_builder.find_duplicates(
            mapping.table, mapping.scope_field, mapping.name_field, filters
        )
    )
    return [
        {
            "scope_key": row[mapping.scope_field],
            "name_key": row[mapping.name_field],
            "count": int(row["count"]),
        }
        for row in rows
    ]
