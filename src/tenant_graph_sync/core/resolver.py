"""
Duplicate resolution: keep the most recently updated record of a group.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..database.interface import GraphStore
from ..database.models import DuplicateGroup, EntityType, ResolutionResult
from ..query_generation.cypher_builder import CypherBuilder
from .analysis import ConsistencyAnalyzer
from .mapping import ENTITY_MAPPINGS, EntityMapping

logger = logging.getLogger(__name__)

_NO_STAMP = datetime.min.replace(tzinfo=timezone.utc)


def _as_utc(value: Any) -> Optional[datetime]:
    """Timestamp as an aware UTC datetime. Naive values are taken as UTC."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is None or value.utcoffset() is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time(), tzinfo=timezone.utc)
    return None


def _recency(record: Dict[str, Any]) -> Tuple:
    """Sort key: newest updated_at, then created_at, then the greatest key."""
    stamp = _as_utc(record.get("updated_at") or record.get("created_at"))
    return (stamp is not None, stamp or _NO_STAMP, record["key"])


class DuplicateResolver:
    """
    Removes all but one node of a duplicate group.

    The group is re-read before deleting anything, so a stale finding can
    at worst make the resolver do nothing.
    """

    def __init__(
        self,
        graph: GraphStore,
        mappings: Optional[Dict[EntityType, EntityMapping]] = None,
    ):
        self.graph = graph
        self.mappings = mappings or ENTITY_MAPPINGS

    def plan(self, group: DuplicateGroup) -> ResolutionResult:
        """Decide which record survives without changing the graph."""
        mapping = self.mappings[group.entity_type]
        records = self.graph.execute(
            CypherBuilder.fetch_group(
                mapping.label,
                mapping.key_field,
                mapping.scope_field,
                mapping.name_field,
                group.scope_key,
                group.name_key,
            )
        )
        if len(records) < 2:
            kept = records[0]["key"] if records else None
            return ResolutionResult(kept=kept, removed=[])

        survivor = max(records, key=_recency)
        removed = sorted(r["key"] for r in records if r["key"] != survivor["key"])
        return ResolutionResult(kept=survivor["key"], removed=removed)

    def resolve(self, group: DuplicateGroup) -> ResolutionResult:
        """
        Keep the newest record of a group and delete the others.

        Args:
            group: Duplicate group as reported by the analyzer

        Returns:
            ResolutionResult naming the kept key and the removed keys; nothing
            is removed when fewer than two live records remain
        """
        decision = self.plan(group)
        if not decision.removed:
            logger.info(
                "%s group (%s, %r) no longer has duplicates",
                group.entity_type.value,
                group.scope_key,
                group.name_key,
            )
            return decision

        mapping = self.mappings[group.entity_type]
        logger.warning(
            "Resolving %s duplicates for (%s, %r): keeping %r, removing %s",
            mapping.label,
            group.scope_key,
            group.name_key,
            decision.kept,
            decision.removed,
        )
        rows = self.graph.execute(
            CypherBuilder.delete_nodes(
                mapping.label, mapping.key_field, decision.removed
            )
        )
        removed = sorted(rows[0]["removed"]) if rows else []
        logger.warning(
            "Resolved %s duplicates for (%s, %r): kept %r, removed %s",
            mapping.label,
            group.scope_key,
            group.name_key,
            decision.kept,
            removed,
        )
        return ResolutionResult(kept=decision.kept, removed=removed)

    def resolve_all(
        self,
        entity_type: EntityType,
        analyzer: Optional[ConsistencyAnalyzer] = None,
        dry_run: bool = False,
    ) -> List[ResolutionResult]:
        """Resolve (or, with `dry_run`, only plan) every current duplicate group."""
        analyzer = analyzer or ConsistencyAnalyzer(self.graph, self.mappings)
        groups = analyzer.find_duplicates(entity_type)
        action = self.plan if dry_run else self.resolve
        results = [action(group) for group in groups]
        logger.info(
            "%s %d %s duplicate group(s)",
            "Planned" if dry_run else "Resolved",
            len(results),
            entity_type.value,
        )
        return results
