"""
Relationship derivation between already synchronized nodes.

Relationships are never read from the source: they are derived inside the
graph by joining node properties, which makes the pass idempotent and
independent of the order in which node types were written.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..database.interface import GraphStore
from ..database.models import EntityType, JoinRule, LinkResult
from ..query_generation.cypher_builder import CypherBuilder
from .mapping import ENTITY_MAPPINGS, EntityMapping

logger = logging.getLogger(__name__)

BELONGS_TO_TENANT = "BELONGS_TO_TENANT"
INVESTED_IN = "INVESTED_IN"
HAS_SUBSCRIPTION = "HAS_SUBSCRIPTION"
MANAGED_BY_ENTITY = "MANAGED_BY_ENTITY"


@dataclass(frozen=True)
class LinkStep:
    """One entry of a link plan."""

    source_type: EntityType
    target_type: EntityType
    rule: JoinRule


def default_link_plan(include_managers: bool = False) -> List[LinkStep]:
    """
    The relationships derived after every node sync.

    Args:
        include_managers: Also link funds to the entity named as their
            investment manager within the same tenant

    Returns:
        Ordered list of link steps
    """
    membership = JoinRule(BELONGS_TO_TENANT, on=(("tenant_id", "id"),))
    plan = [
        LinkStep(entity_type, EntityType.TENANT, membership)
        for entity_type in (
            EntityType.USER,
            EntityType.ENTITY,
            EntityType.FUND,
            EntityType.SUBSCRIPTION,
        )
    ]
    plan.extend(
        [
            LinkStep(
                EntityType.FUND,
                EntityType.SUBSCRIPTION,
                JoinRule(
                    HAS_SUBSCRIPTION,
                    on=(("tenant_id", "tenant_id"), ("fund_name", "fund_name")),
                ),
            ),
            LinkStep(
                EntityType.ENTITY,
                EntityType.SUBSCRIPTION,
                JoinRule(
                    HAS_SUBSCRIPTION,
                    on=(
                        ("tenant_id", "tenant_id"),
                        ("investment_entity", "investment_entity"),
                    ),
                ),
            ),
            LinkStep(
                EntityType.ENTITY,
                EntityType.FUND,
                JoinRule(
                    INVESTED_IN,
                    via_label="Subscription",
                    source_on=(
                        ("tenant_id", "tenant_id"),
                        ("investment_entity", "investment_entity"),
                    ),
                    target_on=(("tenant_id", "tenant_id"), ("fund_name", "fund_name")),
                ),
            ),
        ]
    )
    if include_managers:
        plan.append(
            LinkStep(
                EntityType.FUND,
                EntityType.ENTITY,
                JoinRule(
                    MANAGED_BY_ENTITY,
                    on=(
                        ("tenant_id", "tenant_id"),
                        ("investment_manager_name", "investment_entity"),
                    ),
                ),
            )
        )
    return plan


class RelationshipBuilder:
    """Keeps the relationships of join rules in step with the existing nodes."""

    def __init__(
        self,
        graph: GraphStore,
        mappings: Optional[Dict[EntityType, EntityMapping]] = None,
    ):
        self.graph = graph
        self.mappings = mappings or ENTITY_MAPPINGS

    def link(
        self, source_type: EntityType, target_type: EntityType, join_rule: JoinRule
    ) -> LinkResult:
        """
        Make the rule's relationships match the current node properties.

        Relationships the rule no longer implies, such as the membership of
        a node that moved to another tenant, are deleted first. Every
        implied relationship that does not exist yet is then created.

        Args:
            source_type: Entity type at the start of the relationship
            target_type: Entity type at the end of the relationship
            join_rule: How source and target nodes are paired

        Returns:
            LinkResult with the number of relationships removed and created
        """
        source_label = self.mappings[source_type].label
        target_label = self.mappings[target_type].label

        rows = self.graph.execute(
            CypherBuilder.prune_links(source_label, target_label, join_rule)
        )
        removed = int(rows[0]["removed"]) if rows else 0
        if removed:
            logger.warning(
                "Removed %d stale (%s)-[:%s]->(%s) relationships",
                removed,
                source_label,
                join_rule.relationship,
                target_label,
            )

        rows = self.graph.execute(
            CypherBuilder.link(source_label, target_label, join_rule)
        )
        created = int(rows[0]["created"]) if rows else 0

        logger.info(
            "Linked (%s)-[:%s]->(%s): %d created",
            source_label,
            join_rule.relationship,
            target_label,
            created,
        )
        return LinkResult(
            relationship=join_rule.relationship,
            source_label=source_label,
            target_label=target_label,
            created=created,
            removed=removed,
        )

    def link_all(self, plan: Optional[List[LinkStep]] = None) -> List[LinkResult]:
        """Run every step of a link plan in order."""
        steps = plan if plan is not None else default_link_plan()
        return [self.link(s.source_type, s.target_type, s.rule) for s in steps]

    def dedupe(self, relationship: str) -> int:
        """
        Collapse parallel relationships of one type to a single edge per pair.

        Returns:
            Number of relationships deleted
        """
        rows = self.graph.execute(
            CypherBuilder.delete_parallel_relationships(relationship)
        )
        removed = int(rows[0]["removed"]) if rows else 0
        if removed:
            logger.warning("Deleted %d parallel %s relationships", removed, relationship)
        else:
            logger.info("No parallel %s relationships", relationship)
        return removed
