"""
Schema/constraint management for the graph store.

Declares, idempotently, one global key constraint per label, a composite
tenant-scoped uniqueness constraint for every name-bearing label and the
secondary indexes used by the relationship and analysis queries.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..database.interface import GraphStore
from ..database.models import EntityType
from ..errors import SchemaViolation, WriteConflictError
from ..query_generation.cypher_builder import CypherBuilder, CypherStatement
from .analysis import ConsistencyAnalyzer
from .mapping import ENTITY_MAPPINGS, EntityMapping

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 5


@dataclass
class SchemaReport:
    """Names of the constraints and indexes that were declared."""

    constraints: List[str] = field(default_factory=list)
    indexes: List[str] = field(default_factory=list)


@dataclass
class SchemaVerification:
    """Declared schema objects that the store does not report."""

    missing_constraints: List[str] = field(default_factory=list)
    missing_indexes: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.missing_constraints and not self.missing_indexes


def key_constraint_name(mapping: EntityMapping) -> str:
    return f"{mapping.entity_type.value}_{mapping.key_field}_unique"


def scoped_name_constraint_name(mapping: EntityMapping) -> str:
    return (
        f"{mapping.entity_type.value}_{mapping.scope_field}_{mapping.name_field}_unique"
    )


def index_name(mapping: EntityMapping, prop: str) -> str:
    return f"{mapping.entity_type.value}_{prop}_index"


class SchemaManager:
    """Creates, verifies and drops the constraints and indexes of the graph."""

    def __init__(
        self,
        graph: GraphStore,
        mappings: Optional[Dict[EntityType, EntityMapping]] = None,
    ):
        self.graph = graph
        self.mappings = mappings or ENTITY_MAPPINGS

    def constraint_statements(
        self, entity_types: Optional[Iterable[EntityType]] = None
    ) -> List[CypherStatement]:
        statements = []
        for mapping in self._selected(entity_types):
            statements.append(
                CypherBuilder.unique_constraint(
                    key_constraint_name(mapping), mapping.label, [mapping.key_field]
                )
            )
            if mapping.scope_field and mapping.name_field:
                statements.append(
                    CypherBuilder.unique_constraint(
                        scoped_name_constraint_name(mapping),
                        mapping.label,
                        [mapping.scope_field, mapping.name_field],
                    )
                )
        return statements

    def index_statements(
        self, entity_types: Optional[Iterable[EntityType]] = None
    ) -> List[CypherStatement]:
        return [
            CypherBuilder.property_index(index_name(mapping, prop), mapping.label, prop)
            for mapping in self._selected(entity_types)
            for prop in mapping.index_fields
        ]

    def schema_statements(self) -> List[str]:
        """All declarations as Cypher text, e.g. to save as a `.cypher` file."""
        return [
            f"{statement.text};"
            for statement in self.constraint_statements() + self.index_statements()
        ]

    def dump_schema(self, path: str) -> int:
        """Write the declarations to a `.cypher` file and return their count."""
        statements = self.schema_statements()
        with open(path, "w", encoding="utf-8") as handle:
            handle.write("\n\n".join(statements) + "\n")
        logger.info("Wrote %d schema statements to %s", len(statements), path)
        return len(statements)

    def ensure_schema(
        self, entity_types: Optional[Iterable[EntityType]] = None
    ) -> SchemaReport:
        """
        Declare all constraints and indexes. Safe to call repeatedly.

        Args:
            entity_types: Restrict to these types (default: all mappings)

        Returns:
            SchemaReport listing what was declared

        Raises:
            SchemaViolation: If existing data violates a constraint
        """
        selected = list(entity_types) if entity_types is not None else None
        report = SchemaReport()

        for statement in self.constraint_statements(selected):
            try:
                self.graph.execute(statement)
            except WriteConflictError as exc:
                sample = self._violation_sample(statement)
                logger.error(
                    "Constraint %s cannot be created: %d violating group(s) found",
                    statement.meta["name"],
                    len(sample),
                )
                raise SchemaViolation(statement.meta["name"], sample, exc) from exc
            report.constraints.append(statement.meta["name"])
            logger.info("Constraint ensured: %s", statement.meta["name"])

        for statement in self.index_statements(selected):
            self.graph.execute(statement)
            report.indexes.append(statement.meta["name"])
            logger.debug("Index ensured: %s", statement.meta["name"])

        logger.info(
            "Schema ensured: %d constraints, %d indexes",
            len(report.constraints),
            len(report.indexes),
        )
        return report

    def verify_schema(self) -> SchemaVerification:
        """Compare the declared schema with what the store reports."""
        existing_constraints = {
            row["name"] for row in self.graph.execute(CypherBuilder.show_constraints())
        }
        existing_indexes = {
            row["name"] for row in self.graph.execute(CypherBuilder.show_indexes())
        }
        verification = SchemaVerification(
            missing_constraints=[
                s.meta["name"]
                for s in self.constraint_statements()
                if s.meta["name"] not in existing_constraints
            ],
            missing_indexes=[
                s.meta["name"]
                for s in self.index_statements()
                if s.meta["name"] not in existing_indexes
            ],
        )
        if not verification.is_valid:
            logger.warning(
                "Schema verification: missing constraints %s, missing indexes %s",
                verification.missing_constraints,
                verification.missing_indexes,
            )
        return verification

    def drop_schema(self, entity_types: Optional[Iterable[EntityType]] = None) -> None:
        """Drop indexes first, then constraints, for the selected types."""
        selected = list(entity_types) if entity_types is not None else None
        for statement in self.index_statements(selected):
            self.graph.execute(CypherBuilder.drop_index(statement.meta["name"]))
        for statement in self.constraint_statements(selected):
            self.graph.execute(CypherBuilder.drop_constraint(statement.meta["name"]))
        logger.info("Schema dropped")

    def _selected(
        self, entity_types: Optional[Iterable[EntityType]]
    ) -> List[EntityMapping]:
        if entity_types is None:
            return list(self.mappings.values())
        return [self.mappings[entity_type] for entity_type in entity_types]

    def _violation_sample(self, statement: CypherStatement) -> List[Dict[str, Any]]:
        """Find a few records that break the constraint being declared."""
        mapping = next(
            m for m in self.mappings.values() if m.label == statement.meta["label"]
        )
        analyzer = ConsistencyAnalyzer(self.graph, self.mappings)
        if len(statement.meta["properties"]) == 1:
            return analyzer.find_duplicate_ids(mapping.entity_type)[:SAMPLE_SIZE]
        groups = analyzer.find_duplicates(mapping.entity_type)
        return [group.to_dict() for group in groups[:SAMPLE_SIZE]]
