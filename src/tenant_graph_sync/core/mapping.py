"""
Entity mappings and the row-to-node mapper.

The engine is driven by a fixed set of mappings, one per entity type.
Each mapping names the source table, the graph label, the key and scope
fields, the tenant-unique name field (if any) and the fields worth a
secondary index. The mapper is a pure function of (entity type, row).
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Set, Tuple
from uuid import UUID

from ..database.models import (
    EntityType,
    FundRecord,
    InvestmentEntityRecord,
    MappedBatch,
    NodeSpec,
    SubscriptionRecord,
    TenantRecord,
    UserRecord,
    record_field_names,
)
from ..errors import MappingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityMapping:
    """How one source table becomes one node label."""

    entity_type: EntityType
    table: str
    label: str
    record_type: type
    key_field: str = "id"
    scope_field: Optional[str] = "tenant_id"
    name_field: Optional[str] = None
    index_fields: Tuple[str, ...] = ()
    column_aliases: Dict[str, str] = field(default_factory=dict)

    @property
    def is_scoped(self) -> bool:
        return self.scope_field is not None

    @property
    def fields(self) -> Tuple[str, ...]:
        return record_field_names(self.record_type)


ENTITY_MAPPINGS: Dict[EntityType, EntityMapping] = {
    EntityType.TENANT: EntityMapping(
        entity_type=EntityType.TENANT,
        table="tenants",
        label="Tenant",
        record_type=TenantRecord,
        scope_field=None,
        index_fields=("name",),
    ),
    EntityType.USER: EntityMapping(
        entity_type=EntityType.USER,
        table="users",
        label="User",
        record_type=UserRecord,
        index_fields=("tenant_id", "email", "username"),
    ),
    EntityType.ENTITY: EntityMapping(
        entity_type=EntityType.ENTITY,
        table="user_entities",
        label="Entity",
        record_type=InvestmentEntityRecord,
        name_field="investment_entity",
        index_fields=("tenant_id", "entity_alias"),
        # The source column carries a historical misspelling.
        column_aliases={"entity_allias": "entity_alias"},
    ),
    EntityType.FUND: EntityMapping(
        entity_type=EntityType.FUND,
        table="user_funds",
        label="Fund",
        record_type=FundRecord,
        name_field="fund_name",
        index_fields=("tenant_id", "investment_type", "fund_type", "stage"),
        column_aliases={"fund_name_allias": "fund_name_alias"},
    ),
    EntityType.SUBSCRIPTION: EntityMapping(
        entity_type=EntityType.SUBSCRIPTION,
        table="subscriptions",
        label="Subscription",
        record_type=SubscriptionRecord,
        index_fields=("tenant_id", "fund_name", "investment_entity", "as_of_date"),
    ),
}


def get_mapping(entity_type: EntityType) -> EntityMapping:
    """Return the mapping for an entity type."""
    return ENTITY_MAPPINGS[entity_type]


def mapping_for_label(label: str) -> EntityMapping:
    """Return the mapping whose graph label is `label`."""
    for mapping in ENTITY_MAPPINGS.values():
        if mapping.label == label:
            return mapping
    raise KeyError(f"No entity mapping for label '{label}'")


class EntityMapper:
    """
    Converts relational rows into node specifications.

    Mapping is pure apart from one piece of bookkeeping: each unknown source
    column is reported once per mapper instance instead of once per row.
    """

    def __init__(self, mappings: Optional[Dict[EntityType, EntityMapping]] = None):
        self.mappings = mappings or ENTITY_MAPPINGS
        self._reported_columns: Set[Tuple[EntityType, str]] = set()

    def map(self, entity_type: EntityType, row: Dict[str, Any]) -> NodeSpec:
        """
        Map one source row.

        Args:
            entity_type: Entity type the row belongs to
            row: Column name to value mapping

        Returns:
            NodeSpec ready for the batch writer

        Raises:
            MappingError: If the key or tenant scope is missing or malformed,
                or a name-bearing row has no name
        """
        mapping = self.mappings[entity_type]
        columns = {
            mapping.column_aliases.get(column, column): value
            for column, value in row.items()
        }

        key = _normalize_identifier(columns.get(mapping.key_field))
        if key is None:
            raise MappingError(
                entity_type.value,
                columns.get(mapping.key_field),
                f"missing or malformed key '{mapping.key_field}'",
            )

        tenant_scope = None
        if mapping.is_scoped:
            tenant_scope = _normalize_identifier(columns.get(mapping.scope_field))
            if tenant_scope is None:
                raise MappingError(
                    entity_type.value,
                    key,
                    f"missing or malformed tenant scope '{mapping.scope_field}'",
                )
            columns[mapping.scope_field] = tenant_scope

        name = None
        if mapping.name_field:
            name = columns.get(mapping.name_field)
            if not isinstance(name, str) or not name.strip():
                raise MappingError(
                    entity_type.value, key, f"missing name '{mapping.name_field}'"
                )

        known_fields = set(mapping.fields)
        self._report_unknown_columns(entity_type, columns.keys() - known_fields)

        record = mapping.record_type(
            **{column: columns[column] for column in known_fields if column in columns}
        )
        properties = {
            prop: _to_graph_value(value)
            for prop, value in asdict(record).items()
            if value is not None
        }
        properties[mapping.key_field] = key

        return NodeSpec(
            label=mapping.label,
            key=key,
            tenant_scope=tenant_scope,
            properties=properties,
            name=name,
        )

    def map_batch(
        self, entity_type: EntityType, rows: Iterable[Dict[str, Any]]
    ) -> MappedBatch:
        """Map a batch of rows, collecting failures instead of raising."""
        result = MappedBatch()
        for row in rows:
            try:
                result.specs.append(self.map(entity_type, row))
            except MappingError as exc:
                logger.warning("Skipping row: %s", exc)
                result.errors.append(exc)
        return result

    def _report_unknown_columns(
        self, entity_type: EntityType, columns: Iterable[str]
    ) -> None:
        for column in sorted(columns):
            marker = (entity_type, column)
            if marker in self._reported_columns:
                continue
            self._reported_columns.add(marker)
            logger.warning(
                "Dropping unmapped %s column '%s'", entity_type.value, column
            )


def _normalize_identifier(value: Any) -> Optional[str]:
    """
    Return an identifier as a non-empty string, or None if malformed.

    Keys and tenant scopes share one representation so that a scope always
    equals the key of its tenant, whatever the source column types are.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def _to_graph_value(value: Any) -> Any:
    """Convert a source value into a type the Bolt driver can bind."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date, time, str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return json.dumps(value, default=str, sort_keys=True)
    if isinstance(value, (list, tuple)):
        return [_to_graph_value(item) for item in value]
    if isinstance(value, (bytes, memoryview)):
        return bytes(value)
    return str(value)
