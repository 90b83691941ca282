"""
Data models shared by the synchronization components.

Source rows are converted into typed records (one dataclass per entity
type) so that the set of migrated properties is fixed and reviewable.
Everything that crosses a component boundary (node specifications, batch
and link results, consistency findings) is also defined here.
"""

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class EntityType(Enum):
    """Entity types handled by the engine."""

    TENANT = "tenant"
    USER = "user"
    ENTITY = "entity"
    FUND = "fund"
    SUBSCRIPTION = "subscription"


class Direction(Enum):
    """Direction of a relationship relative to the inspected node."""

    OUTGOING = "outgoing"
    INCOMING = "incoming"


# --------------------------------------------------------------------------
# Source records
# --------------------------------------------------------------------------


@dataclass
class TenantRecord:
    id: Any
    name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class UserRecord:
    """Platform user. Credential columns are intentionally not part of the record."""

    id: Any
    tenant_id: Any = None
    username: Optional[str] = None
    normalized_username: Optional[str] = None
    email: Optional[str] = None
    normalized_email: Optional[str] = None
    email_confirmed: Optional[bool] = None
    phone_number: Optional[str] = None
    phone_number_confirmed: Optional[bool] = None
    two_factor_enabled: Optional[bool] = None
    lockout_end: Optional[datetime] = None
    lockout_enabled: Optional[bool] = None
    access_failed_count: Optional[int] = None
    is_mfa_enabled: Optional[bool] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    call_notifications: Optional[bool] = None
    distribution_notifications: Optional[bool] = None
    statement_notifications: Optional[bool] = None
    new_investment_notifications: Optional[bool] = None
    new_opportunity_notifications: Optional[bool] = None
    pipeline_notifications: Optional[bool] = None
    forwarding_email: Optional[str] = None
    plaid_consent: Optional[bool] = None
    plaid_consent_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class InvestmentEntityRecord:
    """Investing entity (trust, LLC, individual) owned by a tenant."""

    id: Any
    tenant_id: Any = None
    investment_entity: Optional[str] = None
    entity_alias: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class FundRecord:
    """Fund tracked by a tenant, with its financial terms and pipeline state."""

    id: Any
    tenant_id: Any = None
    fund_name: Optional[str] = None
    fund_name_alias: Optional[str] = None
    managed_vehicle: Optional[bool] = None
    investment_manager_name: Optional[str] = None
    general_partner: Optional[str] = None
    series_fund: Optional[str] = None
    fund_series_name: Optional[str] = None
    investment_summary: Optional[str] = None
    gics_sector: Optional[str] = None
    geography: Optional[str] = None
    esg_mandate: Optional[str] = None
    country: Optional[str] = None
    fund_series_number: Optional[int] = None
    side_letter: Optional[str] = None
    blocker: Optional[str] = None
    auditor: Optional[str] = None
    legal: Optional[str] = None
    co_investments: Optional[str] = None
    key_persons: Optional[str] = None
    eligible_investors: Optional[str] = None
    inception_year: Optional[int] = None
    liquidity: Optional[str] = None
    lockup_period_flag: Optional[bool] = None
    lockup_period_duration: Optional[str] = None
    withdrawal_terms: Optional[str] = None
    early_withdrawal_fee_flag: Optional[bool] = None
    early_withdrawal_fee: Optional[float] = None
    investment_type: Optional[str] = None
    investment_subtype_fund: Optional[str] = None
    investment_subtype_spv: Optional[str] = None
    investment_subtype_direct: Optional[str] = None
    investment_subtype_other: Optional[str] = None
    fund_type: Optional[str] = None
    direct_type: Optional[str] = None
    investment_period: Optional[float] = None
    investment_extensions_flag: Optional[bool] = None
    investment_extensions: Optional[str] = None
    perpetual_flag: Optional[bool] = None
    fund_term: Optional[str] = None
    term_extensions_flag: Optional[bool] = None
    term_extensions: Optional[str] = None
    management_fee_flag: Optional[bool] = None
    management_fee_breaks: Optional[str] = None
    management_fee: Optional[float] = None
    management_fee_on: Optional[str] = None
    management_fee_change_flag: Optional[bool] = None
    management_fee_change_to: Optional[float] = None
    management_fee_change_on: Optional[str] = None
    management_fee_change_after: Optional[str] = None
    carry_fee_flag: Optional[bool] = None
    carry_fee: Optional[float] = None
    carry_ratchet_flag: Optional[bool] = None
    ratcheted_carry_fee: Optional[float] = None
    ratcheted_carry_fee_when: Optional[str] = None
    preferred_return_flag: Optional[bool] = None
    preferred_return: Optional[float] = None
    catch_up_provision: Optional[str] = None
    high_water_mark: Optional[str] = None
    capital_recycling: Optional[str] = None
    leverage: Optional[str] = None
    investment_minimum: Optional[float] = None
    gp_commitment_flag: Optional[bool] = None
    gp_commitment: Optional[str] = None
    harvest_or_term: Optional[str] = None
    direct_investment_name: Optional[str] = None
    gp_commitment_amount: Optional[float] = None
    favorite: Optional[bool] = None
    stage: Optional[str] = None
    dd_call: Optional[bool] = None
    legal_and_gov_doc: Optional[bool] = None
    sub_doc_received: Optional[bool] = None
    pass_reason: Optional[str] = None
    pass_explanation: Optional[str] = None
    stage_last_updated: Optional[datetime] = None
    investment_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class SubscriptionRecord:
    """Commitment of an investing entity to a fund, referenced by names."""

    id: Any
    tenant_id: Any = None
    fund_name: Optional[str] = None
    investment_entity: Optional[str] = None
    as_of_date: Optional[date] = None
    commitment_amount: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def record_field_names(record_type: type) -> Tuple[str, ...]:
    """Return the declared field names of a record dataclass."""
    return tuple(f.name for f in fields(record_type))


# --------------------------------------------------------------------------
# Pipeline values
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class NodeSpec:
    """A node to upsert: label, unique key, tenant scope and property bag."""

    label: str
    key: Any
    tenant_scope: Optional[str]
    properties: Dict[str, Any]
    name: Optional[str] = None

    def to_parameters(self) -> Dict[str, Any]:
        """Convert to the map bound as one `UNWIND` row."""
        return {
            "key": self.key,
            "tenant_id": self.tenant_scope,
            "name": self.name,
            "properties": dict(self.properties),
        }


@dataclass
class SourceBatch:
    """A bounded page of source rows and its position in the stable order."""

    entity_type: EntityType
    offset: int
    rows: List[Dict[str, Any]]

    def __len__(self) -> int:
        return len(self.rows)


@dataclass
class MappedBatch:
    """Result of mapping one source batch: valid specs plus per-row errors."""

    specs: List[NodeSpec] = field(default_factory=list)
    errors: List[Any] = field(default_factory=list)


@dataclass
class BatchResult:
    """Outcome of one batch upsert."""

    applied: int = 0
    failed: int = 0
    conflicts: List[Any] = field(default_factory=list)


@dataclass(frozen=True)
class JoinRule:
    """
    How to pair nodes of two labels for one relationship type.

    A direct rule compares source and target properties pairwise (`on`).
    A rule with `via_label` pairs source and target through a third node
    type: `source_on` compares (via property, source property) and
    `target_on` compares (via property, target property).
    """

    relationship: str
    on: Tuple[Tuple[str, str], ...] = ()
    via_label: Optional[str] = None
    source_on: Tuple[Tuple[str, str], ...] = ()
    target_on: Tuple[Tuple[str, str], ...] = ()

    @property
    def is_indirect(self) -> bool:
        return self.via_label is not None


@dataclass
class LinkResult:
    """Outcome of one relationship derivation pass."""

    relationship: str
    source_label: str
    target_label: str
    created: int = 0
    removed: int = 0


@dataclass(frozen=True)
class DuplicateGroup:
    """Two or more nodes sharing a tenant scope and a name that should be unique."""

    entity_type: EntityType
    scope_key: Any
    name_key: Any
    record_keys: Tuple[Any, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type.value,
            "scope_key": self.scope_key,
            "name_key": self.name_key,
            "record_keys": list(self.record_keys),
        }


@dataclass
class ResolutionResult:
    """Audit record of a duplicate resolution."""

    kept: Any
    removed: List[Any] = field(default_factory=list)


@dataclass
class ConsistencyReport:
    """All findings of one analysis pass."""

    duplicates: Dict[str, List[DuplicateGroup]] = field(default_factory=dict)
    orphans: Dict[str, List[Any]] = field(default_factory=dict)
    parallel_relationships: Dict[str, int] = field(default_factory=dict)
    membership_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    multiple_memberships: Dict[str, List[Any]] = field(default_factory=dict)

    @property
    def duplicate_group_count(self) -> int:
        return sum(len(groups) for groups in self.duplicates.values())

    @property
    def orphan_count(self) -> int:
        return sum(len(keys) for keys in self.orphans.values())

    @property
    def multiple_membership_count(self) -> int:
        return sum(len(keys) for keys in self.multiple_memberships.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duplicates": {
                name: [group.to_dict() for group in groups]
                for name, groups in self.duplicates.items()
            },
            "orphans": {name: list(keys) for name, keys in self.orphans.items()},
            "parallel_relationships": dict(self.parallel_relationships),
            "membership_counts": {
                label: dict(counts) for label, counts in self.membership_counts.items()
            },
            "multiple_memberships": {
                label: list(keys) for label, keys in self.multiple_memberships.items()
            },
        }
