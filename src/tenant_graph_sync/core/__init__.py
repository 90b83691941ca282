"""
Core synchronization components.
"""

from .analysis import ConsistencyAnalyzer, find_source_duplicates
from .mapping import ENTITY_MAPPINGS, EntityMapper, EntityMapping, get_mapping
from .pipeline import (
    LoggingObserver,
    NodeSyncPipeline,
    Phase,
    PhaseResult,
    ProgressObserver,
    RunSummary,
    SyncObserver,
    SyncRunner,
)
from .reader import PaginatedSourceReader
from .relationships import LinkStep, RelationshipBuilder, default_link_plan
from .resolver import DuplicateResolver
from .schema import SchemaManager, SchemaReport, SchemaVerification
from .writer import BatchUpsertWriter

__all__ = [
    "ConsistencyAnalyzer",
    "find_source_duplicates",
    "ENTITY_MAPPINGS",
    "EntityMapper",
    "EntityMapping",
    "get_mapping",
    "LoggingObserver",
    "NodeSyncPipeline",
    "Phase",
    "PhaseResult",
    "ProgressObserver",
    "RunSummary",
    "SyncObserver",
    "SyncRunner",
    "PaginatedSourceReader",
    "LinkStep",
    "RelationshipBuilder",
    "default_link_plan",
    "DuplicateResolver",
    "SchemaManager",
    "SchemaReport",
    "SchemaVerification",
    "BatchUpsertWriter",
]
