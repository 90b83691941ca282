"""
Tenant-scoped synchronization of relational data into a property graph.

Reads tenants, users, investing entities, funds and subscriptions from
PostgreSQL, upserts them into Neo4j under per-tenant uniqueness rules,
derives their relationships and reports consistency findings.
"""

from .core import (
    BatchUpsertWriter,
    ConsistencyAnalyzer,
    DuplicateResolver,
    EntityMapper,
    PaginatedSourceReader,
    RelationshipBuilder,
    SchemaManager,
    SyncRunner,
)
from .errors import (
    MappingError,
    RetriesExhaustedError,
    SchemaViolation,
    StoreConnectionError,
    SyncError,
    TransientStoreError,
    WriteConflictError,
)

__version__ = "0.1.0"

__all__ = [
    "BatchUpsertWriter",
    "ConsistencyAnalyzer",
    "DuplicateResolver",
    "EntityMapper",
    "PaginatedSourceReader",
    "RelationshipBuilder",
    "SchemaManager",
    "SyncRunner",
    "MappingError",
    "RetriesExhaustedError",
    "SchemaViolation",
    "StoreConnectionError",
    "SyncError",
    "TransientStoreError",
    "WriteConflictError",
]
