"""
Store interfaces, data models and database adapters.
"""

from .interface import GraphStore, SourceStore
from .models import (
    BatchResult,
    ConsistencyReport,
    Direction,
    DuplicateGroup,
    EntityType,
    JoinRule,
    LinkResult,
    MappedBatch,
    NodeSpec,
    ResolutionResult,
    SourceBatch,
)

__all__ = [
    "GraphStore",
    "SourceStore",
    "BatchResult",
    "ConsistencyReport",
    "Direction",
    "DuplicateGroup",
    "EntityType",
    "JoinRule",
    "LinkResult",
    "MappedBatch",
    "NodeSpec",
    "ResolutionResult",
    "SourceBatch",
]
