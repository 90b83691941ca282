"""
Database adapters implementing the store interfaces.
"""

from .graph import GraphConnectionConfig, Neo4jGraphStore, create_graph_store
from .postgresql import PostgreSQLSource

__all__ = [
    "GraphConnectionConfig",
    "Neo4jGraphStore",
    "create_graph_store",
    "PostgreSQLSource",
]
