"""
Neo4j graph store adapter.

Wraps the official `neo4j` driver behind the `GraphStore` interface and
translates driver exceptions into the engine's error taxonomy: constraint
violations become `WriteConflictError`, connectivity and transient server
errors become `TransientStoreError`.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import neo4j
from neo4j import GraphDatabase
from neo4j.exceptions import (
    AuthError,
    ConstraintError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)

from ...errors import StoreConnectionError, TransientStoreError, WriteConflictError
from ..interface import GraphStore

logger = logging.getLogger(__name__)

_CONSTRAINT_CODES = (
    "Neo.ClientError.Schema.ConstraintValidationFailed",
    "Neo.ClientError.Schema.ConstraintViolation",
    # Raised when a constraint is declared over data that already violates it.
    "Neo.DatabaseError.Schema.ConstraintCreationFailed",
)


@dataclass
class GraphConnectionConfig:
    """Configuration for the graph store connection."""

    uri: str = "bolt://localhost:7687"
    username: str = ""
    password: str = ""
    database: Optional[str] = None
    connection_timeout: float = 15.0
    query_timeout: Optional[float] = 60.0


class Neo4jGraphStore(GraphStore):
    """
    Graph store backed by the neo4j Bolt driver.

    The driver is thread safe and pools its own connections; every call
    opens a short-lived session so concurrent pipelines can share one
    instance.
    """

    def __init__(self, config: GraphConnectionConfig):
        """
        Initialize the adapter.

        Args:
            config: Connection configuration
        """
        self.config = config
        self.driver = None

    @classmethod
    def from_config(
        cls, config: Dict[str, Any], query_timeout: Optional[float] = 60.0
    ) -> "Neo4jGraphStore":
        """Build a store from the dictionary returned by `get_graph_config`."""
        return cls(
            GraphConnectionConfig(
                uri=str(config.get("uri", "bolt://localhost:7687")),
                username=str(config.get("username", "")),
                password=str(config.get("password", "")),
                database=config.get("database") or None,
                connection_timeout=float(config.get("connection_timeout", 15.0)),
                query_timeout=query_timeout,
            )
        )

    def connect(self) -> None:
        """
        Create the driver and verify that the server is reachable.

        Raises:
            StoreConnectionError: If the server cannot be reached or rejects
                the credentials
        """
        if self.driver is not None:
            return
        auth = (
            (self.config.username, self.config.password)
            if self.config.username
            else None
        )
        try:
            self.driver = GraphDatabase.driver(
                self.config.uri,
                auth=auth,
                connection_timeout=self.config.connection_timeout,
            )
            self.driver.verify_connectivity()
            logger.info("Connected to graph store at %s", self.config.uri)
        except (ServiceUnavailable, AuthError, Neo4jError, ValueError) as exc:
            logger.error("Failed to connect to graph store: %s", exc)
            self.close()
            raise StoreConnectionError("neo4j", str(exc)) from exc

    def query(
        self, statement: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        if self.driver is None:
            self.connect()

        query = neo4j.Query(statement, timeout=self.config.query_timeout)
        try:
            with self.driver.session(database=self.config.database) as session:
                result = session.run(query, params or {})
                return [_to_native(record.data()) for record in result]
        except ConstraintError as exc:
            raise WriteConflictError(str(exc)) from exc
        except (ServiceUnavailable, SessionExpired, TransientError) as exc:
            raise TransientStoreError(str(exc)) from exc
        except Neo4jError as exc:
            if getattr(exc, "code", None) in _CONSTRAINT_CODES:
                raise WriteConflictError(str(exc)) from exc
            raise

    def test_connection(self) -> bool:
        try:
            rows = self.query("RETURN 1 AS ok")
            return bool(rows) and rows[0].get("ok") == 1
        except (StoreConnectionError, TransientStoreError) as exc:
            logger.warning("Graph store connection test failed: %s", exc)
            return False

    def close(self) -> None:
        if self.driver:
            self.driver.close()
            self.driver = None
            logger.info("Graph store connection closed")


def _to_native(value: Any) -> Any:
    """Convert driver temporal values inside a record into Python types."""
    if isinstance(value, dict):
        return {key: _to_native(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_to_native(item) for item in value]
    if hasattr(value, "to_native"):
        return value.to_native()
    return value


def create_graph_store(
    uri: str = "bolt://localhost:7687",
    username: str = "",
    password: str = "",
    database: Optional[str] = None,
) -> Neo4jGraphStore:
    """
    Create a graph store adapter.

    Args:
        uri: Bolt URI
        username: Username for authentication
        password: Password for authentication
        database: Target database name, None for the server default

    Returns:
        Neo4jGraphStore instance
    """
    config = GraphConnectionConfig(
        uri=uri, username=username, password=password, database=database
    )
    return Neo4jGraphStore(config)
