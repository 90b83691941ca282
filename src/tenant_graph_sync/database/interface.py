"""
Abstract store interfaces.

Every component receives its store client through these interfaces, so no
component reaches into another component's connection. Adapters for the
concrete databases live in `database.adapters`.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from ..query_generation.cypher_builder import CypherStatement
    from ..query_generation.sql_builder import SqlStatement


class SourceStore(ABC):
    """Relational source collaborator."""

    schema: str = "public"

    @abstractmethod
    def connect(self) -> None:
        """
        Open the connection.

        Raises:
            StoreConnectionError: If the database cannot be reached
        """

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    def query(
        self, sql: Any, params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Run a parameterized statement and return rows as dictionaries.

        Args:
            sql: SQL text or a composed statement with quoted identifiers
            params: Positional parameters bound by the driver

        Returns:
            List of rows
        """

    @abstractmethod
    def test_connection(self) -> bool:
        """Return True if the database answers a trivial query."""

    def execute(self, statement: "SqlStatement") -> List[Dict[str, Any]]:
        """Execute a statement produced by the SQL builder."""
        return self.query(statement.composed(self.schema), statement.params)

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class GraphStore(ABC):
    """Graph store collaborator speaking parameterized Cypher."""

    @abstractmethod
    def query(
        self, statement: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Execute a Cypher statement with bound parameters.

        Args:
            statement: Cypher text
            params: Map of bound parameters

        Returns:
            List of records as dictionaries

        Raises:
            WriteConflictError: On a constraint violation
            TransientStoreError: On timeouts and dropped connections
        """

    @abstractmethod
    def test_connection(self) -> bool:
        """Return True if the store answers a trivial query."""

    @abstractmethod
    def close(self) -> None:
        """Release the driver."""

    def execute(self, statement: "CypherStatement") -> List[Dict[str, Any]]:
        """Execute a statement produced by the Cypher builder."""
        return self.query(statement.text, statement.params)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
