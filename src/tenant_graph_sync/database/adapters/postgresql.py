"""PostgreSQL implementation of the relational source store."""

import logging
from typing import Any, Dict, List, Optional, Sequence

import psycopg2
import psycopg2.extras
from psycopg2 import sql

from ...errors import StoreConnectionError
from ..interface import SourceStore

logger = logging.getLogger(__name__)


class PostgreSQLSource(SourceStore):
    """Read access to the relational source through psycopg2."""

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        database: str,
        port: int = 5432,
        schema: str = "public",
        connect_timeout: int = 15,
        statement_timeout_ms: Optional[int] = None,
    ):
        self.connection_config = {
            "host": host,
            "user": user,
            "password": password,
            "database": database,
            "port": port,
            "connect_timeout": connect_timeout,
        }
        if statement_timeout_ms:
            self.connection_config["options"] = (
                f"-c statement_timeout={int(statement_timeout_ms)}"
            )
        self.schema = schema
        self.connection = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PostgreSQLSource":
        """Build a source from the dictionary returned by `get_source_db_config`."""
        options = {
            key: value
            for key, value in config.items()
            if key
            in {
                "host",
                "user",
                "password",
                "database",
                "port",
                "schema",
                "connect_timeout",
                "statement_timeout_ms",
            }
        }
        return cls(**options)

    def connect(self) -> None:
        if self.connection is not None:
            return
        try:
            self.connection = psycopg2.connect(**self.connection_config)
            # Read-only access; no transaction is ever held open between pages.
            self.connection.autocommit = True
            logger.info(
                "Connected to PostgreSQL %s@%s",
                self.connection_config["database"],
                self.connection_config["host"],
            )
        except psycopg2.Error as exc:
            logger.error("Error connecting to PostgreSQL: %s", exc)
            self.connection = None
            raise StoreConnectionError("postgresql", str(exc)) from exc

    def close(self) -> None:
        if self.connection:
            self.connection.close()
            self.connection = None
            logger.info("PostgreSQL connection closed")

    def query(
        self, statement: Any, params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        connection = self._require_connection()
        cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        try:
            cursor.execute(statement, params)
            if cursor.description is None:
                return []
            return [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def test_connection(self) -> bool:
        try:
            self.connect()
            rows = self.query(sql.SQL("SELECT 1 AS ok"))
            return bool(rows) and rows[0].get("ok") == 1
        except (psycopg2.Error, StoreConnectionError) as exc:
            logger.warning("PostgreSQL connection test failed: %s", exc)
            return False

    def get_connection_info(self) -> Dict[str, Any]:
        """Connection information without the password."""
        safe_config = self.connection_config.copy()
        if "password" in safe_config:
            safe_config["password"] = "***"
        return {
            "database_type": "postgresql",
            "schema": self.schema,
            "config": safe_config,
            "connected": self.connection is not None,
        }

    def _require_connection(self) -> Any:
        if self.connection is None:
            raise ConnectionError("Not connected to database")
        return self.connection
