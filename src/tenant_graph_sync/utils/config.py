"""
Configuration management utilities for the sync engine.

This module handles configuration parsing, validation, and default settings.
"""

import os
from typing import Dict, Any, List, Optional, Tuple
from dataclasses import dataclass

from .environment import get_graph_config, get_source_db_config


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


@dataclass
class SyncConfig:
    """Configuration class for sync settings."""

    # Source database settings
    source_db_host: str = "localhost"
    source_db_user: str = "postgres"
    source_db_password: str = ""
    source_db_database: str = "postgres"
    source_db_port: int = 5432
    source_db_schema: str = "public"

    # Neo4j settings
    graph_uri: str = "bolt://localhost:7687"
    graph_username: str = "neo4j"
    graph_password: str = ""
    graph_database: Optional[str] = None

    # Sync settings
    batch_size: int = 50
    max_workers: int = 4
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    query_timeout: float = 60.0
    connect_timeout: int = 15
    tenant_id: Optional[str] = None
    limit: Optional[int] = None
    link_managers: bool = False

    @classmethod
    def from_environment(cls) -> "SyncConfig":
        """Create configuration from environment variables."""
        source = get_source_db_config()
        graph = get_graph_config()
        return cls(
            source_db_host=source["host"],
            source_db_user=source["user"],
            source_db_password=source["password"],
            source_db_database=source["database"],
            source_db_port=source["port"],
            source_db_schema=source["schema"],
            graph_uri=graph["uri"],
            graph_username=graph["username"],
            graph_password=graph["password"],
            graph_database=graph["database"] or None,
            batch_size=int(os.getenv("GRAPH_SYNC_BATCH_SIZE", "50")),
            max_workers=int(os.getenv("GRAPH_SYNC_MAX_WORKERS", "4")),
            max_attempts=int(os.getenv("GRAPH_SYNC_MAX_ATTEMPTS", "3")),
            backoff_seconds=float(os.getenv("GRAPH_SYNC_BACKOFF_SECONDS", "1.0")),
            query_timeout=float(os.getenv("GRAPH_SYNC_QUERY_TIMEOUT", "60")),
            connect_timeout=int(os.getenv("GRAPH_SYNC_CONNECT_TIMEOUT", "15")),
            tenant_id=os.getenv("GRAPH_SYNC_TENANT_ID") or None,
            limit=_env_optional_int("GRAPH_SYNC_LIMIT"),
            link_managers=_env_bool("GRAPH_SYNC_LINK_MANAGERS"),
        )

    def to_source_db_config(self) -> Dict[str, Any]:
        """Convert to a dictionary suitable for `PostgreSQLSource.from_config`."""
        return {
            "host": self.source_db_host,
            "user": self.source_db_user,
            "password": self.source_db_password,
            "database": self.source_db_database,
            "port": self.source_db_port,
            "schema": self.source_db_schema,
            "connect_timeout": self.connect_timeout,
            "statement_timeout_ms": int(self.query_timeout * 1000),
        }

    def to_graph_config(self) -> Dict[str, Any]:
        """Convert to a dictionary suitable for `Neo4jGraphStore.from_config`."""
        return {
            "uri": self.graph_uri,
            "username": self.graph_username,
            "password": self.graph_password,
            "database": self.graph_database,
            "connection_timeout": float(self.connect_timeout),
        }

    def validate(self) -> Tuple[bool, List[str]]:
        """
        Validate the configuration.

        Returns:
            Tuple of (is_valid, validation_errors)
        """
        errors: List[str] = []

        if not 1 <= self.source_db_port <= 65535:
            errors.append(f"Invalid PostgreSQL port: {self.source_db_port}")
        if not self.graph_uri:
            errors.append("NEO4J_URI is required")
        if self.batch_size < 1:
            errors.append(f"Invalid batch size: {self.batch_size}")
        if self.max_workers < 1:
            errors.append(f"Invalid worker count: {self.max_workers}")
        if self.max_attempts < 1:
            errors.append(f"Invalid max attempts: {self.max_attempts}")
        if self.backoff_seconds < 0:
            errors.append(f"Invalid backoff: {self.backoff_seconds}")
        if self.query_timeout <= 0:
            errors.append(f"Invalid query timeout: {self.query_timeout}")
        if self.limit is not None and self.limit < 0:
            errors.append(f"Invalid limit: {self.limit}")

        return len(errors) == 0, errors


def print_config_summary(config: SyncConfig) -> None:
    """Print a summary of the configuration."""
    print("Configuration Summary:")
    print("-" * 30)
    print(
        f"Source DB: postgresql://{config.source_db_user}@"
        f"{config.source_db_host}:{config.source_db_port}"
    )
    print(f"Database: {config.source_db_database}")
    print(f"Schema: {config.source_db_schema}")
    print(f"Neo4j: {config.graph_uri} ({config.graph_database or 'default database'})")
    print(f"Batch size: {config.batch_size}")
    print(f"Workers: {config.max_workers}")
    print(f"Tenant: {config.tenant_id or 'all'}")
    if config.limit is not None:
        print(f"Row limit per type: {config.limit}")
    print()
