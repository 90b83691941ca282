"""
Environment and Database Configuration Utilities

This module loads the `.env` file, builds connection settings for the
PostgreSQL source and the Neo4j target, and probes both connections
before a run starts.
"""

import os
import logging
from typing import Any, Dict, List, Tuple, Optional
from dotenv import load_dotenv

from ..database.adapters.graph import Neo4jGraphStore
from ..database.adapters.postgresql import PostgreSQLSource
from ..errors import StoreConnectionError, TransientStoreError

logger = logging.getLogger(__name__)


class MigrationEnvironmentError(Exception):
    """Custom exception for environment-related errors."""


class DatabaseConnectionError(Exception):
    """Custom exception for database connection errors."""


def load_environment() -> None:
    """Load environment variables from .env file."""
    load_dotenv()


def get_required_environment_variables() -> Dict[str, str]:
    """Get the required environment variables and their descriptions."""
    return {
        "POSTGRES_HOST": "PostgreSQL host (default: localhost)",
        "POSTGRES_PORT": "PostgreSQL port (default: 5432)",
        "POSTGRES_USER": "PostgreSQL user (default: postgres)",
        "POSTGRES_PASSWORD": "PostgreSQL database password",
        "POSTGRES_DATABASE": "PostgreSQL database name (default: postgres)",
        "NEO4J_URI": "Neo4j connection URI (default: bolt://localhost:7687)",
        "NEO4J_USERNAME": "Neo4j username (default: neo4j)",
        "NEO4J_PASSWORD": "Neo4j password",
    }


def get_optional_environment_variables() -> Dict[str, str]:
    """Get optional environment variables and their descriptions."""
    return {
        "POSTGRES_SCHEMA": "PostgreSQL schema (default: public)",
        "NEO4J_DATABASE": "Neo4j database name (default: server default)",
        "GRAPH_SYNC_BATCH_SIZE": "Rows per batch (default: 50)",
        "GRAPH_SYNC_MAX_WORKERS": "Entity types synced in parallel (default: 4)",
        "GRAPH_SYNC_MAX_ATTEMPTS": "Attempts per batch write (default: 3)",
        "GRAPH_SYNC_BACKOFF_SECONDS": "Initial retry backoff (default: 1.0)",
        "GRAPH_SYNC_QUERY_TIMEOUT": "Graph transaction timeout in seconds (default: 60)",
        "GRAPH_SYNC_CONNECT_TIMEOUT": "Connection timeout in seconds (default: 15)",
        "GRAPH_SYNC_TENANT_ID": "Only migrate this tenant (default: all)",
        "GRAPH_SYNC_LIMIT": "Maximum rows per entity type (default: no limit)",
        "GRAPH_SYNC_LINK_MANAGERS": "Link funds to their manager entity (default: false)",
        "GRAPH_SYNC_LOG_LEVEL": "Logging level (default: INFO)",
    }


def validate_environment_variables() -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Returns:
        Tuple of (is_valid, missing_variables)
    """
    missing_vars: List[str] = []

    if not os.getenv("NEO4J_PASSWORD"):
        missing_vars.append("NEO4J_PASSWORD")

    if not os.getenv("POSTGRES_PASSWORD"):
        logger.warning("POSTGRES_PASSWORD missing; attempting passwordless connection")

    return len(missing_vars) == 0, missing_vars


def get_source_db_config() -> Dict[str, Any]:
    """Get source database configuration from environment variables."""
    return {
        "host": os.getenv("POSTGRES_HOST", "localhost"),
        "user": os.getenv("POSTGRES_USER", "postgres"),
        "password": os.getenv("POSTGRES_PASSWORD", ""),
        "database": os.getenv("POSTGRES_DATABASE", "postgres"),
        "port": int(os.getenv("POSTGRES_PORT", "5432")),
        "schema": os.getenv("POSTGRES_SCHEMA", "public"),
    }


def get_graph_config() -> Dict[str, str]:
    """
    Get Neo4j configuration from environment variables.

    Returns:
        Dictionary with graph connection parameters.
    """
    return {
        "uri": os.getenv("NEO4J_URI", "bolt://localhost:7687"),
        "username": os.getenv("NEO4J_USERNAME", "neo4j"),
        "password": os.getenv("NEO4J_PASSWORD", ""),
        "database": os.getenv("NEO4J_DATABASE", ""),
    }


def probe_source_connection(
    source_db_config: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """Test the source database connection."""
    source = PostgreSQLSource.from_config(source_db_config)
    try:
        source.connect()
        if source.test_connection():
            return True, None
        return False, "Connection test query failed"
    except StoreConnectionError as e:
        return False, f"Connection error: {e}"
    finally:
        source.close()


def probe_graph_connection(graph_config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Test the Neo4j connection.

    Args:
        graph_config: Graph connection configuration

    Returns:
        Tuple of (is_connected, error_message)
    """
    store = Neo4jGraphStore.from_config(graph_config)
    try:
        store.connect()
        if store.test_connection():
            return True, None
        return False, "Connection test query failed"
    except (StoreConnectionError, TransientStoreError) as e:
        return False, f"Connection error: {e}"
    finally:
        store.close()


def probe_all_connections(
    source_db_config: Dict[str, Any], graph_config: Dict[str, Any]
) -> None:
    """
    Probe both database connections.

    Args:
        source_db_config: Source database connection configuration
        graph_config: Graph connection configuration

    Raises:
        DatabaseConnectionError: If any connection fails
    """
    errors: List[str] = []

    logger.info("Testing PostgreSQL connection...")
    source_connected, source_error = probe_source_connection(source_db_config)
    if not source_connected:
        errors.append(f"postgresql: {source_error}")
    else:
        logger.info(
            "PostgreSQL connection successful to %s@%s",
            source_db_config.get("database"),
            source_db_config.get("host"),
        )

    logger.info("Testing Neo4j connection...")
    graph_connected, graph_error = probe_graph_connection(graph_config)
    if not graph_connected:
        errors.append(f"neo4j: {graph_error}")
    else:
        logger.info("Neo4j connection successful to %s", graph_config["uri"])

    if errors:
        error_msg = "Database connection failures:\n"
        for error in errors:
            error_msg += f"  - {error}\n"
        raise DatabaseConnectionError(error_msg)


def print_environment_help() -> None:
    """Print helpful environment setup information."""
    print("Setup Error: Missing required environment variables")
    print("\nPlease ensure you have:")
    print("1. Created a .env file (copy from .env.example)")
    print("2. Provided the PostgreSQL credentials of the source database")
    print("3. Provided the Neo4j URI and credentials of the target graph")
    print("\nExample .env file:")
    print("POSTGRES_HOST=localhost")
    print("POSTGRES_USER=postgres")
    print("POSTGRES_PASSWORD=your_postgres_password")
    print("POSTGRES_DATABASE=your_database")
    print("NEO4J_URI=bolt://localhost:7687")
    print("NEO4J_USERNAME=neo4j")
    print("NEO4J_PASSWORD=your_neo4j_password")

    print("\nRequired environment variables:")
    for var, desc in get_required_environment_variables().items():
        print(f"  - {var}: {desc}")

    print("\nOptional environment variables:")
    for var, desc in get_optional_environment_variables().items():
        print(f"  - {var}: {desc}")


def print_troubleshooting_help() -> None:
    """Print troubleshooting information."""
    print("\nTroubleshooting steps:")
    print("1. Check your .env file exists and contains required variables")
    print("2. Verify PostgreSQL is running and accepts connections")
    print("3. Verify Neo4j is running and the Bolt port is reachable")
    print("4. Check the credentials of both databases")
    print("5. Re-run with --log-level DEBUG for details")
