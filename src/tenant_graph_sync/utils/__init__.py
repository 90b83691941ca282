"""
Utilities package for the sync engine.

This package contains the environment handling, connection probing and
configuration management shared by the command-line entry point.
"""

from .environment import (
    MigrationEnvironmentError,
    DatabaseConnectionError,
    load_environment,
    get_required_environment_variables,
    get_optional_environment_variables,
    validate_environment_variables,
    get_source_db_config,
    get_graph_config,
    probe_source_connection,
    probe_graph_connection,
    probe_all_connections,
    print_environment_help,
    print_troubleshooting_help,
)

from .config import SyncConfig, print_config_summary

__all__ = [
    # Environment utilities
    "MigrationEnvironmentError",
    "DatabaseConnectionError",
    "load_environment",
    "get_required_environment_variables",
    "get_optional_environment_variables",
    "validate_environment_variables",
    "get_source_db_config",
    "get_graph_config",
    "probe_source_connection",
    "probe_graph_connection",
    "probe_all_connections",
    "print_environment_help",
    "print_troubleshooting_help",
    # Configuration utilities
    "SyncConfig",
    "print_config_summary",
]
