"""
Tenant graph sync - Main Entry Point

Synchronizes the tenant-scoped relational data of the investment platform
from PostgreSQL into Neo4j, and inspects or repairs the resulting graph.
Run with: tenant-graph-sync <command> [options]
"""

import argparse
import json
import logging
import os
import sys
import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional

from .core.analysis import (
    DEFAULT_PARALLEL_CHECKS,
    ConsistencyAnalyzer,
    find_source_duplicates,
)
from .core.pipeline import LoggingObserver, ProgressObserver, SyncRunner
from .core.relationships import RelationshipBuilder
from .core.resolver import DuplicateResolver
from .core.schema import SchemaManager
from .database.adapters.graph import Neo4jGraphStore
from .database.adapters.postgresql import PostgreSQLSource
from .database.models import EntityType
from .errors import RetriesExhaustedError, SchemaViolation, StoreConnectionError
from .utils.config import SyncConfig, print_config_summary
from .utils.environment import (
    DatabaseConnectionError,
    MigrationEnvironmentError,
    load_environment,
    print_environment_help,
    print_troubleshooting_help,
    probe_all_connections,
    validate_environment_variables,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

LOG_LEVEL_CHOICES = ["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"]

EXIT_OK = 0
EXIT_ENVIRONMENT = 1
EXIT_CONNECTIVITY = 2
EXIT_SCHEMA_VIOLATION = 3
EXIT_RETRIES_EXHAUSTED = 4
EXIT_CANCELLED = 130

ENTITY_TYPE_CHOICES = [entity_type.value for entity_type in EntityType]
NAMED_TYPE_CHOICES = [EntityType.ENTITY.value, EntityType.FUND.value]


def _upper_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.upper() if value else None


def parse_cli_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""

    parser = argparse.ArgumentParser(
        prog="tenant-graph-sync",
        description="Tenant-scoped PostgreSQL to Neo4j synchronization",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVEL_CHOICES,
        default=_upper_env("GRAPH_SYNC_LOG_LEVEL"),
        type=str.upper,
        help="Logging level. Overrides GRAPH_SYNC_LOG_LEVEL.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate = subparsers.add_parser("migrate", help="Run a full synchronization")
    migrate.add_argument(
        "--skip-schema",
        action="store_true",
        help="Do not declare constraints and indexes before syncing",
    )
    migrate.add_argument("--tenant-id", help="Only migrate this tenant")
    migrate.add_argument(
        "--limit", type=int, help="Maximum number of rows per entity type"
    )
    migrate.add_argument("--batch-size", type=int, help="Rows per batch")
    migrate.add_argument(
        "--workers", type=int, help="Entity types synchronized in parallel"
    )
    migrate.add_argument(
        "--skip-analysis",
        action="store_true",
        help="Do not run the consistency checks after syncing",
    )
    migrate.add_argument(
        "--no-progress", action="store_true", help="Disable progress bars"
    )

    schema = subparsers.add_parser("schema", help="Manage constraints and indexes")
    schema_action = schema.add_mutually_exclusive_group()
    schema_action.add_argument(
        "--verify", action="store_true", help="List missing constraints and indexes"
    )
    schema_action.add_argument(
        "--drop", action="store_true", help="Drop all constraints and indexes"
    )
    schema_action.add_argument(
        "--dump", metavar="PATH", help="Write the schema declarations to a file"
    )

    analyze = subparsers.add_parser("analyze", help="Run the consistency checks")
    analyze.add_argument(
        "--entity-type",
        choices=ENTITY_TYPE_CHOICES,
        help="Restrict the checks to one entity type",
    )
    analyze.add_argument(
        "--source",
        action="store_true",
        help="Check the PostgreSQL source for duplicate names instead of the graph",
    )
    analyze.add_argument("--tenant-id", help="Restrict the source check to a tenant")

    resolve = subparsers.add_parser(
        "resolve-duplicates", help="Keep the newest record of every duplicate group"
    )
    resolve.add_argument(
        "--entity-type",
        choices=NAMED_TYPE_CHOICES,
        help="Resolve only this entity type (default: all named types)",
    )
    resolve.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be removed without deleting anything",
    )
    resolve.add_argument(
        "--relationships",
        action="store_true",
        help="Also collapse parallel relationships to one edge per node pair",
    )

    return parser.parse_args(argv)


def _configure_log_level(level_name: Optional[str]) -> None:
    """Configure global logging level if provided."""

    if not level_name:
        return

    numeric_level = getattr(logging, level_name.upper(), None)
    if not isinstance(numeric_level, int):
        logger.warning("Unknown log level '%s'; falling back to INFO", level_name)
        numeric_level = logging.INFO

    logging.getLogger().setLevel(numeric_level)
    for handler in logging.getLogger().handlers:
        handler.setLevel(numeric_level)
    logger.setLevel(numeric_level)


def build_config(args: argparse.Namespace) -> SyncConfig:
    """Environment configuration with command-line overrides applied."""
    config = SyncConfig.from_environment()
    overrides: Dict[str, Any] = {}
    for option, name in (
        ("tenant_id", "tenant_id"),
        ("limit", "limit"),
        ("batch_size", "batch_size"),
        ("workers", "max_workers"),
    ):
        value = getattr(args, option, None)
        if value is not None:
            overrides[name] = value
    config = replace(config, **overrides)

    is_valid, errors = config.validate()
    if not is_valid:
        raise MigrationEnvironmentError(
            "Invalid configuration:\n" + "\n".join(f"  - {e}" for e in errors)
        )
    return config


def create_graph(config: SyncConfig) -> Neo4jGraphStore:
    graph = Neo4jGraphStore.from_config(
        config.to_graph_config(), query_timeout=config.query_timeout
    )
    graph.connect()
    return graph


def print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_migrate(args: argparse.Namespace, config: SyncConfig) -> int:
    print_config_summary(config)
    probe_all_connections(config.to_source_db_config(), config.to_graph_config())

    observers = [LoggingObserver()]
    if not args.no_progress:
        observers.append(ProgressObserver())

    with create_graph(config) as graph:
        runner = SyncRunner(
            config,
            lambda: PostgreSQLSource.from_config(config.to_source_db_config()),
            graph,
            observers=observers,
        )
        outcome: Dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["summary"] = runner.run(
                    skip_schema=args.skip_schema, skip_analysis=args.skip_analysis
                )
            except Exception as exc:  # pylint: disable=broad-except
                outcome["error"] = exc

        worker = threading.Thread(target=target, name="sync-runner", daemon=True)
        worker.start()
        try:
            while worker.is_alive():
                worker.join(0.5)
        except KeyboardInterrupt:
            print("\nCancelling after the batches in flight...")
            runner.cancel()
            worker.join()

    if "error" in outcome:
        raise outcome["error"]

    summary = outcome["summary"]
    print_json(summary.to_dict())
    return EXIT_CANCELLED if summary.cancelled else EXIT_OK


def run_schema(args: argparse.Namespace, config: SyncConfig) -> int:
    if args.dump:
        # Declarations only; no connection needed.
        count = SchemaManager(graph=None).dump_schema(args.dump)
        print(f"Wrote {count} statements to {args.dump}")
        return EXIT_OK

    with create_graph(config) as graph:
        manager = SchemaManager(graph)
        if args.verify:
            verification = manager.verify_schema()
            print_json(
                {
                    "valid": verification.is_valid,
                    "missing_constraints": verification.missing_constraints,
                    "missing_indexes": verification.missing_indexes,
                }
            )
        elif args.drop:
            manager.drop_schema()
            print("Schema dropped")
        else:
            report = manager.ensure_schema()
            print_json({"constraints": report.constraints, "indexes": report.indexes})
    return EXIT_OK


def run_analyze(args: argparse.Namespace, config: SyncConfig) -> int:
    entity_types = [EntityType(args.entity_type)] if args.entity_type else None

    if args.source:
        selected = entity_types or [EntityType.ENTITY, EntityType.FUND]
        with PostgreSQLSource.from_config(config.to_source_db_config()) as source:
            print_json(
                {
                    entity_type.value: find_source_duplicates(
                        source, entity_type, tenant_id=args.tenant_id
                    )
                    for entity_type in selected
                }
            )
        return EXIT_OK

    with create_graph(config) as graph:
        report = ConsistencyAnalyzer(graph).summarize(entity_types=entity_types)
    print_json(report.to_dict())
    return EXIT_OK


def run_resolve(args: argparse.Namespace, config: SyncConfig) -> int:
    selected = (
        [EntityType(args.entity_type)]
        if args.entity_type
        else [EntityType.ENTITY, EntityType.FUND]
    )
    output: Dict[str, Any] = {"dry_run": args.dry_run}
    resolutions: Dict[str, List[Dict[str, Any]]] = {}
    with create_graph(config) as graph:
        resolver = DuplicateResolver(graph)
        for entity_type in selected:
            results = resolver.resolve_all(entity_type, dry_run=args.dry_run)
            resolutions[entity_type.value] = [
                {"kept": result.kept, "removed": result.removed} for result in results
            ]
        output["resolutions"] = resolutions

        if args.relationships:
            if args.dry_run:
                analyzer = ConsistencyAnalyzer(graph)
                removed = {
                    rel: analyzer.find_parallel_relationships(rel)
                    for rel in DEFAULT_PARALLEL_CHECKS
                }
            else:
                builder = RelationshipBuilder(graph)
                removed = {rel: builder.dedupe(rel) for rel in DEFAULT_PARALLEL_CHECKS}
            output["parallel_relationships_removed"] = removed
    print_json(output)
    return EXIT_OK


COMMANDS = {
    "migrate": run_migrate,
    "schema": run_schema,
    "analyze": run_analyze,
    "resolve-duplicates": run_resolve,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit code."""
    args = parse_cli_args(argv)

    _configure_log_level(args.log_level)

    try:
        load_environment()
        if not getattr(args, "dump", None):
            is_valid, missing_vars = validate_environment_variables()
            if not is_valid:
                raise MigrationEnvironmentError(
                    "Missing required environment variables:\n"
                    + "\n".join(f"  - {var}" for var in missing_vars)
                )
        config = build_config(args)
        return COMMANDS[args.command](args, config)

    except MigrationEnvironmentError as e:
        print("\nEnvironment Setup Error:")
        print(str(e))
        print_environment_help()
        return EXIT_ENVIRONMENT

    except (DatabaseConnectionError, StoreConnectionError) as e:
        print("\nDatabase Connection Error:")
        print(str(e))
        print_troubleshooting_help()
        return EXIT_CONNECTIVITY

    except SchemaViolation as e:
        print(f"\nSchema Violation: {e}")
        print_json({"constraint": e.constraint_name, "sample": e.sample})
        print("Run 'tenant-graph-sync resolve-duplicates' and try again.")
        return EXIT_SCHEMA_VIOLATION

    except RetriesExhaustedError as e:
        print(f"\nSync aborted: {e}")
        return EXIT_RETRIES_EXHAUSTED

    except KeyboardInterrupt:
        print("\n\nCancelled by user")
        return EXIT_CANCELLED


if __name__ == "__main__":
    sys.exit(main())
