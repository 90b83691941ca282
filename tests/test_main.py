"""Tests for the command-line entry point."""

from unittest.mock import patch

import json

import pytest

from tenant_graph_sync import main as cli
from tenant_graph_sync.core.pipeline import RunSummary
from tenant_graph_sync.core.relationships import HAS_SUBSCRIPTION
from tenant_graph_sync.errors import (
    RetriesExhaustedError,
    SchemaViolation,
    StoreConnectionError,
)


@pytest.fixture(autouse=True)
def environment(monkeypatch):
    monkeypatch.setattr(cli, "load_environment", lambda: None)
    monkeypatch.setenv("NEO4J_PASSWORD", "pw")
    for name in ("GRAPH_SYNC_LOG_LEVEL", "GRAPH_SYNC_TENANT_ID", "GRAPH_SYNC_LIMIT"):
        monkeypatch.delenv(name, raising=False)


def test_parse_migrate_options():
    args = cli.parse_cli_args(
        ["--log-level", "debug", "migrate", "--tenant-id", "7", "--limit", "10", "--workers", "2"]
    )

    assert args.log_level == "DEBUG"
    assert args.command == "migrate"
    assert (args.tenant_id, args.limit, args.workers) == ("7", 10, 2)
    assert not args.skip_schema


def test_schema_actions_are_exclusive():
    with pytest.raises(SystemExit):
        cli.parse_cli_args(["schema", "--verify", "--drop"])


def test_resolve_only_accepts_named_types():
    with pytest.raises(SystemExit):
        cli.parse_cli_args(["resolve-duplicates", "--entity-type", "user"])


def test_overrides_are_applied():
    args = cli.parse_cli_args(["migrate", "--batch-size", "25", "--workers", "3"])

    config = cli.build_config(args)

    assert config.batch_size == 25
    assert config.max_workers == 3


def test_schema_dump_needs_no_connection(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("NEO4J_PASSWORD")
    path = tmp_path / "schema.cypher"

    assert cli.main(["schema", "--dump", str(path)]) == cli.EXIT_OK
    assert "CREATE CONSTRAINT" in path.read_text()
    assert str(path) in capsys.readouterr().out


def test_missing_password_is_an_environment_error(monkeypatch):
    monkeypatch.delenv("NEO4J_PASSWORD")

    assert cli.main(["analyze"]) == cli.EXIT_ENVIRONMENT


def test_invalid_override_is_an_environment_error():
    assert cli.main(["migrate", "--batch-size", "0"]) == cli.EXIT_ENVIRONMENT


@pytest.mark.parametrize(
    "error, code",
    [
        (StoreConnectionError("neo4j", "unreachable"), cli.EXIT_CONNECTIVITY),
        (SchemaViolation("fund_id_unique", [{"key": "1", "copies": 2}]), cli.EXIT_SCHEMA_VIOLATION),
        (RetriesExhaustedError(3, TimeoutError("slow"), entity_type="fund"), cli.EXIT_RETRIES_EXHAUSTED),
        (KeyboardInterrupt(), cli.EXIT_CANCELLED),
    ],
)
def test_failures_map_to_exit_codes(error, code):
    def failing_command(args, config):
        raise error

    with patch.dict(cli.COMMANDS, {"migrate": failing_command}):
        assert cli.main(["migrate"]) == code


def test_migrate_prints_summary_and_reports_cancellation(capsys):
    summary = RunSummary()
    summary.cancelled = True

    with patch.object(cli, "probe_all_connections"), patch.object(
        cli, "create_graph"
    ) as create_graph, patch.object(cli, "SyncRunner") as runner_class:
        runner_class.return_value.run.return_value = summary
        code = cli.main(["migrate", "--no-progress", "--skip-analysis"])

    assert code == cli.EXIT_CANCELLED
    runner_class.return_value.run.assert_called_once_with(
        skip_schema=False, skip_analysis=True
    )
    create_graph.return_value.__enter__.assert_called_once()
    assert '"cancelled": true' in capsys.readouterr().out


def test_resolve_collapses_parallel_relationships(graph, capsys):
    fund = graph.add_node("Fund", id="f1", tenant_id="t1", fund_name="A")
    sub = graph.add_node("Subscription", id="s1", tenant_id="t1", fund_name="A")
    for _ in range(3):
        graph.add_edge(fund, HAS_SUBSCRIPTION, sub)

    with patch.object(cli, "create_graph", return_value=graph):
        assert cli.main(["resolve-duplicates", "--dry-run", "--relationships"]) == cli.EXIT_OK
        assert graph.count_edges(HAS_SUBSCRIPTION) == 3

        assert cli.main(["resolve-duplicates", "--relationships"]) == cli.EXIT_OK

    assert graph.count_edges(HAS_SUBSCRIPTION) == 1
    dry_run, applied = [
        json.loads(chunk) for chunk in _json_documents(capsys.readouterr().out)
    ]
    assert dry_run["parallel_relationships_removed"][HAS_SUBSCRIPTION] == 2
    assert applied["parallel_relationships_removed"][HAS_SUBSCRIPTION] == 2


def test_resolve_leaves_relationships_alone_by_default(graph, capsys):
    fund = graph.add_node("Fund", id="f1", tenant_id="t1", fund_name="A")
    sub = graph.add_node("Subscription", id="s1", tenant_id="t1", fund_name="A")
    graph.add_edge(fund, HAS_SUBSCRIPTION, sub)
    graph.add_edge(fund, HAS_SUBSCRIPTION, sub)

    with patch.object(cli, "create_graph", return_value=graph):
        assert cli.main(["resolve-duplicates"]) == cli.EXIT_OK

    assert graph.count_edges(HAS_SUBSCRIPTION) == 2
    assert "parallel_relationships_removed" not in json.loads(capsys.readouterr().out)


def _json_documents(text):
    """Split concatenated pretty-printed JSON objects."""
    documents, current = [], []
    for line in text.splitlines():
        current.append(line)
        if line == "}":
            documents.append("\n".join(current))
            current = []
    return documents
