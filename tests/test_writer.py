"""Tests for the batch upsert writer."""

import pytest

from tenant_graph_sync.core.mapping import EntityMapper
from tenant_graph_sync.core.writer import BatchUpsertWriter
from tenant_graph_sync.database.models import EntityType
from tenant_graph_sync.errors import RetriesExhaustedError, TransientStoreError


def fund_specs(*rows):
    mapper = EntityMapper()
    return [
        mapper.map(
            EntityType.FUND,
            {"id": key, "tenant_id": tenant, "fund_name": name, **extra},
        )
        for key, tenant, name, extra in rows
    ]


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def writer(graph, sleeps):
    return BatchUpsertWriter(graph, max_attempts=3, backoff_seconds=0.5, sleep=sleeps.append)


def test_empty_batch_is_a_no_op(writer, graph):
    result = writer.apply([])
    assert (result.applied, result.failed) == (0, 0)
    assert graph.executed == []


def test_batch_is_written_in_one_round_trip(writer, graph):
    specs = fund_specs(*[(i, 1, f"Fund {i}", {}) for i in range(1, 6)])

    result = writer.apply(specs)

    assert result.applied == 5
    assert result.failed == 0
    assert len(graph.nodes["Fund"]) == 5
    assert [s.kind for s in graph.executed] == ["merge_nodes"]


def test_applying_twice_is_idempotent(writer, graph):
    specs = fund_specs((1, 1, "Alpha", {"stage": "diligence"}), (2, 1, "Beta", {}))

    writer.apply(specs)
    snapshot = {n.properties["id"]: dict(n.properties) for n in graph.nodes["Fund"]}
    result = writer.apply(specs)

    assert result.applied == 2
    assert len(graph.nodes["Fund"]) == 2
    assert {n.properties["id"]: n.properties for n in graph.nodes["Fund"]} == snapshot


def test_null_values_do_not_erase_stored_properties(writer, graph):
    writer.apply(fund_specs((1, 1, "Alpha", {"stage": "diligence"})))
    writer.apply(fund_specs((1, 1, "Alpha", {"stage": None})))

    assert graph.node("Fund", "1").properties["stage"] == "diligence"


def test_same_name_in_two_tenants_is_accepted(writer, graph):
    result = writer.apply(fund_specs((1, 1, "Alpha", {}), (2, 2, "Alpha", {})))

    assert result.applied == 2
    assert result.failed == 0


def test_same_name_in_one_tenant_conflicts_with_existing_node(writer, graph):
    writer.apply(fund_specs((1, 1, "Alpha", {})))

    result = writer.apply(fund_specs((2, 1, "Alpha", {}), (3, 1, "Beta", {})))

    assert result.applied == 1
    assert result.failed == 1
    assert result.conflicts == ["2"]
    assert graph.node("Fund", "2") is None
    assert graph.node("Fund", "3") is not None


def test_in_batch_name_collision_keeps_first_row(writer, graph):
    result = writer.apply(fund_specs((1, 1, "Alpha", {}), (2, 1, "Alpha", {})))

    assert result.applied == 1
    assert result.conflicts == ["2"]
    assert graph.node("Fund", "1") is not None


def test_repeated_key_in_batch_is_not_a_conflict(writer, graph):
    result = writer.apply(
        fund_specs((1, 1, "Alpha", {"stage": "a"}), (1, 1, "Alpha", {"stage": "b"}))
    )

    assert result.failed == 0
    assert graph.node("Fund", "1").properties["stage"] == "b"


def test_renamed_row_releases_its_earlier_name(writer, graph):
    result = writer.apply(
        fund_specs((1, 1, "Alpha", {}), (1, 1, "Beta", {}), (2, 1, "Alpha", {}))
    )

    assert result.conflicts == []
    assert result.applied == 2
    assert graph.node("Fund", "1").properties["fund_name"] == "Beta"
    assert graph.node("Fund", "2").properties["fund_name"] == "Alpha"


def test_constraint_rejection_falls_back_to_single_rows(writer, graph):
    graph.rejected_keys.add("2")
    specs = fund_specs((1, 1, "A", {}), (2, 1, "B", {}), (3, 1, "C", {}))

    result = writer.apply(specs)

    assert result.applied == 2
    assert result.conflicts == ["2"]
    assert graph.node("Fund", "1") is not None
    assert graph.node("Fund", "3") is not None
    # one rejected batch statement, then one statement per row
    assert len(graph.executed) == 4


def test_transient_errors_are_retried_with_backoff(writer, graph, sleeps):
    graph.fail_next("merge_nodes", TransientStoreError("timeout"), times=2)

    result = writer.apply(fund_specs((1, 1, "Alpha", {})))

    assert result.applied == 1
    assert sleeps == [0.5, 1.0]


def test_exhausted_retries_raise(writer, graph, sleeps):
    graph.fail_next("merge_nodes", TransientStoreError("connection reset"), times=3)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        writer.apply(fund_specs((1, 1, "Alpha", {})))

    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.cause, TransientStoreError)
    assert sleeps == [0.5, 1.0]
    assert graph.nodes["Fund"] == []


def test_mixed_labels_are_rejected(writer):
    mapper = EntityMapper()
    specs = [
        mapper.map(EntityType.TENANT, {"id": 1}),
        mapper.map(EntityType.USER, {"id": 1, "tenant_id": 1}),
    ]
    with pytest.raises(ValueError):
        writer.apply(specs)


def test_partial_failure_isolation_end_to_end(writer, graph):
    rows = [{"id": i, "tenant_id": 1, "fund_name": f"Fund {i}"} for i in range(1, 10)]
    rows.append({"id": None, "tenant_id": 1, "fund_name": "Broken"})

    mapped = EntityMapper().map_batch(EntityType.FUND, rows)
    result = writer.apply(mapped.specs)

    assert len(mapped.errors) == 1
    assert result.applied == 9
    assert len(graph.nodes["Fund"]) == 9
