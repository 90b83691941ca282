"""Tests for the consistency analyzer."""

from tenant_graph_sync.core.analysis import (
    ConsistencyAnalyzer,
    find_source_duplicates,
    orphan_check_name,
)
from tenant_graph_sync.core.relationships import (
    BELONGS_TO_TENANT,
    HAS_SUBSCRIPTION,
    RelationshipBuilder,
    default_link_plan,
)
from tenant_graph_sync.database.models import Direction, EntityType

from conftest import FakeSourceStore


def test_orphan_funds_are_reported_in_name_order(graph):
    names = [
        "Kappa", "Alpha", "Theta", "Beta", "Iota",
        "Gamma", "Eta", "Delta", "Zeta", "Epsilon",
    ]
    without_subscription = {"Theta", "Beta", "Zeta"}
    for i, name in enumerate(names, start=1):
        fund = graph.add_node("Fund", id=f"f{i}", tenant_id="t1", fund_name=name)
        if name not in without_subscription:
            sub = graph.add_node("Subscription", id=f"s{i}", tenant_id="t1", fund_name=name)
            graph.add_edge(fund, HAS_SUBSCRIPTION, sub)

    orphans = ConsistencyAnalyzer(graph).find_orphans(EntityType.FUND, HAS_SUBSCRIPTION)

    by_name = {f"f{i}": name for i, name in enumerate(names, start=1)}
    assert [by_name[key] for key in orphans] == ["Beta", "Theta", "Zeta"]


def test_incoming_orphans(graph):
    fund = graph.add_node("Fund", id="f1", tenant_id="t1", fund_name="A")
    linked = graph.add_node("Subscription", id="s1", tenant_id="t1")
    graph.add_node("Subscription", id="s2", tenant_id="t1")
    graph.add_edge(fund, HAS_SUBSCRIPTION, linked)

    orphans = ConsistencyAnalyzer(graph).find_orphans(
        EntityType.SUBSCRIPTION, HAS_SUBSCRIPTION, Direction.INCOMING
    )

    assert orphans == ["s2"]


def test_unnamed_orphans_are_ordered_by_key(graph):
    for key in ("u3", "u1", "u2"):
        graph.add_node("User", id=key, tenant_id="t1")

    orphans = ConsistencyAnalyzer(graph).find_orphans(EntityType.USER, BELONGS_TO_TENANT)

    assert orphans == ["u1", "u2", "u3"]


def test_duplicate_groups_are_scoped_by_tenant(graph):
    graph.add_node("Fund", id="f3", tenant_id="t1", fund_name="Alpha")
    graph.add_node("Fund", id="f1", tenant_id="t1", fund_name="Alpha")
    graph.add_node("Fund", id="f2", tenant_id="t2", fund_name="Alpha")
    graph.add_node("Fund", id="f4", tenant_id="t1", fund_name="Beta")

    groups = ConsistencyAnalyzer(graph).find_duplicates(EntityType.FUND)

    assert len(groups) == 1
    assert groups[0].scope_key == "t1"
    assert groups[0].name_key == "Alpha"
    assert groups[0].record_keys == ("f1", "f3")


def test_types_without_names_have_no_duplicate_groups(graph):
    graph.add_node("User", id="u1", tenant_id="t1")
    assert ConsistencyAnalyzer(graph).find_duplicates(EntityType.USER) == []
    assert graph.executed == []


def test_duplicate_ids(graph):
    graph.add_node("Fund", id="f1", tenant_id="t1", fund_name="A")
    graph.add_node("Fund", id="f1", tenant_id="t1", fund_name="B")

    assert ConsistencyAnalyzer(graph).find_duplicate_ids(EntityType.FUND) == [
        {"key": "f1", "copies": 2}
    ]


def test_parallel_relationships(graph):
    fund = graph.add_node("Fund", id="f1", tenant_id="t1", fund_name="A")
    sub = graph.add_node("Subscription", id="s1", tenant_id="t1")
    for _ in range(3):
        graph.add_edge(fund, HAS_SUBSCRIPTION, sub)

    analyzer = ConsistencyAnalyzer(graph)

    assert analyzer.find_parallel_relationships(HAS_SUBSCRIPTION) == 2
    assert analyzer.find_parallel_relationships(BELONGS_TO_TENANT) == 0


def test_analysis_does_not_write(graph):
    graph.add_node("Fund", id="f1", tenant_id="t1", fund_name="A")
    graph.add_node("Fund", id="f2", tenant_id="t1", fund_name="A")
    before = (len(graph.nodes["Fund"]), len(graph.edges))

    ConsistencyAnalyzer(graph).summarize()

    assert (len(graph.nodes["Fund"]), len(graph.edges)) == before
    assert {s.kind for s in graph.executed} <= {
        "find_duplicates",
        "find_orphans",
        "find_parallel_relationships",
        "count_memberships",
        "find_multiple_memberships",
    }


def test_summary_report(graph):
    graph.add_node("Tenant", id="t1")
    graph.add_node("Fund", id="f1", tenant_id="t1", fund_name="A")
    graph.add_node("Fund", id="f2", tenant_id="t1", fund_name="A")
    graph.add_node("User", id="u1", tenant_id="t9")
    RelationshipBuilder(graph).link_all(default_link_plan())

    report = ConsistencyAnalyzer(graph).summarize()

    assert report.duplicate_group_count == 1
    assert report.membership_counts["Fund"] == {"nodes": 2, "memberships": 2}
    assert report.membership_counts["User"] == {"nodes": 1, "memberships": 0}
    user_check = orphan_check_name(EntityType.USER, BELONGS_TO_TENANT, Direction.OUTGOING)
    assert report.orphans[user_check] == ["u1"]
    assert report.to_dict()["duplicates"]["Fund"][0]["record_keys"] == ["f1", "f2"]


def test_nodes_in_two_tenants_are_reported(graph):
    first = graph.add_node("Tenant", id="t1")
    second = graph.add_node("Tenant", id="t2")
    user = graph.add_node("User", id="u1", tenant_id="t2")
    graph.add_node("User", id="u2", tenant_id="t1")
    graph.add_edge(user, BELONGS_TO_TENANT, first)
    graph.add_edge(user, BELONGS_TO_TENANT, second)

    report = ConsistencyAnalyzer(graph).summarize()

    assert report.multiple_memberships["User"] == ["u1"]
    assert report.multiple_membership_count == 1
    assert report.to_dict()["multiple_memberships"]["User"] == ["u1"]


def test_source_duplicates():
    source = FakeSourceStore(
        {
            "user_funds": [
                {"id": 1, "tenant_id": 1, "fund_name": "Alpha"},
                {"id": 2, "tenant_id": 1, "fund_name": "Alpha"},
                {"id": 3, "tenant_id": 2, "fund_name": "Alpha"},
                {"id": 4, "tenant_id": 1, "fund_name": "Beta"},
            ]
        }
    )

    found = find_source_duplicates(source, EntityType.FUND)

    assert found == [{"scope_key": 1, "name_key": "Alpha", "count": 2}]
    assert find_source_duplicates(source, EntityType.FUND, tenant_id=2) == []
    assert find_source_duplicates(source, EntityType.USER) == []
