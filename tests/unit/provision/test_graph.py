"""Tests for ResourceGraph and deletion ordering."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from cluster_net.errors import GraphError
from cluster_net.models.resource_node import HandleRecord, Ref, ResourceNode
from cluster_net.provision.graph import ResourceGraph, compute_deletion_order


def _record(name: str, depends_on=()) -> HandleRecord:
    return HandleRecord(name, "subnet", f"h-{name}", datetime.now(timezone.utc), list(depends_on))


class TestResourceGraph:
    """Tests for creation ordering."""

    @pytest.fixture
    def graph(self) -> ResourceGraph:
        return ResourceGraph(
            [
                ResourceNode("vpc", "vpc"),
                ResourceNode("igw", "internet-gateway"),
                ResourceNode("subnet-a", "subnet", spec={"VpcId": Ref("vpc")}),
                ResourceNode("attach", "internet-gateway-attachment", spec={"VpcId": Ref("vpc"), "InternetGatewayId": Ref("igw")}),
                ResourceNode("subnet-b", "subnet", spec={"VpcId": Ref("vpc")}),
            ]
        )

    def test_creation_tiers(self, graph: ResourceGraph) -> None:
        assert graph.creation_tiers() == [["vpc", "igw"], ["subnet-a", "attach", "subnet-b"]]

    def test_creation_order_respects_dependencies(self, graph: ResourceGraph) -> None:
        order = graph.creation_order()

        for node in graph:
            for dependency in node.depends_on:
                assert order.index(dependency) < order.index(node.logical_name)

    def test_duplicate_node(self, graph: ResourceGraph) -> None:
        with pytest.raises(GraphError, match="Duplicate"):
            graph.add(ResourceNode("vpc", "vpc"))

    def test_missing_dependency(self) -> None:
        graph = ResourceGraph([ResourceNode("subnet", "subnet", spec={"VpcId": Ref("vpc")})])

        with pytest.raises(GraphError, match="unknown node"):
            graph.validate()

    def test_cycle(self) -> None:
        graph = ResourceGraph([ResourceNode("a", "vpc", depends_on={"b"}), ResourceNode("b", "vpc")])
        graph.add_dependency("a", "b")

        assert graph.has_cycle()
        with pytest.raises(GraphError, match="Circular dependency between: a, b"):
            graph.creation_tiers()


class TestComputeDeletionOrder:
    """Tests for reverse-dependency teardown ordering."""

    def test_linear_ledger_unwinds_in_reverse(self) -> None:
        records = [_record("vpc"), _record("subnet", ["vpc"]), _record("route", ["subnet"])]

        assert [r.logical_name for r in compute_deletion_order(records)] == ["route", "subnet", "vpc"]

    def test_dependents_first_even_if_recorded_earlier(self) -> None:
        # sg recorded after the rule that references it (e.g. an overwrite)
        records = [_record("rule", ["sg"]), _record("vpc"), _record("sg", ["vpc"])]

        order = [r.logical_name for r in compute_deletion_order(records)]

        assert order.index("rule") < order.index("sg") < order.index("vpc")

    def test_ties_broken_by_reverse_creation(self) -> None:
        records = [_record("vpc"), _record("a", ["vpc"]), _record("b", ["vpc"]), _record("c", ["vpc"])]

        assert [r.logical_name for r in compute_deletion_order(records)] == ["c", "b", "a", "vpc"]

    def test_missing_dependencies_ignored(self) -> None:
        records = [_record("subnet", ["vpc-already-gone"])]

        assert [r.logical_name for r in compute_deletion_order(records)] == ["subnet"]

    def test_cycle_falls_back_to_reverse_creation(self) -> None:
        records = [_record("a", ["b"]), _record("b", ["a"]), _record("c")]

        assert [r.logical_name for r in compute_deletion_order(records)] == ["c", "b", "a"]
