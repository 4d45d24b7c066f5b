"""Tests for Unwinder teardown."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock

import pytest

from cluster_net.errors import DependencyViolation, ProviderError, TeardownIncomplete, TransientProviderError
from cluster_net.ledger.handle_store import ResourceHandleStore
from cluster_net.models.provisioning_run import StepStatus
from cluster_net.models.resource_node import Ref, ResourceNode
from cluster_net.provision.graph import ResourceGraph
from cluster_net.provision.orchestrator import LifecycleOrchestrator
from cluster_net.provision.retry import RetryPolicy
from cluster_net.provision.unwinder import Unwinder
from tests.fixtures.provider import FakeProvider, no_sleep


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store(tmp_path: Path) -> ResourceHandleStore:
    return ResourceHandleStore(tmp_path / "ledger.yaml")


def _unwinder(provider, max_passes: int = 3) -> Unwinder:
    return Unwinder(
        provider,
        retry_policy=RetryPolicy(max_attempts=2, base_delay=0.0),
        max_passes=max_passes,
        sleep=no_sleep,
    )


def _record(provider: FakeProvider, store: ResourceHandleStore, name: str, kind: str, spec=None, depends_on=()) -> str:
    handle = provider.add_resource(kind, spec)
    store.record(name, kind, handle, depends_on=depends_on)
    return handle


class TestUnwinder:
    """Tests for reverse-order teardown."""

    def test_empty_ledger_twice(self, store: ResourceHandleStore) -> None:
        provider = Mock()
        unwinder = _unwinder(provider)

        first = unwinder.teardown(store)
        second = unwinder.teardown(store)

        assert first.completed and second.completed
        assert provider.method_calls == []

    def test_deletes_in_reverse_order(self, provider: FakeProvider, store: ResourceHandleStore) -> None:
        vpc = _record(provider, store, "vpc", "vpc")
        subnet = _record(provider, store, "subnet", "subnet", {"VpcId": vpc}, ["vpc"])
        rtb = _record(provider, store, "rtb", "route-table", {"VpcId": vpc}, ["vpc"])

        report = _unwinder(provider).teardown(store)

        assert report.completed
        assert provider.deleted_handles() == [rtb, subnet, vpc]
        assert [r.logical_name for r in report.deleted] == ["rtb", "subnet", "vpc"]
        assert store.is_empty()

    def test_not_found_counts_as_deleted(self, provider: FakeProvider, store: ResourceHandleStore) -> None:
        store.record("vpc", "vpc", "vpc-already-gone")

        report = _unwinder(provider).teardown(store)

        assert report.completed
        assert store.is_empty()
        assert report.steps[0].status == StepStatus.DELETED

    def test_dependency_violation_deferred_to_next_pass(
        self, provider: FakeProvider, store: ResourceHandleStore
    ) -> None:
        # No recorded dependencies and the vpc re-recorded last: the vpc is tried first
        vpc = _record(provider, store, "vpc", "vpc")
        _record(provider, store, "subnet", "subnet", {"VpcId": vpc})
        store.record("vpc", "vpc", vpc)

        report = _unwinder(provider).teardown(store)

        assert report.completed
        assert report.passes == 2
        assert [s.status for s in report.steps] == [StepStatus.DEFERRED, StepStatus.DELETED, StepStatus.DELETED]
        assert report.steps[0].error_code == "DependencyViolation"
        assert store.is_empty()

    def test_incomplete_after_max_passes(self, provider: FakeProvider, store: ResourceHandleStore) -> None:
        vpc = _record(provider, store, "vpc", "vpc")
        provider.add_resource("subnet", {"VpcId": vpc})

        report = _unwinder(provider, max_passes=3).teardown(store)

        assert not report.completed
        assert report.passes == 3
        assert [(r.logical_name, r.handle) for r in report.remaining] == [("vpc", vpc)]
        assert store.lookup("vpc") == vpc
        with pytest.raises(TeardownIncomplete) as exc_info:
            report.raise_for_remaining()
        assert exc_info.value.remaining == [("vpc", "vpc", vpc)]

    def test_other_errors_do_not_abort(self, provider: FakeProvider, store: ResourceHandleStore) -> None:
        vpc = _record(provider, store, "vpc", "vpc")
        sg = _record(provider, store, "sg", "security-group")
        provider.delete_errors[sg] = [ProviderError("UnauthorizedOperation", "UnauthorizedOperation")]

        report = _unwinder(provider).teardown(store)

        assert report.completed
        assert vpc in provider.deleted_handles()
        assert report.steps[0].status == StepStatus.FAILED

    def test_transient_error_retried_within_pass(self, provider: FakeProvider, store: ResourceHandleStore) -> None:
        vpc = _record(provider, store, "vpc", "vpc")
        provider.delete_errors[vpc] = [TransientProviderError("throttled")]

        report = _unwinder(provider).teardown(store)

        assert report.completed
        assert report.passes == 1

    def test_outputs_cleared_on_completion(self, provider: FakeProvider, store: ResourceHandleStore) -> None:
        _record(provider, store, "vpc", "vpc")
        store.set_outputs({"vpc-id": "x"})
        store.set_network_plan({"parent": "10.0.0.0/16", "subnets": []})

        _unwinder(provider).teardown(store)

        assert store.outputs == {}
        assert store.network_plan is None

    def test_resumes_from_ledger(self, provider: FakeProvider, store: ResourceHandleStore) -> None:
        vpc = _record(provider, store, "vpc", "vpc")
        subnet = _record(provider, store, "subnet", "subnet", {"VpcId": vpc}, ["vpc"])
        provider.delete_errors[vpc] = [DependencyViolation("blocked")] * 5

        first = _unwinder(provider, max_passes=1).teardown(store)
        provider.delete_errors[vpc] = []
        second = _unwinder(provider).teardown(ResourceHandleStore(store.path))

        assert not first.completed
        assert second.completed
        assert provider.deleted_handles() == [subnet, vpc]

    def test_cross_referenced_security_groups(self, provider: FakeProvider, store: ResourceHandleStore) -> None:
        graph = ResourceGraph(
            [
                ResourceNode("vpc", "vpc", spec={"CidrBlock": "10.0.0.0/16"}),
                ResourceNode("sg-a", "security-group", spec={"VpcId": Ref("vpc")}),
                ResourceNode("sg-b", "security-group", spec={"VpcId": Ref("vpc")}),
                ResourceNode(
                    "a-from-b",
                    "security-group-rule",
                    spec={"GroupId": Ref("sg-a"), "SourceGroupId": Ref("sg-b")},
                ),
                ResourceNode(
                    "b-from-a",
                    "security-group-rule",
                    spec={"GroupId": Ref("sg-b"), "SourceGroupId": Ref("sg-a")},
                ),
            ]
        )
        LifecycleOrchestrator(provider, store, sleep=no_sleep).run(graph)

        report = _unwinder(provider).teardown(store)

        kinds = [kind for op, kind, _ in provider.calls if op == "delete"]
        assert report.completed
        assert report.passes == 1
        assert kinds == ["security-group-rule", "security-group-rule", "security-group", "security-group", "vpc"]
        assert provider.resources == {}

    def test_plan_does_not_delete(self, provider: FakeProvider, store: ResourceHandleStore) -> None:
        _record(provider, store, "vpc", "vpc")

        planned = _unwinder(provider).plan(store)

        assert [r.logical_name for r in planned] == ["vpc"]
        assert provider.count("delete") == 0

    def test_invalid_max_passes(self, provider: FakeProvider) -> None:
        with pytest.raises(ValueError):
            Unwinder(provider, max_passes=0)
