"""Integration tests for the cluster network workflow.

Plan, provision, resume and tear down a full cluster topology against the
in-memory provider, with the ledger and audit logs on disk.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from cluster_net.errors import TransientProviderError
from cluster_net.ledger.audit import AuditStorage
from cluster_net.ledger.handle_store import ResourceHandleStore
from cluster_net.models.provisioning_run import RunMode, RunStatus, StepStatus
from cluster_net.provision.provisioner import ClusterNetworkProvisioner, NetworkSettings
from cluster_net.provision.retry import RetryPolicy
from tests.fixtures.provider import FakeProvider, no_sleep


class TestClusterWorkflowIntegration:
    """End-to-end lifecycle of one cluster network."""

    @pytest.fixture
    def storage_dir(self, tmp_path: Path) -> Path:
        return tmp_path / ".clusternet"

    @pytest.fixture
    def audit_storage(self, storage_dir: Path) -> AuditStorage:
        return AuditStorage(storage_dir=str(storage_dir / "audit-logs"))

    @pytest.fixture
    def settings(self) -> NetworkSettings:
        return NetworkSettings(cluster_name="prod", region="us-east-2", tags={"team": "platform"})

    def _provisioner(self, provider, storage_dir, audit_storage, **kwargs) -> ClusterNetworkProvisioner:
        store = ResourceHandleStore.for_cluster(storage_dir / "clusters", "prod", region="us-east-2")
        return ClusterNetworkProvisioner(
            provider,
            store,
            audit_storage=audit_storage,
            retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0),
            sleep=no_sleep,
            **kwargs,
        )

    def test_full_lifecycle(self, storage_dir, audit_storage, settings) -> None:
        """Provision next to a default VPC, then tear everything down."""
        provider = FakeProvider(existing_vpcs=["172.16.0.0/16"], existing_subnets=["172.16.0.0/20"])
        provider.create_errors["subnet"] = [TransientProviderError("vpc not visible yet", "InvalidVpcID.NotFound")]
        provisioner = self._provisioner(provider, storage_dir, audit_storage)

        run = provisioner.provision(settings)

        assert run.status == RunStatus.COMPLETED
        assert run.vpc_cidr == "172.17.0.0/16"
        outputs = provisioner.store.outputs
        assert outputs["vpc-cidr"] == "172.17.0.0/16"
        assert outputs["public-subnet-cidrs"] == ["172.17.1.0/24"]
        assert outputs["private-subnet-cidrs"] == ["172.17.11.0/24", "172.17.12.0/24", "172.17.13.0/24"]
        assert outputs["availability-zones"] == ["us-east-2a", "us-east-2b", "us-east-2c"]
        assert outputs["bastion-instance-id"] in provider.resources

        vpc_spec = provider.resources[outputs["vpc-id"]][1]
        assert vpc_spec["Tags"]["kubernetes.io/cluster/prod"] == "shared"
        assert vpc_spec["Tags"]["team"] == "platform"

        teardown = provisioner.teardown(confirmed=True)

        assert teardown.status == RunStatus.COMPLETED
        assert provider.resources == {}
        assert provisioner.store.is_empty()
        assert provisioner.store.outputs == {}

        runs = audit_storage.query_runs(cluster_name="prod")
        assert [r["run"]["mode"] for r in runs] == [RunMode.PROVISION.value, RunMode.TEARDOWN.value]
        assert runs[0]["run"]["status"] == RunStatus.COMPLETED.value

    def test_resume_after_lost_resource(self, storage_dir, audit_storage, settings) -> None:
        """A second run only recreates what the ledger no longer holds."""
        provider = FakeProvider()
        first = self._provisioner(provider, storage_dir, audit_storage).provision(settings)
        assert first.status == RunStatus.COMPLETED

        store = ResourceHandleStore.for_cluster(storage_dir / "clusters", "prod")
        lost = store.lookup("bastion-instance")
        store.remove("bastion-instance")
        del provider.resources[lost]

        resumed = self._provisioner(provider, storage_dir, audit_storage)
        network_plan = resumed.plan(settings)
        run = resumed.provision(settings, network_plan)

        assert network_plan.resumed
        assert run.status == RunStatus.COMPLETED
        assert run.count(StepStatus.CREATED) == 1
        assert run.count(StepStatus.REUSED) == len(network_plan.graph) - 1
        assert resumed.store.lookup("bastion-instance") != lost

    def test_concurrent_provision_and_teardown(self, storage_dir, audit_storage, settings) -> None:
        settings.private_subnets = 3
        provider = FakeProvider()
        provisioner = self._provisioner(provider, storage_dir, audit_storage, max_workers=4)

        run = provisioner.provision(settings)

        assert run.status == RunStatus.COMPLETED
        assert len(set(provider.resources)) == len(provisioner.store)

        teardown = provisioner.teardown(confirmed=True)

        assert teardown.status == RunStatus.COMPLETED
        assert provider.resources == {}

    def test_rollback_leaves_nothing_behind(self, storage_dir, audit_storage, settings) -> None:
        provider = FakeProvider()
        provider.fail_on_create = 6
        provisioner = self._provisioner(provider, storage_dir, audit_storage)

        run = provisioner.provision(settings)

        assert run.status == RunStatus.ROLLED_BACK
        assert provider.resources == {}
        assert provisioner.store.is_empty()
        assert provisioner.store.network_plan is None
        logged = audit_storage.get_run(run.run_id)
        assert logged["run"]["status"] == RunStatus.ROLLED_BACK.value
        assert "injected failure" in logged["run"]["failure"]
