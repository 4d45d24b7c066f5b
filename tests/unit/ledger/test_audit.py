"""Tests for AuditStorage."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from cluster_net.ledger.audit import AuditStorage
from cluster_net.models.provisioning_run import ProvisioningRun, RunMode, RunStatus, StepRecord, StepStatus


def _run(run_id: str, cluster: str, timestamp: datetime) -> ProvisioningRun:
    return ProvisioningRun(
        run_id=run_id,
        cluster_name=cluster,
        region="us-east-2",
        mode=RunMode.PROVISION,
        status=RunStatus.ROLLED_BACK,
        timestamp=timestamp,
        vpc_cidr="172.16.0.0/16",
        failure="Failed to create 'nat-gateway': quota",
        steps=[
            StepRecord("vpc", "vpc", StepStatus.CREATED, timestamp, handle="vpc-1"),
            StepRecord(
                "nat-gateway",
                "nat-gateway",
                StepStatus.FAILED,
                timestamp,
                error_code="NatGatewayLimitExceeded",
                error_message="quota",
            ),
        ],
        started_at=timestamp,
        completed_at=timestamp + timedelta(seconds=5),
    )


class TestAuditStorage:
    """Tests for run log storage."""

    @pytest.fixture
    def storage(self, tmp_path: Path) -> AuditStorage:
        return AuditStorage(str(tmp_path / "audit-logs"))

    def test_log_run_layout(self, storage: AuditStorage) -> None:
        timestamp = datetime(2026, 3, 7, 10, 0, tzinfo=timezone.utc)

        path = storage.log_run(_run("run_1", "demo", timestamp))

        assert path == storage.storage_dir / "2026" / "03" / "run-run_1.yaml"
        assert path.exists()

    def test_get_run(self, storage: AuditStorage) -> None:
        storage.log_run(_run("run_1", "demo", datetime.now(timezone.utc)))

        data = storage.get_run("run_1")

        assert data["run"]["status"] == "rolled-back"
        assert data["run"]["duration_seconds"] == 5.0
        assert [s["status"] for s in data["steps"]] == ["created", "failed"]
        assert data["steps"][1]["error_code"] == "NatGatewayLimitExceeded"

    def test_get_missing_run(self, storage: AuditStorage) -> None:
        assert storage.get_run("nope") is None

    def test_query_runs(self, storage: AuditStorage) -> None:
        base = datetime(2026, 10, 1, tzinfo=timezone.utc)
        storage.log_run(_run("run_a", "demo", base))
        storage.log_run(_run("run_b", "other", base + timedelta(days=1)))
        storage.log_run(_run("run_c", "demo", base + timedelta(days=40)))

        demo_runs = storage.query_runs(cluster_name="demo")
        recent = storage.query_runs(since=base + timedelta(hours=1))

        assert [r["run"]["run_id"] for r in demo_runs] == ["run_a", "run_c"]
        assert [r["run"]["run_id"] for r in recent] == ["run_b", "run_c"]
