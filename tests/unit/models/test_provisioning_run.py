"""Tests for ProvisioningRun and StepRecord models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from cluster_net.models.provisioning_run import ProvisioningRun, RunMode, RunStatus, StepRecord, StepStatus


def _step(status: StepStatus, error_message=None) -> StepRecord:
    return StepRecord(
        logical_name="vpc",
        kind="vpc",
        status=status,
        timestamp=datetime.now(timezone.utc),
        handle="vpc-123",
        error_message=error_message,
    )


class TestStepRecord:
    """Tests for StepRecord validation."""

    def test_created_without_error(self) -> None:
        assert _step(StepStatus.CREATED).validate() is True

    def test_failed_requires_error_message(self) -> None:
        with pytest.raises(ValueError, match="requires error_message"):
            _step(StepStatus.FAILED).validate()

    def test_deferred_with_error_message(self) -> None:
        assert _step(StepStatus.DEFERRED, "DependencyViolation").validate() is True

    def test_deleted_cannot_have_error(self) -> None:
        with pytest.raises(ValueError, match="cannot have an error message"):
            _step(StepStatus.DELETED, "boom").validate()


class TestProvisioningRun:
    """Tests for ProvisioningRun."""

    def _run(self, **overrides) -> ProvisioningRun:
        values = dict(
            run_id="run_1",
            cluster_name="demo",
            region="us-east-2",
            mode=RunMode.PROVISION,
            status=RunStatus.COMPLETED,
            timestamp=datetime.now(timezone.utc),
        )
        values.update(overrides)
        return ProvisioningRun(**values)

    def test_duration(self) -> None:
        started = datetime(2026, 10, 1, tzinfo=timezone.utc)
        run = self._run(started_at=started, completed_at=started + timedelta(seconds=90))

        assert run.duration_seconds == 90.0

    def test_duration_unknown_until_completed(self) -> None:
        assert self._run(started_at=datetime.now(timezone.utc)).duration_seconds is None

    def test_count(self) -> None:
        run = self._run(steps=[_step(StepStatus.CREATED), _step(StepStatus.REUSED), _step(StepStatus.CREATED)])

        assert run.count(StepStatus.CREATED) == 2
        assert run.count(StepStatus.REUSED) == 1

    def test_completed_before_started_is_invalid(self) -> None:
        started = datetime(2026, 10, 1, tzinfo=timezone.utc)
        run = self._run(started_at=started, completed_at=started - timedelta(seconds=1))

        with pytest.raises(ValueError):
            run.validate()

    def test_invalid_step_fails_run_validation(self) -> None:
        run = self._run(status=RunStatus.FAILED, steps=[_step(StepStatus.CREATED), _step(StepStatus.FAILED)])

        with pytest.raises(ValueError, match="requires error_message"):
            run.validate()

    def test_runs_are_provision_or_teardown(self) -> None:
        assert [mode.value for mode in RunMode] == ["provision", "teardown"]
        assert RunStatus("executing") == RunStatus.EXECUTING
        with pytest.raises(ValueError):
            RunStatus("planned")
