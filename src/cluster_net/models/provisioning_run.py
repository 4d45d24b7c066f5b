"""Provisioning run model.

Represents one provision or teardown run with per-step results, for the audit log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class RunMode(Enum):
    """Run mode."""

    PROVISION = "provision"
    TEARDOWN = "teardown"


class RunStatus(Enum):
    """Run status with state transitions."""

    EXECUTING = "executing"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled-back"
    PARTIAL = "partial"
    FAILED = "failed"


class StepStatus(Enum):
    """Outcome of a single create or delete step."""

    CREATED = "created"
    REUSED = "reused"
    FAILED = "failed"
    DELETED = "deleted"
    DEFERRED = "deferred"


@dataclass
class StepRecord:
    """Result of one step against one resource.

    Validation rules:
        - status=failed or deferred: requires error_message
        - status=created, reused or deleted: no error_message

    Attributes:
        logical_name: Node / ledger key
        kind: Resource kind
        status: Step outcome
        timestamp: When the step finished (UTC)
        handle: Provider handle (optional)
        error_code: Provider error code if failed (optional)
        error_message: Human-readable error if failed or deferred (optional)
        attempt: Teardown pass or creation attempt number (optional)
    """

    logical_name: str
    kind: str
    status: StepStatus
    timestamp: datetime
    handle: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    attempt: Optional[int] = None

    def validate(self) -> bool:
        """Validate record invariants.

        Raises:
            ValueError: If any validation rule fails
        """
        if self.status in (StepStatus.FAILED, StepStatus.DEFERRED):
            if not self.error_message:
                raise ValueError(f"{self.status.value} status requires error_message")
        elif self.error_message:
            raise ValueError(f"{self.status.value} status cannot have an error message")
        return True


@dataclass
class ProvisioningRun:
    """Provision or teardown run.

    State transitions:
        executing → completed (every step succeeded)
        executing → rolled-back (creation failed, unwind succeeded)
        executing → partial (teardown left resources behind)
        executing → failed (unwind or teardown could not finish)

    Attributes:
        run_id: Unique identifier for the run
        cluster_name: Cluster the topology belongs to
        region: AWS region
        mode: provision or teardown
        status: Current status
        timestamp: When the run was initiated (UTC)
        vpc_cidr: Parent network block (optional)
        aws_profile: AWS profile used for credentials (optional)
        steps: Per-resource step records
        failure: First fatal error message (optional)
        started_at: When execution started (optional)
        completed_at: When execution completed (optional)
    """

    run_id: str
    cluster_name: str
    region: str
    mode: RunMode
    status: RunStatus
    timestamp: datetime
    vpc_cidr: Optional[str] = None
    aws_profile: Optional[str] = None
    steps: List[StepRecord] = field(default_factory=list)
    failure: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def count(self, status: StepStatus) -> int:
        return sum(1 for step in self.steps if step.status == status)

    def validate(self) -> bool:
        """Validate run invariants.

        Validation rules:
            - completed_at must be after started_at

        Raises:
            ValueError: If any validation rule fails
        """
        if self.completed_at and self.started_at and self.completed_at < self.started_at:
            raise ValueError("Completion time before start time")

        for step in self.steps:
            step.validate()

        return True
