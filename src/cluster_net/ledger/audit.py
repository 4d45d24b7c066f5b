"""Audit storage for provisioning runs.

Stores and retrieves run logs in YAML format for troubleshooting.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml

from ..models.provisioning_run import ProvisioningRun


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class AuditStorage:
    """Run log storage and retrieval.

    Stores provisioning run logs as YAML files organized by year/month.

    Storage structure:
        ~/.clusternet/audit-logs/
            2026/
                10/
                    run-run_123.yaml
                    run-run_456.yaml

    Attributes:
        storage_dir: Base directory for audit logs
    """

    def __init__(self, storage_dir: Optional[str] = None) -> None:
        """Initialize audit storage.

        Args:
            storage_dir: Base directory for audit logs (default: ~/.clusternet/audit-logs)
        """
        if storage_dir is None:
            storage_dir = str(Path.home() / ".clusternet" / "audit-logs")

        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def log_run(self, run: ProvisioningRun) -> Path:
        """Write a run log, overwriting an existing log with the same run ID.

        Args:
            run: Provisioning run to log

        Returns:
            Path of the written log file
        """
        year_month_dir = self.storage_dir / str(run.timestamp.year) / f"{run.timestamp.month:02d}"
        year_month_dir.mkdir(parents=True, exist_ok=True)

        audit_data = {
            "metadata": {
                "version": "1.0",
                "log_type": f"cluster_network_{run.mode.value}",
                "created_at": datetime.now(timezone.utc).isoformat(),
            },
            "run": {
                "run_id": run.run_id,
                "cluster_name": run.cluster_name,
                "region": run.region,
                "mode": run.mode.value,
                "status": run.status.value,
                "timestamp": run.timestamp.isoformat(),
                "vpc_cidr": run.vpc_cidr,
                "aws_profile": run.aws_profile,
                "failure": run.failure,
                "started_at": _iso(run.started_at),
                "completed_at": _iso(run.completed_at),
                "duration_seconds": run.duration_seconds,
            },
            "steps": [
                {
                    "logical_name": step.logical_name,
                    "kind": step.kind,
                    "status": step.status.value,
                    "timestamp": step.timestamp.isoformat(),
                    "handle": step.handle,
                    "error_code": step.error_code,
                    "error_message": step.error_message,
                    "attempt": step.attempt,
                }
                for step in run.steps
            ],
        }

        audit_file = year_month_dir / f"run-{run.run_id}.yaml"
        with open(audit_file, "w") as f:
            yaml.safe_dump(audit_data, f, default_flow_style=False, sort_keys=False)

        return audit_file

    def get_run(self, run_id: str) -> Optional[dict]:
        """Retrieve a run log by ID.

        Returns:
            Audit log dictionary if found, None otherwise
        """
        for audit_file in self.storage_dir.glob(f"*/*/run-{run_id}.yaml"):
            with open(audit_file, "r") as f:
                return yaml.safe_load(f)

        return None

    def query_runs(
        self,
        cluster_name: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[dict]:
        """Query run logs, oldest first.

        Args:
            cluster_name: Only runs for this cluster (optional)
            since: Start date (inclusive), None for all
            until: End date (inclusive), None for all

        Returns:
            List of run logs matching criteria
        """
        results = []

        for audit_file in sorted(self.storage_dir.glob("*/*/run-*.yaml")):
            with open(audit_file, "r") as f:
                audit_data = yaml.safe_load(f)

            run = audit_data["run"]
            if cluster_name and run["cluster_name"] != cluster_name:
                continue

            timestamp = datetime.fromisoformat(run["timestamp"])
            if since and timestamp < since:
                continue
            if until and timestamp > until:
                continue

            results.append(audit_data)

        results.sort(key=lambda data: data["run"]["timestamp"])
        return results
