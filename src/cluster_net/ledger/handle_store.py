"""Durable ledger of created resources.

Maps logical resource names to provider handles. The ledger is rewritten
atomically on every change so an interrupted run can always be resumed or
unwound from what is on disk.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from ..models.resource_node import HandleRecord

logger = logging.getLogger(__name__)

LEDGER_VERSION = "1.0"


class ResourceHandleStore:
    """YAML-backed ledger of resource handles.

    Storage structure:
        <storage_dir>/<cluster_name>/ledger.yaml

            metadata: {version, cluster_name, region, updated_at}
            network_plan: {parent, subnets: [...]}
            outputs: {vpc-id: ..., public-subnet-ids: ..., ...}
            resources:
              - {logical_name, kind, handle, created_at, depends_on}

    Resources are kept in creation order. Every write goes to a temporary file
    that is fsynced and renamed over the ledger, and all writers serialize on a
    lock, so record() and remove() are durable when they return.

    Attributes:
        path: Ledger file path
        cluster_name: Cluster the ledger belongs to (optional)
        region: AWS region (optional)
    """

    def __init__(
        self,
        path: Union[str, Path],
        cluster_name: Optional[str] = None,
        region: Optional[str] = None,
    ) -> None:
        """Initialize the store, loading an existing ledger if present.

        Args:
            path: Ledger file path
            cluster_name: Cluster name recorded in metadata (optional)
            region: AWS region recorded in metadata (optional)
        """
        self.path = Path(path)
        self.cluster_name = cluster_name
        self.region = region
        self._lock = threading.RLock()
        self._records: Dict[str, HandleRecord] = {}
        self._outputs: Dict[str, Any] = {}
        self._network_plan: Optional[Dict[str, Any]] = None
        self._load()

    @classmethod
    def for_cluster(
        cls,
        storage_dir: Union[str, Path],
        cluster_name: str,
        region: Optional[str] = None,
    ) -> "ResourceHandleStore":
        """Open the ledger of a cluster under a storage directory."""
        return cls(Path(storage_dir) / cluster_name / "ledger.yaml", cluster_name=cluster_name, region=region)

    def _load(self) -> None:
        if not self.path.exists():
            return

        with open(self.path, "r") as f:
            data = yaml.safe_load(f) or {}

        metadata = data.get("metadata") or {}
        self.cluster_name = self.cluster_name or metadata.get("cluster_name")
        self.region = self.region or metadata.get("region")
        self._outputs = dict(data.get("outputs") or {})
        self._network_plan = data.get("network_plan")

        for entry in data.get("resources") or []:
            record = HandleRecord.from_dict(entry)
            self._records[record.logical_name] = record

        logger.debug(f"Loaded ledger {self.path} with {len(self._records)} resource(s)")

    def _flush(self) -> None:
        data = {
            "metadata": {
                "version": LEDGER_VERSION,
                "cluster_name": self.cluster_name,
                "region": self.region,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            "network_plan": self._network_plan,
            "outputs": self._outputs,
            "resources": [record.to_dict() for record in self._records.values()],
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".ledger-", suffix=".yaml", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def record(
        self,
        logical_name: str,
        kind: str,
        handle: str,
        depends_on: Iterable[str] = (),
    ) -> HandleRecord:
        """Record (or overwrite) the handle of a created resource.

        Args:
            logical_name: Ledger key
            kind: Resource kind
            handle: Provider handle
            depends_on: Logical names the resource was created after

        Returns:
            The persisted HandleRecord
        """
        with self._lock:
            record = HandleRecord(
                logical_name=logical_name,
                kind=kind,
                handle=handle,
                created_at=datetime.now(timezone.utc),
                depends_on=sorted(depends_on),
            )
            # Overwrites move the entry to the end so creation order stays accurate
            self._records.pop(logical_name, None)
            self._records[logical_name] = record
            self._flush()

        logger.debug(f"Recorded {kind} {handle} as '{logical_name}'")
        return record

    def lookup(self, logical_name: str) -> Optional[str]:
        """Handle recorded for a logical name, or None."""
        with self._lock:
            record = self._records.get(logical_name)
            return record.handle if record else None

    def get(self, logical_name: str) -> Optional[HandleRecord]:
        with self._lock:
            return self._records.get(logical_name)

    def all(self, kind: Optional[str] = None) -> List[HandleRecord]:
        """Recorded entries in creation order, optionally filtered by kind."""
        with self._lock:
            records = list(self._records.values())
        if kind is not None:
            records = [r for r in records if r.kind == kind]
        return records

    def remove(self, logical_name: str) -> bool:
        """Remove an entry after its resource was confirmed deleted.

        Returns:
            True if an entry was removed, False if none existed
        """
        with self._lock:
            if logical_name not in self._records:
                return False
            record = self._records.pop(logical_name)
            self._flush()

        logger.debug(f"Removed '{logical_name}' ({record.kind} {record.handle}) from ledger")
        return True

    def set_outputs(self, outputs: Dict[str, Any]) -> None:
        """Replace the exported outputs consumed by later provisioning stages."""
        with self._lock:
            self._outputs = dict(outputs)
            self._flush()

    @property
    def outputs(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._outputs)

    def clear_outputs(self) -> None:
        with self._lock:
            if self._outputs:
                self._outputs = {}
                self._flush()

    def set_network_plan(self, network_plan: Dict[str, Any]) -> None:
        """Persist the accepted subnet plan so a resumed run reuses the same address space."""
        with self._lock:
            self._network_plan = dict(network_plan)
            self._flush()

    @property
    def network_plan(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return dict(self._network_plan) if self._network_plan else None

    def clear_network_plan(self) -> None:
        with self._lock:
            if self._network_plan is not None:
                self._network_plan = None
                self._flush()

    def export_outputs(self, directory: Union[str, Path]) -> List[Path]:
        """Write each output as a plain text file named after its key.

        List values are written comma-separated.

        Returns:
            Paths of the written files
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        written = []

        for key, value in self.outputs.items():
            if isinstance(value, (list, tuple)):
                value = ",".join(str(v) for v in value)
            output_file = directory / key
            output_file.write_text(f"{value}\n" if value is not None else "")
            written.append(output_file)

        return written

    def is_empty(self) -> bool:
        with self._lock:
            return not self._records

    def __contains__(self, logical_name: object) -> bool:
        with self._lock:
            return logical_name in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
