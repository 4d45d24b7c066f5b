"""In-memory cloud provider for tests.

Behaves like the EC2 provider at the protocol level: handles are generated per
kind, deleting a resource that another live resource still references raises
DependencyViolation, and deleting an unknown handle raises ResourceNotFound.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cluster_net.errors import DependencyViolation, ResourceNotFound
from cluster_net.models.network_block import NetworkBlock


def _handles_in(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        return [h for item in value.values() for h in _handles_in(item)]
    if isinstance(value, (list, tuple)):
        return [h for item in value for h in _handles_in(item)]
    return []


class FakeProvider:
    """Records every call and keeps created resources in memory.

    Failure injection:
        create_errors[kind]: errors raised (one per call) by create of that kind
        fail_on_create: 1-based create call number that raises fail_error
        finalize_errors[kind]: errors raised (one per call) by finalize
        describe_errors[handle]: errors raised (one per call) by describe
        delete_errors[handle]: errors raised (one per call) by delete
    """

    def __init__(
        self,
        existing_vpcs: Sequence[str] = (),
        existing_subnets: Sequence[str] = (),
        zones: Sequence[str] = ("us-east-2a", "us-east-2b", "us-east-2c"),
        named_vpcs: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        self.existing_vpcs = [NetworkBlock.from_cidr(c) for c in existing_vpcs]
        self.existing_subnets = [NetworkBlock.from_cidr(c) for c in existing_subnets]
        self.zones = list(zones)
        self.named_vpcs = dict(named_vpcs or {})

        self.resources: Dict[str, Tuple[str, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.create_errors: Dict[str, List[BaseException]] = {}
        self.finalize_errors: Dict[str, List[BaseException]] = {}
        self.describe_errors: Dict[str, List[BaseException]] = {}
        self.delete_errors: Dict[str, List[BaseException]] = {}
        self.fail_on_create: Optional[int] = None
        self.fail_error: BaseException = RuntimeError("injected failure")
        self.create_attempts = 0
        self._counter = 0
        self._lock = threading.Lock()

    def count(self, operation: str) -> int:
        return sum(1 for op, _, _ in self.calls if op == operation)

    def deleted_handles(self) -> List[str]:
        return [handle for op, _, handle in self.calls if op == "delete"]

    def add_resource(self, kind: str, spec: Optional[Dict[str, Any]] = None) -> str:
        """Create a resource directly, bypassing call recording."""
        with self._lock:
            self._counter += 1
            handle = f"{kind}-{self._counter:04d}"
            self.resources[handle] = (kind, dict(spec or {}))
        return handle

    def create(self, kind: str, spec: Dict[str, Any]) -> str:
        self.create_attempts += 1
        pending = self.create_errors.get(kind)
        if pending:
            self.calls.append(("create-error", kind, ""))
            raise pending.pop(0)
        if self.fail_on_create is not None and self.create_attempts == self.fail_on_create:
            self.calls.append(("create-error", kind, ""))
            raise self.fail_error

        handle = self.add_resource(kind, spec)
        self.calls.append(("create", kind, handle))
        return handle

    def finalize(self, kind: str, handle: str, spec: Dict[str, Any]) -> None:
        pending = self.finalize_errors.get(kind)
        if pending:
            raise pending.pop(0)
        self.calls.append(("finalize", kind, handle))

    def describe(self, kind: str, handle: str) -> Dict[str, Any]:
        pending = self.describe_errors.get(handle)
        if pending:
            self.calls.append(("describe-error", kind, handle))
            raise pending.pop(0)
        if handle not in self.resources:
            raise ResourceNotFound(f"{kind} {handle} not found", "NotFound")
        self.calls.append(("describe", kind, handle))
        return {"kind": kind, **self.resources[handle][1]}

    def delete(self, kind: str, handle: str) -> None:
        pending = self.delete_errors.get(handle)
        if pending:
            self.calls.append(("delete-error", kind, handle))
            raise pending.pop(0)
        if handle not in self.resources:
            raise ResourceNotFound(f"{kind} {handle} not found", "NotFound")

        dependents = [
            other
            for other, (_, spec) in self.resources.items()
            if other != handle and handle in _handles_in(spec)
        ]
        if dependents:
            self.calls.append(("delete-blocked", kind, handle))
            raise DependencyViolation(f"{handle} is still used by {', '.join(dependents)}", "DependencyViolation")

        del self.resources[handle]
        self.calls.append(("delete", kind, handle))

    def list_existing(self, kind: str, filters: Optional[Dict[str, Any]] = None) -> List[NetworkBlock]:
        existing = self.existing_vpcs if kind == "vpc" else self.existing_subnets
        live = [
            NetworkBlock.from_cidr(spec["CidrBlock"])
            for resource_kind, spec in self.resources.values()
            if resource_kind == kind and "CidrBlock" in spec
        ]
        return list(existing) + live

    def availability_zones(self, limit: Optional[int] = None) -> List[str]:
        return self.zones[:limit] if limit else list(self.zones)

    def latest_image_id(self, name_pattern: str, owners: Optional[List[str]] = None) -> str:
        return "ami-latest"

    def find_vpcs_by_name(self, name: str) -> List[str]:
        live = [
            handle
            for handle, (kind, spec) in self.resources.items()
            if kind == "vpc" and spec.get("Tags", {}).get("Name") == name
        ]
        return list(self.named_vpcs.get(name, [])) + live


def no_sleep(_seconds: float) -> None:
    """Sleep replacement for retry loops in tests."""
