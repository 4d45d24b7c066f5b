"""Resource node and handle record models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class NodeState(Enum):
    """Per-node lifecycle state.

    State transitions:
        planned → creating → created
        planned → creating → failed
        created → deleted (teardown)
    """

    PLANNED = "planned"
    CREATING = "creating"
    CREATED = "created"
    FAILED = "failed"
    DELETED = "deleted"


class ResourceKind(str, Enum):
    """Resource kinds the cluster topology is built from."""

    VPC = "vpc"
    INTERNET_GATEWAY = "internet-gateway"
    INTERNET_GATEWAY_ATTACHMENT = "internet-gateway-attachment"
    SUBNET = "subnet"
    ELASTIC_IP = "elastic-ip"
    NAT_GATEWAY = "nat-gateway"
    ROUTE_TABLE = "route-table"
    ROUTE = "route"
    ROUTE_TABLE_ASSOCIATION = "route-table-association"
    SECURITY_GROUP = "security-group"
    SECURITY_GROUP_RULE = "security-group-rule"
    INSTANCE = "instance"


@dataclass(frozen=True)
class Ref:
    """Reference to another node's provider handle inside a node spec.

    Resolved against the handle store right before the create call.
    """

    logical_name: str


def find_refs(value: Any) -> Set[str]:
    """Collect logical names referenced anywhere inside a spec value."""
    if isinstance(value, Ref):
        return {value.logical_name}
    if isinstance(value, dict):
        found: Set[str] = set()
        for item in value.values():
            found |= find_refs(item)
        return found
    if isinstance(value, (list, tuple)):
        found = set()
        for item in value:
            found |= find_refs(item)
        return found
    return set()


@dataclass
class ResourceNode:
    """One creation step of the resource graph.

    Attributes:
        logical_name: Stable name used as the ledger key
        kind: Resource kind (see ResourceKind)
        spec: Provider parameters; may contain Ref values
        depends_on: Logical names that must be created first
        handle: Provider handle once created or reused
        state: Lifecycle state
    """

    logical_name: str
    kind: str
    spec: Dict[str, Any] = field(default_factory=dict)
    depends_on: Set[str] = field(default_factory=set)
    handle: Optional[str] = None
    state: NodeState = NodeState.PLANNED

    def __post_init__(self) -> None:
        if isinstance(self.kind, ResourceKind):
            self.kind = self.kind.value
        # Every reference in the spec is an implicit dependency
        self.depends_on = set(self.depends_on) | find_refs(self.spec)
        self.depends_on.discard(self.logical_name)


@dataclass
class HandleRecord:
    """Persisted ledger entry for a created resource.

    Attributes:
        logical_name: Ledger key
        kind: Resource kind
        handle: Provider handle
        created_at: When the create call succeeded (UTC)
        depends_on: Logical names the resource was created after
    """

    logical_name: str
    kind: str
    handle: str
    created_at: datetime
    depends_on: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logical_name": self.logical_name,
            "kind": self.kind,
            "handle": self.handle,
            "created_at": self.created_at.isoformat(),
            "depends_on": list(self.depends_on),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HandleRecord":
        return cls(
            logical_name=data["logical_name"],
            kind=data["kind"],
            handle=data["handle"],
            created_at=datetime.fromisoformat(data["created_at"]),
            depends_on=list(data.get("depends_on") or []),
        )
