"""Cloud provider capability consumed by the orchestrator and unwinder."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from ..models.network_block import NetworkBlock


class CloudProvider(Protocol):
    """Resource-management capability.

    Implementations raise the ProviderError family from cluster_net.errors:
    create raises ResourceConflict, InvalidParameter, QuotaExceeded or
    TransientProviderError; delete raises ResourceNotFound, DependencyViolation
    or TransientProviderError; describe raises ResourceNotFound.
    """

    def create(self, kind: str, spec: Dict[str, Any]) -> str:
        """Create a resource and return its handle."""
        ...

    def finalize(self, kind: str, handle: str, spec: Dict[str, Any]) -> None:
        """Apply post-create settings and wait until the resource is usable."""
        ...

    def describe(self, kind: str, handle: str) -> Dict[str, Any]:
        """Return the current state of a resource."""
        ...

    def delete(self, kind: str, handle: str) -> None:
        """Delete a resource (and wait for deletion where dependents need it gone)."""
        ...

    def list_existing(self, kind: str, filters: Optional[Dict[str, Any]] = None) -> List[NetworkBlock]:
        """Network blocks of existing resources of a kind (vpc or subnet)."""
        ...


class DiscoveryProvider(CloudProvider, Protocol):
    """Provider that can also inspect the target region before planning."""

    def availability_zones(self, limit: Optional[int] = None) -> List[str]:
        """Available zone names, sorted."""
        ...

    def latest_image_id(self, name_pattern: str, owners: Optional[List[str]] = None) -> str:
        """Most recent image matching a name pattern."""
        ...

    def find_vpcs_by_name(self, name: str) -> List[str]:
        """IDs of networks carrying the given Name tag."""
        ...
