"""Resource graph construction, creation, rollback and teardown."""

from .graph import ResourceGraph, compute_deletion_order
from .orchestrator import LifecycleOrchestrator, ProvisionResult
from .provider import CloudProvider, DiscoveryProvider
from .provisioner import ClusterNetworkPlan, ClusterNetworkProvisioner, NetworkSettings
from .retry import RetryPolicy, call_with_retry
from .template import BastionSpec, TopologyOptions, build_cluster_graph, collect_outputs
from .unwinder import TeardownReport, Unwinder

__all__ = [
    "BastionSpec",
    "CloudProvider",
    "ClusterNetworkPlan",
    "ClusterNetworkProvisioner",
    "DiscoveryProvider",
    "LifecycleOrchestrator",
    "NetworkSettings",
    "ProvisionResult",
    "ResourceGraph",
    "RetryPolicy",
    "TeardownReport",
    "TopologyOptions",
    "Unwinder",
    "build_cluster_graph",
    "call_with_retry",
    "collect_outputs",
    "compute_deletion_order",
]
