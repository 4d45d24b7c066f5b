"""Data models for network planning and resource provisioning."""

from __future__ import annotations

from .network_block import NetworkBlock, SubnetPlan, SubnetRequest, SubnetTier
from .provisioning_run import ProvisioningRun, RunMode, RunStatus, StepRecord, StepStatus
from .resource_node import HandleRecord, NodeState, Ref, ResourceKind, ResourceNode

__all__ = [
    "NetworkBlock",
    "SubnetPlan",
    "SubnetRequest",
    "SubnetTier",
    "ProvisioningRun",
    "RunMode",
    "RunStatus",
    "StepRecord",
    "StepStatus",
    "HandleRecord",
    "NodeState",
    "Ref",
    "ResourceKind",
    "ResourceNode",
]
