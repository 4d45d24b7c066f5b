"""Cluster network provisioner.

Top-level workflow tying planning, creation, teardown and audit logging together,
with a dry-run plan mode and an execution mode.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ..errors import ResourceConflict, TeardownIncomplete
from ..ledger.audit import AuditStorage
from ..ledger.handle_store import ResourceHandleStore
from ..models.network_block import NetworkBlock, SubnetPlan
from ..models.provisioning_run import ProvisioningRun, RunMode, RunStatus
from ..models.resource_node import HandleRecord
from ..planning.address import AddressPlanner
from ..planning.conflict import ConflictResolver, overlaps
from .graph import ResourceGraph
from .orchestrator import LifecycleOrchestrator
from .provider import DiscoveryProvider
from .retry import RetryPolicy
from .template import BastionSpec, TopologyOptions, build_cluster_graph, collect_outputs
from .unwinder import Unwinder

logger = logging.getLogger(__name__)

DEFAULT_VPC_CIDR = "172.16.0.0/16"
DEFAULT_AMI_NAME = "al2023-ami-2023.*-x86_64"


@dataclass
class NetworkSettings:
    """What to build for one cluster.

    Attributes:
        cluster_name: Cluster name, used for resource names and tags
        region: AWS region
        vpc_cidr: Requested parent block
        public_subnets: Number of public subnets
        private_subnets: Number of private subnets
        subnet_prefix: Prefix length of every subnet
        availability_zones: Zones to spread subnets over (None = discover)
        nat_gateway: Route private subnets through a NAT gateway
        bastion: Launch a bastion host in the first public subnet
        instance_type: Bastion instance type
        image_id: Bastion AMI (None = latest image matching ami_name)
        ami_name: AMI name pattern used when image_id is not set
        ami_owners: Owners searched for ami_name
        key_name: Existing EC2 key pair for the bastion (optional)
        tags: Extra tags applied to every resource
    """

    cluster_name: str
    region: str
    vpc_cidr: str = DEFAULT_VPC_CIDR
    public_subnets: int = 1
    private_subnets: int = 3
    subnet_prefix: int = 24
    availability_zones: Optional[List[str]] = None
    nat_gateway: bool = True
    bastion: bool = True
    instance_type: str = "t3.medium"
    image_id: Optional[str] = None
    ami_name: str = DEFAULT_AMI_NAME
    ami_owners: List[str] = field(default_factory=lambda: ["amazon"])
    key_name: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class ClusterNetworkPlan:
    """Result of planning: accepted address space plus the resource graph.

    Attributes:
        requested: Parent block that was asked for
        subnet_plan: Accepted subnet plan (parent may differ from requested)
        graph: Resource graph to create
        availability_zones: Zones the subnets are spread over
        resumed: True if the plan was read back from an existing ledger
    """

    requested: NetworkBlock
    subnet_plan: SubnetPlan
    graph: ResourceGraph
    availability_zones: List[str] = field(default_factory=list)
    resumed: bool = False

    @property
    def relocated(self) -> bool:
        return self.subnet_plan.parent != self.requested


class ClusterNetworkProvisioner:
    """Plans, provisions and tears down a cluster network.

    Attributes:
        provider: Cloud provider with discovery support
        store: Resource handle ledger of the cluster
        audit_storage: Run log storage (optional)
        planner: Address planner
        resolver: CIDR conflict resolver
        unwinder: Teardown shared by rollback and explicit teardown
    """

    def __init__(
        self,
        provider: DiscoveryProvider,
        store: ResourceHandleStore,
        audit_storage: Optional[AuditStorage] = None,
        planner: Optional[AddressPlanner] = None,
        resolver: Optional[ConflictResolver] = None,
        retry_policy: Optional[RetryPolicy] = None,
        teardown_passes: int = 5,
        teardown_pass_delay: float = 10.0,
        max_workers: int = 1,
        verify_reused: bool = False,
        cancel_event: Optional[threading.Event] = None,
        aws_profile: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.store = store
        self.audit_storage = audit_storage
        self.planner = planner or AddressPlanner()
        self.resolver = resolver or ConflictResolver()
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_workers = max_workers
        self.verify_reused = verify_reused
        self.cancel_event = cancel_event
        self.aws_profile = aws_profile
        self._sleep = sleep
        self.unwinder = Unwinder(
            provider,
            retry_policy=self.retry_policy,
            max_passes=teardown_passes,
            pass_policy=RetryPolicy(max_attempts=teardown_passes, base_delay=teardown_pass_delay),
            sleep=sleep,
        )

    def plan(self, settings: NetworkSettings) -> ClusterNetworkPlan:
        """Compute the address plan and resource graph without creating anything.

        A ledger that still holds resources from an earlier run keeps the subnet
        plan it was created with; otherwise the requested block is checked against
        the VPCs and subnets already in the region and moved if it collides.

        Args:
            settings: Cluster network settings

        Returns:
            ClusterNetworkPlan

        Raises:
            ResourceConflict: If a VPC with the cluster's name exists outside the ledger
            AddressSpaceError: If the subnets do not fit the parent block
            NoAvailableAddressSpace: If no free parent or subnet block is found
        """
        requested = NetworkBlock.from_cidr(settings.vpc_cidr)
        saved = self.store.network_plan

        if saved and not self.store.is_empty():
            subnet_plan = SubnetPlan.from_dict(saved)
            zones = list(dict.fromkeys(r.az_hint for r, _ in subnet_plan if r.az_hint))
            logger.info(
                f"Resuming cluster '{settings.cluster_name}' with {len(self.store)} recorded resource(s) "
                f"in {subnet_plan.parent.cidr}"
            )
            resumed = True
        else:
            self._check_name_conflict(settings.cluster_name)
            zones = self._availability_zones(settings)

            existing_vpcs = self.provider.list_existing("vpc")
            parent = self.resolver.resolve_network(requested, existing_vpcs)

            subnet_plan = self.planner.plan(
                parent,
                public_count=settings.public_subnets,
                private_count=settings.private_subnets,
                subnet_prefix=settings.subnet_prefix,
                availability_zones=zones,
            )

            existing_subnets = [b for b in self.provider.list_existing("subnet") if overlaps(b, parent)]
            subnet_plan = self.resolver.resolve_subnets(subnet_plan, existing_subnets, planner=self.planner)
            resumed = False

        options = TopologyOptions(
            bastion=self._bastion_spec(settings) if settings.bastion else None,
            nat_gateway=settings.nat_gateway,
            extra_tags=settings.tags,
        )
        graph = build_cluster_graph(settings.cluster_name, subnet_plan, options)

        logger.info(
            f"Planned {len(subnet_plan)} subnet(s) in {subnet_plan.parent.cidr} "
            f"and {len(graph)} resource(s) for cluster '{settings.cluster_name}'"
        )
        return ClusterNetworkPlan(
            requested=requested,
            subnet_plan=subnet_plan,
            graph=graph,
            availability_zones=zones,
            resumed=resumed,
        )

    def provision(
        self,
        settings: NetworkSettings,
        network_plan: Optional[ClusterNetworkPlan] = None,
    ) -> ProvisioningRun:
        """Create the cluster network, rolling everything back on failure.

        Args:
            settings: Cluster network settings
            network_plan: Plan from plan() (computed if omitted)

        Returns:
            ProvisioningRun with status completed, rolled-back or failed
        """
        network_plan = network_plan or self.plan(settings)
        subnet_plan = network_plan.subnet_plan
        run = self._new_run(RunMode.PROVISION, settings.cluster_name, settings.region)
        run.vpc_cidr = subnet_plan.parent.cidr

        self.store.set_network_plan(subnet_plan.to_dict())
        orchestrator = LifecycleOrchestrator(
            self.provider,
            self.store,
            unwinder=self.unwinder,
            retry_policy=self.retry_policy,
            max_workers=self.max_workers,
            verify_reused=self.verify_reused,
            cancel_event=self.cancel_event,
            sleep=self._sleep,
        )

        try:
            result = orchestrator.run(network_plan.graph)
        except KeyboardInterrupt:
            run.status = RunStatus.FAILED
            run.failure = "Interrupted"
            self._finish(run)
            raise

        run.steps = result.steps
        if result.succeeded:
            outputs = collect_outputs(
                self.store,
                subnet_plan,
                region=settings.region,
                availability_zones=network_plan.availability_zones,
            )
            self.store.set_outputs(outputs)
            run.status = RunStatus.COMPLETED
            logger.info(f"Cluster network '{settings.cluster_name}' ready: VPC {outputs.get('vpc-id')}")
        else:
            run.failure = str(result.failure)
            if result.teardown is not None and result.teardown.completed:
                run.status = RunStatus.ROLLED_BACK
            else:
                run.status = RunStatus.FAILED
                logger.error(f"Rollback left {len(self.store)} resource(s) in the ledger {self.store.path}")

        self._finish(run)
        return run

    def preview_teardown(self) -> List[HandleRecord]:
        """Resources teardown would delete, in deletion order."""
        return self.unwinder.plan(self.store)

    def teardown(self, confirmed: bool = False) -> ProvisioningRun:
        """Delete every resource recorded in the ledger.

        Args:
            confirmed: Must be True to proceed

        Returns:
            ProvisioningRun with status completed or partial

        Raises:
            ValueError: If not confirmed
        """
        if not confirmed:
            raise ValueError("Teardown requires explicit confirmation. Set confirmed=True or use --confirm flag.")

        run = self._new_run(RunMode.TEARDOWN, self.store.cluster_name or "", self.store.region or "")
        saved = self.store.network_plan
        if saved:
            run.vpc_cidr = saved.get("parent")

        report = self.unwinder.teardown(self.store)
        run.steps = report.steps
        if report.completed:
            run.status = RunStatus.COMPLETED
        else:
            run.status = RunStatus.PARTIAL
            run.failure = str(TeardownIncomplete([(r.logical_name, r.kind, r.handle) for r in report.remaining]))

        self._finish(run)
        return run

    def _check_name_conflict(self, cluster_name: str) -> None:
        name = f"{cluster_name}-vpc"
        recorded = self.store.lookup("vpc")
        foreign = [vpc_id for vpc_id in self.provider.find_vpcs_by_name(name) if vpc_id != recorded]
        if foreign:
            raise ResourceConflict(
                f"VPC '{name}' already exists ({', '.join(foreign)}) but is not recorded in {self.store.path}",
                "ClusterExists",
            )

    def _availability_zones(self, settings: NetworkSettings) -> List[str]:
        if settings.availability_zones:
            return list(settings.availability_zones)
        wanted = max(settings.public_subnets, settings.private_subnets, 1)
        zones = self.provider.availability_zones(limit=wanted)
        logger.debug(f"Using availability zones: {', '.join(zones) or 'none'}")
        return zones

    def _bastion_spec(self, settings: NetworkSettings) -> BastionSpec:
        image_id = settings.image_id
        if not image_id:
            image_id = self.provider.latest_image_id(settings.ami_name, settings.ami_owners)
            logger.info(f"Using image {image_id} for the bastion host")
        return BastionSpec(image_id=image_id, instance_type=settings.instance_type, key_name=settings.key_name)

    def _new_run(self, mode: RunMode, cluster_name: str, region: str) -> ProvisioningRun:
        now = datetime.now(timezone.utc)
        return ProvisioningRun(
            run_id=f"run_{uuid.uuid4()}",
            cluster_name=cluster_name,
            region=region,
            mode=mode,
            status=RunStatus.EXECUTING,
            timestamp=now,
            aws_profile=self.aws_profile,
            started_at=now,
        )

    def _finish(self, run: ProvisioningRun) -> None:
        run.completed_at = datetime.now(timezone.utc)
        if self.audit_storage is not None:
            path = self.audit_storage.log_run(run)
            logger.debug(f"Run {run.run_id} logged to {path}")
