"""Cluster network topology template.

Builds the resource graph for an isolated cluster network from a subnet plan:
VPC, internet gateway, public and private subnets, NAT gateway, route tables,
bastion and cluster security groups, and an optional bastion host.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..ledger.handle_store import ResourceHandleStore
from ..models.network_block import SubnetPlan, SubnetTier
from ..models.resource_node import Ref, ResourceKind, ResourceNode
from .graph import ResourceGraph

ANYWHERE = "0.0.0.0/0"

# Ports opened on the bastion host: SSH, HTTP/HTTPS and the mirror registry
BASTION_PUBLIC_PORTS = (22, 80, 443)
REGISTRY_PORT = 5000


@dataclass
class BastionSpec:
    """Bastion host parameters.

    Attributes:
        image_id: AMI ID
        instance_type: EC2 instance type
        key_name: Existing EC2 key pair name (optional)
    """

    image_id: str
    instance_type: str = "t3.medium"
    key_name: Optional[str] = None


@dataclass
class TopologyOptions:
    """Optional parts of the topology.

    Attributes:
        bastion: Bastion host to launch (None to skip)
        nat_gateway: Give private subnets outbound access through a NAT gateway
        extra_tags: Tags added to every resource
    """

    bastion: Optional[BastionSpec] = None
    nat_gateway: bool = True
    extra_tags: Dict[str, str] = field(default_factory=dict)


def cluster_tags(cluster_name: str, suffix: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Name and cluster ownership tags for one resource."""
    tags = {
        "Name": f"{cluster_name}-{suffix}",
        f"kubernetes.io/cluster/{cluster_name}": "shared",
    }
    tags.update(extra or {})
    return tags


def _ingress_rule(group: str, protocol: str, port: Optional[int], **source: Any) -> Dict[str, Any]:
    rule: Dict[str, Any] = {"GroupId": Ref(group), "IpProtocol": protocol}
    if port is not None:
        rule["FromPort"] = port
        rule["ToPort"] = port
    rule.update(source)
    return rule


def build_cluster_graph(
    cluster_name: str,
    plan: SubnetPlan,
    options: Optional[TopologyOptions] = None,
) -> ResourceGraph:
    """Build the resource graph for a cluster network.

    Args:
        cluster_name: Cluster name, used as resource name prefix and tag
        plan: Accepted subnet plan
        options: Optional topology parts

    Returns:
        Validated ResourceGraph
    """
    options = options or TopologyOptions()
    extra = options.extra_tags
    graph = ResourceGraph()
    public = plan.tier(SubnetTier.PUBLIC)
    private = plan.tier(SubnetTier.PRIVATE)

    graph.add(
        ResourceNode(
            "vpc",
            ResourceKind.VPC,
            spec={
                "CidrBlock": plan.parent.cidr,
                "EnableDnsHostnames": True,
                "EnableDnsSupport": True,
                "Tags": cluster_tags(cluster_name, "vpc", extra),
            },
        )
    )

    for request, block in plan:
        role_tag = "kubernetes.io/role/elb" if request.tier == SubnetTier.PUBLIC else "kubernetes.io/role/internal-elb"
        tags = cluster_tags(cluster_name, f"{request.tier.value}-{request.index}", extra)
        tags[role_tag] = "1"
        spec: Dict[str, Any] = {
            "VpcId": Ref("vpc"),
            "CidrBlock": block.cidr,
            "MapPublicIpOnLaunch": request.tier == SubnetTier.PUBLIC,
            "Tags": tags,
        }
        if request.az_hint:
            spec["AvailabilityZone"] = request.az_hint
        graph.add(ResourceNode(request.name, ResourceKind.SUBNET, spec=spec))

    if public:
        graph.add(
            ResourceNode(
                "internet-gateway",
                ResourceKind.INTERNET_GATEWAY,
                spec={"Tags": cluster_tags(cluster_name, "igw", extra)},
            )
        )
        graph.add(
            ResourceNode(
                "internet-gateway-attachment",
                ResourceKind.INTERNET_GATEWAY_ATTACHMENT,
                spec={"InternetGatewayId": Ref("internet-gateway"), "VpcId": Ref("vpc")},
            )
        )
        _add_route_table(
            graph,
            cluster_name,
            "public",
            [request.name for request, _ in public],
            target={"GatewayId": Ref("internet-gateway")},
            extra_depends_on={"internet-gateway-attachment"},
            extra_tags=extra,
        )

    if private:
        target = None
        if public and options.nat_gateway:
            graph.add(
                ResourceNode(
                    "nat-eip",
                    ResourceKind.ELASTIC_IP,
                    spec={"Tags": cluster_tags(cluster_name, "nat-eip", extra)},
                    # An EIP in a VPC needs the internet gateway attached first
                    depends_on={"internet-gateway-attachment"},
                )
            )
            graph.add(
                ResourceNode(
                    "nat-gateway",
                    ResourceKind.NAT_GATEWAY,
                    spec={
                        "SubnetId": Ref(public[0][0].name),
                        "AllocationId": Ref("nat-eip"),
                        "Tags": cluster_tags(cluster_name, "nat", extra),
                    },
                )
            )
            target = {"NatGatewayId": Ref("nat-gateway")}
        _add_route_table(
            graph,
            cluster_name,
            "private",
            [request.name for request, _ in private],
            target=target,
            extra_tags=extra,
        )

    _add_security_groups(graph, cluster_name, extra)

    if options.bastion and public:
        bastion = options.bastion
        spec = {
            "ImageId": bastion.image_id,
            "InstanceType": bastion.instance_type,
            "SubnetId": Ref(public[0][0].name),
            "SecurityGroupIds": [Ref("bastion-sg")],
            "Tags": cluster_tags(cluster_name, "bastion", extra),
        }
        if bastion.key_name:
            spec["KeyName"] = bastion.key_name
        # Launch after routing is in place so bootstrap can reach the internet
        graph.add(
            ResourceNode(
                "bastion-instance",
                ResourceKind.INSTANCE,
                spec=spec,
                depends_on={"public-default-route"},
            )
        )

    graph.validate()
    return graph


def _add_route_table(
    graph: ResourceGraph,
    cluster_name: str,
    tier: str,
    subnet_names: List[str],
    target: Optional[Dict[str, Any]],
    extra_depends_on: Optional[set] = None,
    extra_tags: Optional[Dict[str, str]] = None,
) -> None:
    table = f"{tier}-route-table"
    graph.add(
        ResourceNode(
            table,
            ResourceKind.ROUTE_TABLE,
            spec={"VpcId": Ref("vpc"), "Tags": cluster_tags(cluster_name, f"{tier}-rt", extra_tags)},
        )
    )

    if target:
        graph.add(
            ResourceNode(
                f"{tier}-default-route",
                ResourceKind.ROUTE,
                spec={"RouteTableId": Ref(table), "DestinationCidrBlock": ANYWHERE, **target},
                depends_on=set(extra_depends_on or ()),
            )
        )

    for subnet_name in subnet_names:
        graph.add(
            ResourceNode(
                f"{subnet_name}-route-association",
                ResourceKind.ROUTE_TABLE_ASSOCIATION,
                spec={"RouteTableId": Ref(table), "SubnetId": Ref(subnet_name)},
            )
        )


def _add_security_groups(graph: ResourceGraph, cluster_name: str, extra_tags: Dict[str, str]) -> None:
    for group, description in (
        ("bastion-sg", "Security group for bastion host"),
        ("cluster-sg", "Security group for cluster nodes"),
    ):
        graph.add(
            ResourceNode(
                group,
                ResourceKind.SECURITY_GROUP,
                spec={
                    "GroupName": f"{cluster_name}-{group}",
                    "Description": description,
                    "VpcId": Ref("vpc"),
                    "Tags": cluster_tags(cluster_name, group, extra_tags),
                },
            )
        )

    rules = {}
    for port in BASTION_PUBLIC_PORTS + (REGISTRY_PORT,):
        rules[f"bastion-sg-ingress-{port}"] = _ingress_rule("bastion-sg", "tcp", port, CidrIp=ANYWHERE)
    # Cluster nodes pull images from the registry on the bastion
    rules["bastion-sg-ingress-registry-from-cluster"] = _ingress_rule(
        "bastion-sg", "tcp", REGISTRY_PORT, SourceGroupId=Ref("cluster-sg")
    )
    rules["cluster-sg-ingress-self"] = _ingress_rule("cluster-sg", "-1", None, SourceGroupId=Ref("cluster-sg"))
    rules["cluster-sg-ingress-ssh-from-bastion"] = _ingress_rule(
        "cluster-sg", "tcp", 22, SourceGroupId=Ref("bastion-sg")
    )

    for name, spec in rules.items():
        graph.add(ResourceNode(name, ResourceKind.SECURITY_GROUP_RULE, spec=spec))


def collect_outputs(
    store: ResourceHandleStore,
    plan: SubnetPlan,
    region: Optional[str] = None,
    availability_zones: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Build the key/value outputs later provisioning stages consume.

    Only resources present in the ledger are exported.
    """
    outputs: Dict[str, Any] = {
        "vpc-id": store.lookup("vpc"),
        "vpc-cidr": plan.parent.cidr,
    }

    for tier in SubnetTier:
        allocations = plan.tier(tier)
        outputs[f"{tier.value}-subnet-ids"] = [store.lookup(request.name) for request, _ in allocations]
        outputs[f"{tier.value}-subnet-cidrs"] = [block.cidr for _, block in allocations]

    optional = {
        "internet-gateway-id": "internet-gateway",
        "nat-gateway-id": "nat-gateway",
        "eip-id": "nat-eip",
        "bastion-security-group-id": "bastion-sg",
        "cluster-security-group-id": "cluster-sg",
        "bastion-instance-id": "bastion-instance",
    }
    for key, logical_name in optional.items():
        handle = store.lookup(logical_name)
        if handle:
            outputs[key] = handle

    if region:
        outputs["region"] = region
    if availability_zones:
        outputs["availability-zones"] = list(availability_zones)

    return outputs
