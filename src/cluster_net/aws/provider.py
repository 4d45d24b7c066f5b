"""EC2 implementation of the cloud provider capability.

Maps resource kinds to their boto3 create/delete/describe calls and translates
botocore errors into the ProviderError family.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError, WaiterError

from ..errors import (
    DependencyViolation,
    InvalidParameter,
    ProviderError,
    QuotaExceeded,
    ResourceConflict,
    ResourceNotFound,
    TransientProviderError,
    UnsupportedResourceKind,
)
from ..models.network_block import NetworkBlock
from ..models.resource_node import ResourceKind
from .client import create_boto_client

logger = logging.getLogger(__name__)

# Separator for handles made of two provider identifiers
HANDLE_SEPARATOR = "|"

TRANSIENT_CODES = {
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalError",
    "InternalFailure",
    "ServiceUnavailable",
    "Unavailable",
    "IncorrectState",
    "InsufficientInstanceCapacity",
}

CONFLICT_CODES = {
    "InvalidSubnet.Conflict",
    "Resource.AlreadyAssociated",
    "RouteAlreadyExists",
}

NOT_ATTACHED_CODES = {
    "Gateway.NotAttached",
}

# NAT gateways and instances linger in a terminal state after deletion
GONE_STATES = {"deleting", "deleted", "failed", "shutting-down", "terminated"}


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def translate_client_error(error: ClientError, operation: str) -> ProviderError:
    """Map a botocore ClientError to the ProviderError family.

    A missing resource during create usually means a dependency that was just
    created is not visible yet, so it is reported as transient there and as
    ResourceNotFound everywhere else.

    Args:
        error: botocore ClientError
        operation: "create", "finalize", "describe" or "delete"

    Returns:
        ProviderError subclass instance (not raised)
    """
    code = _error_code(error)
    message = error.response.get("Error", {}).get("Message") or str(error)

    if code.endswith("NotFound") or code in NOT_ATTACHED_CODES:
        if operation in ("create", "finalize"):
            return TransientProviderError(message, code)
        return ResourceNotFound(message, code)
    if code == "DependencyViolation":
        return DependencyViolation(message, code)
    if code in TRANSIENT_CODES:
        return TransientProviderError(message, code)
    if code.endswith("LimitExceeded"):
        return QuotaExceeded(message, code)
    if code.endswith(".Duplicate") or code in CONFLICT_CODES:
        return ResourceConflict(message, code)
    if code.startswith("InvalidParameter") or code.endswith(".Range") or code.endswith(".Malformed"):
        return InvalidParameter(message, code)
    if code == "MissingParameter":
        return InvalidParameter(message, code)
    return ProviderError(message, code or None)


def translate_waiter_error(error: WaiterError) -> ProviderError:
    """Waiter timeouts are retried; a resource reaching a failure state is not."""
    if "Max attempts exceeded" in str(error):
        return TransientProviderError(str(error), "WaiterTimeout")
    return ProviderError(str(error), "WaiterFailure")


def split_handle(handle: str) -> tuple[str, str]:
    """Split a composite handle into its two identifiers."""
    first, _, second = handle.partition(HANDLE_SEPARATOR)
    if not second:
        raise InvalidParameter(f"Malformed composite handle: {handle}")
    return first, second


def tag_specifications(resource_type: str, tags: Optional[Dict[str, str]]) -> List[Dict[str, Any]]:
    """Build a TagSpecifications parameter."""
    if not tags:
        return []
    return [
        {
            "ResourceType": resource_type,
            "Tags": [{"Key": key, "Value": value} for key, value in tags.items()],
        }
    ]


def _ip_permission(spec: Dict[str, Any]) -> Dict[str, Any]:
    permission: Dict[str, Any] = {"IpProtocol": spec["IpProtocol"]}
    if "FromPort" in spec:
        permission["FromPort"] = spec["FromPort"]
        permission["ToPort"] = spec.get("ToPort", spec["FromPort"])
    if spec.get("CidrIp"):
        permission["IpRanges"] = [{"CidrIp": spec["CidrIp"]}]
    if spec.get("SourceGroupId"):
        permission["UserIdGroupPairs"] = [{"GroupId": spec["SourceGroupId"]}]
    return permission


class Ec2Provider:
    """Cloud provider backed by the EC2 API.

    Handles are EC2 resource IDs. Resources without an ID of their own use a
    composite handle of two identifiers:
        internet-gateway-attachment: "<igw-id>|<vpc-id>"
        route: "<route-table-id>|<destination-cidr>"
        security-group-rule: "<group-id>|<rule-id>"
    """

    # Single-call deletions: kind -> (method, id_field)
    DELETION_METHODS = {
        ResourceKind.VPC.value: ("delete_vpc", "VpcId"),
        ResourceKind.SUBNET.value: ("delete_subnet", "SubnetId"),
        ResourceKind.INTERNET_GATEWAY.value: ("delete_internet_gateway", "InternetGatewayId"),
        ResourceKind.ELASTIC_IP.value: ("release_address", "AllocationId"),
        ResourceKind.ROUTE_TABLE.value: ("delete_route_table", "RouteTableId"),
        ResourceKind.ROUTE_TABLE_ASSOCIATION.value: ("disassociate_route_table", "AssociationId"),
        ResourceKind.SECURITY_GROUP.value: ("delete_security_group", "GroupId"),
    }

    # Single-ID lookups: kind -> (method, ids_field, result_key)
    DESCRIBE_METHODS = {
        ResourceKind.VPC.value: ("describe_vpcs", "VpcIds", "Vpcs"),
        ResourceKind.SUBNET.value: ("describe_subnets", "SubnetIds", "Subnets"),
        ResourceKind.INTERNET_GATEWAY.value: (
            "describe_internet_gateways",
            "InternetGatewayIds",
            "InternetGateways",
        ),
        ResourceKind.ELASTIC_IP.value: ("describe_addresses", "AllocationIds", "Addresses"),
        ResourceKind.NAT_GATEWAY.value: ("describe_nat_gateways", "NatGatewayIds", "NatGateways"),
        ResourceKind.ROUTE_TABLE.value: ("describe_route_tables", "RouteTableIds", "RouteTables"),
        ResourceKind.SECURITY_GROUP.value: ("describe_security_groups", "GroupIds", "SecurityGroups"),
    }

    def __init__(self, region: Optional[str] = None, aws_profile: Optional[str] = None):
        """Initialize the provider.

        Args:
            region: AWS region (optional, falls back to the profile/environment)
            aws_profile: AWS profile name (optional)
        """
        self.region = region
        self.aws_profile = aws_profile
        self._client: Any = None

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = create_boto_client("ec2", region_name=self.region, profile_name=self.aws_profile)
        return self._client

    def _call(self, operation: str, method: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            return getattr(self.client, method)(**kwargs)
        except ClientError as e:
            raise translate_client_error(e, operation) from e

    def _wait(self, waiter_name: str, **kwargs: Any) -> None:
        logger.debug(f"Waiting for {waiter_name}: {kwargs}")
        try:
            self.client.get_waiter(waiter_name).wait(**kwargs)
        except WaiterError as e:
            raise translate_waiter_error(e) from e

    # Create

    def create(self, kind: str, spec: Dict[str, Any]) -> str:
        """Create a resource and return its handle.

        Raises:
            UnsupportedResourceKind: If the kind has no create mapping
            ProviderError: Translated API error
        """
        handler = getattr(self, f"_create_{kind.replace('-', '_')}", None)
        if handler is None:
            raise UnsupportedResourceKind(f"Unsupported resource kind: {kind}", "UnsupportedResourceKind")
        return handler(spec)

    def _create_vpc(self, spec: Dict[str, Any]) -> str:
        response = self._call(
            "create",
            "create_vpc",
            CidrBlock=spec["CidrBlock"],
            TagSpecifications=tag_specifications("vpc", spec.get("Tags")),
        )
        return response["Vpc"]["VpcId"]

    def _create_subnet(self, spec: Dict[str, Any]) -> str:
        params: Dict[str, Any] = {
            "VpcId": spec["VpcId"],
            "CidrBlock": spec["CidrBlock"],
            "TagSpecifications": tag_specifications("subnet", spec.get("Tags")),
        }
        if spec.get("AvailabilityZone"):
            params["AvailabilityZone"] = spec["AvailabilityZone"]
        response = self._call("create", "create_subnet", **params)
        return response["Subnet"]["SubnetId"]

    def _create_internet_gateway(self, spec: Dict[str, Any]) -> str:
        response = self._call(
            "create",
            "create_internet_gateway",
            TagSpecifications=tag_specifications("internet-gateway", spec.get("Tags")),
        )
        return response["InternetGateway"]["InternetGatewayId"]

    def _create_internet_gateway_attachment(self, spec: Dict[str, Any]) -> str:
        self._call(
            "create",
            "attach_internet_gateway",
            InternetGatewayId=spec["InternetGatewayId"],
            VpcId=spec["VpcId"],
        )
        return f"{spec['InternetGatewayId']}{HANDLE_SEPARATOR}{spec['VpcId']}"

    def _create_elastic_ip(self, spec: Dict[str, Any]) -> str:
        response = self._call(
            "create",
            "allocate_address",
            Domain="vpc",
            TagSpecifications=tag_specifications("elastic-ip", spec.get("Tags")),
        )
        return response["AllocationId"]

    def _create_nat_gateway(self, spec: Dict[str, Any]) -> str:
        response = self._call(
            "create",
            "create_nat_gateway",
            SubnetId=spec["SubnetId"],
            AllocationId=spec["AllocationId"],
            TagSpecifications=tag_specifications("natgateway", spec.get("Tags")),
        )
        return response["NatGateway"]["NatGatewayId"]

    def _create_route_table(self, spec: Dict[str, Any]) -> str:
        response = self._call(
            "create",
            "create_route_table",
            VpcId=spec["VpcId"],
            TagSpecifications=tag_specifications("route-table", spec.get("Tags")),
        )
        return response["RouteTable"]["RouteTableId"]

    def _create_route(self, spec: Dict[str, Any]) -> str:
        params = {
            key: spec[key]
            for key in ("RouteTableId", "DestinationCidrBlock", "GatewayId", "NatGatewayId")
            if spec.get(key)
        }
        self._call("create", "create_route", **params)
        return f"{spec['RouteTableId']}{HANDLE_SEPARATOR}{spec['DestinationCidrBlock']}"

    def _create_route_table_association(self, spec: Dict[str, Any]) -> str:
        response = self._call(
            "create",
            "associate_route_table",
            RouteTableId=spec["RouteTableId"],
            SubnetId=spec["SubnetId"],
        )
        return response["AssociationId"]

    def _create_security_group(self, spec: Dict[str, Any]) -> str:
        response = self._call(
            "create",
            "create_security_group",
            GroupName=spec["GroupName"],
            Description=spec["Description"],
            VpcId=spec["VpcId"],
            TagSpecifications=tag_specifications("security-group", spec.get("Tags")),
        )
        return response["GroupId"]

    def _create_security_group_rule(self, spec: Dict[str, Any]) -> str:
        response = self._call(
            "create",
            "authorize_security_group_ingress",
            GroupId=spec["GroupId"],
            IpPermissions=[_ip_permission(spec)],
        )
        rules = response.get("SecurityGroupRules") or []
        if not rules:
            raise ProviderError(f"No rule ID returned for ingress on {spec['GroupId']}")
        return f"{spec['GroupId']}{HANDLE_SEPARATOR}{rules[0]['SecurityGroupRuleId']}"

    def _create_instance(self, spec: Dict[str, Any]) -> str:
        params: Dict[str, Any] = {
            "ImageId": spec["ImageId"],
            "InstanceType": spec["InstanceType"],
            "MinCount": 1,
            "MaxCount": 1,
            "SubnetId": spec["SubnetId"],
            "SecurityGroupIds": list(spec.get("SecurityGroupIds", [])),
            "TagSpecifications": tag_specifications("instance", spec.get("Tags")),
        }
        if spec.get("KeyName"):
            params["KeyName"] = spec["KeyName"]
        response = self._call("create", "run_instances", **params)
        return response["Instances"][0]["InstanceId"]

    # Finalize

    def finalize(self, kind: str, handle: str, spec: Dict[str, Any]) -> None:
        """Apply post-create attributes and wait until the resource is usable."""
        if kind == ResourceKind.VPC.value:
            self._wait("vpc_available", VpcIds=[handle])
            # One attribute per call
            for attribute in ("EnableDnsSupport", "EnableDnsHostnames"):
                if spec.get(attribute):
                    self._call("finalize", "modify_vpc_attribute", VpcId=handle, **{attribute: {"Value": True}})
        elif kind == ResourceKind.SUBNET.value:
            if spec.get("MapPublicIpOnLaunch"):
                self._call(
                    "finalize",
                    "modify_subnet_attribute",
                    SubnetId=handle,
                    MapPublicIpOnLaunch={"Value": True},
                )
        elif kind == ResourceKind.NAT_GATEWAY.value:
            self._wait("nat_gateway_available", NatGatewayIds=[handle])
        elif kind == ResourceKind.INSTANCE.value:
            self._wait("instance_running", InstanceIds=[handle])

    # Describe

    def describe(self, kind: str, handle: str) -> Dict[str, Any]:
        """Return the provider's description of a resource.

        Raises:
            ResourceNotFound: If the resource is gone
        """
        if kind in self.DESCRIBE_METHODS:
            method, ids_field, result_key = self.DESCRIBE_METHODS[kind]
            items = self._call("describe", method, **{ids_field: [handle]}).get(result_key, [])
            description = self._first(items, kind, handle)
            if description.get("State") in GONE_STATES:
                raise ResourceNotFound(f"{kind} {handle} is {description['State']}", "InvalidState")
            return description

        if kind == ResourceKind.INTERNET_GATEWAY_ATTACHMENT.value:
            igw_id, vpc_id = split_handle(handle)
            gateway = self.describe(ResourceKind.INTERNET_GATEWAY.value, igw_id)
            for attachment in gateway.get("Attachments", []):
                if attachment.get("VpcId") == vpc_id:
                    return attachment
            raise ResourceNotFound(f"{igw_id} is not attached to {vpc_id}")

        if kind == ResourceKind.ROUTE.value:
            table_id, destination = split_handle(handle)
            table = self.describe(ResourceKind.ROUTE_TABLE.value, table_id)
            for route in table.get("Routes", []):
                if route.get("DestinationCidrBlock") == destination:
                    return route
            raise ResourceNotFound(f"No route to {destination} in {table_id}")

        if kind == ResourceKind.ROUTE_TABLE_ASSOCIATION.value:
            tables = self._call(
                "describe",
                "describe_route_tables",
                Filters=[{"Name": "association.route-table-association-id", "Values": [handle]}],
            ).get("RouteTables", [])
            for table in tables:
                for association in table.get("Associations", []):
                    if association.get("RouteTableAssociationId") == handle:
                        return association
            raise ResourceNotFound(f"Route table association {handle} not found")

        if kind == ResourceKind.SECURITY_GROUP_RULE.value:
            _, rule_id = split_handle(handle)
            rules = self._call(
                "describe",
                "describe_security_group_rules",
                SecurityGroupRuleIds=[rule_id],
            ).get("SecurityGroupRules", [])
            return self._first(rules, kind, handle)

        if kind == ResourceKind.INSTANCE.value:
            reservations = self._call("describe", "describe_instances", InstanceIds=[handle]).get("Reservations", [])
            instances = [i for r in reservations for i in r.get("Instances", [])]
            instance = self._first(instances, kind, handle)
            state = instance.get("State", {}).get("Name")
            if state in GONE_STATES:
                raise ResourceNotFound(f"Instance {handle} is {state}", "InvalidState")
            return instance

        raise UnsupportedResourceKind(f"Unsupported resource kind: {kind}", "UnsupportedResourceKind")

    @staticmethod
    def _first(items: List[Dict[str, Any]], kind: str, handle: str) -> Dict[str, Any]:
        if not items:
            raise ResourceNotFound(f"{kind} {handle} not found")
        return items[0]

    # Delete

    def delete(self, kind: str, handle: str) -> None:
        """Delete a resource.

        NAT gateways and instances are waited on until fully gone, since their
        subnets, addresses and security groups cannot be released before that.

        Raises:
            ResourceNotFound: If the resource is already gone
            DependencyViolation: If something still references it
        """
        if kind in self.DELETION_METHODS:
            method, id_field = self.DELETION_METHODS[kind]
            self._call("delete", method, **{id_field: handle})
            return

        if kind == ResourceKind.INTERNET_GATEWAY_ATTACHMENT.value:
            igw_id, vpc_id = split_handle(handle)
            self._call("delete", "detach_internet_gateway", InternetGatewayId=igw_id, VpcId=vpc_id)
        elif kind == ResourceKind.ROUTE.value:
            table_id, destination = split_handle(handle)
            self._call("delete", "delete_route", RouteTableId=table_id, DestinationCidrBlock=destination)
        elif kind == ResourceKind.SECURITY_GROUP_RULE.value:
            group_id, rule_id = split_handle(handle)
            self._call("delete", "revoke_security_group_ingress", GroupId=group_id, SecurityGroupRuleIds=[rule_id])
        elif kind == ResourceKind.NAT_GATEWAY.value:
            self._call("delete", "delete_nat_gateway", NatGatewayId=handle)
            self._wait("nat_gateway_deleted", NatGatewayIds=[handle])
        elif kind == ResourceKind.INSTANCE.value:
            self._call("delete", "terminate_instances", InstanceIds=[handle])
            self._wait("instance_terminated", InstanceIds=[handle])
        else:
            raise UnsupportedResourceKind(f"Unsupported resource kind: {kind}", "UnsupportedResourceKind")

    # Discovery

    def list_existing(self, kind: str, filters: Optional[Dict[str, Any]] = None) -> List[NetworkBlock]:
        """Network blocks already in use by VPCs or subnets.

        Args:
            kind: "vpc" or "subnet"
            filters: EC2 filter name -> value or list of values

        Returns:
            Network blocks, including secondary VPC CIDR associations
        """
        request_filters = [
            {"Name": name, "Values": list(value) if isinstance(value, (list, tuple)) else [value]}
            for name, value in (filters or {}).items()
        ]

        if kind == ResourceKind.VPC.value:
            method, result_key = "describe_vpcs", "Vpcs"
        elif kind == ResourceKind.SUBNET.value:
            method, result_key = "describe_subnets", "Subnets"
        else:
            raise UnsupportedResourceKind(f"Cannot list address space of {kind}", "UnsupportedResourceKind")

        blocks: List[NetworkBlock] = []
        try:
            paginator = self.client.get_paginator(method)
            for page in paginator.paginate(Filters=request_filters):
                for item in page.get(result_key, []):
                    cidrs = [item["CidrBlock"]]
                    for association in item.get("CidrBlockAssociationSet", []):
                        if association.get("CidrBlockState", {}).get("State") == "associated":
                            cidrs.append(association["CidrBlock"])
                    for cidr in dict.fromkeys(cidrs):
                        blocks.append(NetworkBlock.from_cidr(cidr))
        except ClientError as e:
            raise translate_client_error(e, "describe") from e

        logger.debug(f"Found {len(blocks)} existing {kind} block(s) in {self.region or 'default region'}")
        return blocks

    def availability_zones(self, limit: Optional[int] = None) -> List[str]:
        """Names of available zones in the region, sorted."""
        zones = self._call(
            "describe",
            "describe_availability_zones",
            Filters=[
                {"Name": "state", "Values": ["available"]},
                {"Name": "zone-type", "Values": ["availability-zone"]},
            ],
        ).get("AvailabilityZones", [])
        names = sorted(zone["ZoneName"] for zone in zones)
        return names[:limit] if limit else names

    def latest_image_id(self, name_pattern: str, owners: Optional[List[str]] = None) -> str:
        """ID of the most recently created available image matching a name pattern.

        Raises:
            ResourceNotFound: If no image matches
        """
        images = self._call(
            "describe",
            "describe_images",
            Owners=owners or ["amazon"],
            Filters=[
                {"Name": "name", "Values": [name_pattern]},
                {"Name": "state", "Values": ["available"]},
            ],
        ).get("Images", [])
        if not images:
            raise ResourceNotFound(f"No image matches '{name_pattern}'")
        latest = max(images, key=lambda image: image.get("CreationDate", ""))
        logger.debug(f"Latest image for '{name_pattern}': {latest['ImageId']} ({latest.get('Name')})")
        return latest["ImageId"]

    def find_vpcs_by_name(self, name: str) -> List[str]:
        """IDs of VPCs tagged with the given Name."""
        vpcs = self._call(
            "describe",
            "describe_vpcs",
            Filters=[{"Name": "tag:Name", "Values": [name]}],
        ).get("Vpcs", [])
        return [vpc["VpcId"] for vpc in vpcs]
