"""Network block and subnet plan models.

IPv4 address ranges are handled as unsigned 32-bit integers so that overlap and
containment checks are plain integer comparisons.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..errors import InvalidPrefix

MAX_PREFIX = 32
ADDRESS_SPACE = 1 << 32


def int_to_ip(value: int) -> str:
    """Render a 32-bit integer as a dotted-quad address."""
    return ".".join(str((value >> shift) & 0xFF) for shift in (24, 16, 8, 0))


def ip_to_int(address: str) -> int:
    """Parse a dotted-quad address into a 32-bit integer."""
    return int(ipaddress.IPv4Address(address))


@dataclass(frozen=True, order=True)
class NetworkBlock:
    """IPv4 CIDR block.

    Attributes:
        base_address: Network address as an unsigned 32-bit integer
        prefix_length: Prefix length in [0, 32]
    """

    base_address: int
    prefix_length: int

    def __post_init__(self) -> None:
        if not 0 <= self.prefix_length <= MAX_PREFIX:
            raise InvalidPrefix(f"Prefix length /{self.prefix_length} is outside [0, 32]")
        if not 0 <= self.base_address < ADDRESS_SPACE:
            raise ValueError(f"Base address {self.base_address} is outside the IPv4 space")
        if self.base_address % self.size:
            raise ValueError(
                f"Base address {int_to_ip(self.base_address)} is not aligned to a /{self.prefix_length} boundary"
            )

    @classmethod
    def from_cidr(cls, cidr: str) -> "NetworkBlock":
        """Parse CIDR text such as "172.16.0.0/16".

        Host bits are rejected rather than silently cleared, so a typo in a
        configured CIDR surfaces before anything is created.
        """
        try:
            network = ipaddress.IPv4Network(cidr.strip())
        except ValueError as e:
            raise ValueError(f"Invalid CIDR block '{cidr}': {e}") from e
        return cls(int(network.network_address), network.prefixlen)

    @property
    def size(self) -> int:
        """Number of addresses in the block."""
        return 1 << (MAX_PREFIX - self.prefix_length)

    @property
    def end(self) -> int:
        """First address after the block."""
        return self.base_address + self.size

    @property
    def cidr(self) -> str:
        return f"{int_to_ip(self.base_address)}/{self.prefix_length}"

    def overlaps(self, other: "NetworkBlock") -> bool:
        """Check whether the address ranges [base, base+size) intersect."""
        return self.base_address < other.end and other.base_address < self.end

    def contains(self, other: "NetworkBlock") -> bool:
        """Check whether other lies entirely inside this block."""
        return self.base_address <= other.base_address and other.end <= self.end

    def __str__(self) -> str:
        return self.cidr


class SubnetTier(Enum):
    """Subnet tier."""

    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class SubnetRequest:
    """A subnet to allocate.

    Attributes:
        tier: Public or private
        index: 1-based position within the tier
        prefix_length: Subnet prefix length
        az_hint: Availability zone the subnet should land in (optional)
    """

    tier: SubnetTier
    index: int
    prefix_length: int
    az_hint: Optional[str] = None

    @property
    def name(self) -> str:
        return f"{self.tier.value}-subnet-{self.index}"


@dataclass(frozen=True)
class SubnetPlan:
    """Accepted subnet allocation for a parent network block.

    The plan is immutable once built; conflict resolution produces a new plan
    instead of editing this one.
    """

    parent: NetworkBlock
    allocations: Tuple[Tuple[SubnetRequest, NetworkBlock], ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[Tuple[SubnetRequest, NetworkBlock]]:
        return iter(self.allocations)

    def __len__(self) -> int:
        return len(self.allocations)

    def tier(self, tier: SubnetTier) -> List[Tuple[SubnetRequest, NetworkBlock]]:
        """Allocations of a single tier, in index order."""
        return [(request, block) for request, block in self.allocations if request.tier == tier]

    @property
    def blocks(self) -> List[NetworkBlock]:
        return [block for _, block in self.allocations]

    def with_block(self, request: SubnetRequest, block: NetworkBlock) -> "SubnetPlan":
        """Return a copy of the plan with one subnet moved to a new block."""
        return SubnetPlan(
            parent=self.parent,
            allocations=tuple((r, block if r == request else b) for r, b in self.allocations),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parent": self.parent.cidr,
            "subnets": [
                {
                    "name": request.name,
                    "tier": request.tier.value,
                    "index": request.index,
                    "cidr": block.cidr,
                    "availability_zone": request.az_hint,
                }
                for request, block in self.allocations
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubnetPlan":
        parent = NetworkBlock.from_cidr(data["parent"])
        allocations = []
        for entry in data.get("subnets") or []:
            block = NetworkBlock.from_cidr(entry["cidr"])
            request = SubnetRequest(
                tier=SubnetTier(entry["tier"]),
                index=int(entry["index"]),
                prefix_length=block.prefix_length,
                az_hint=entry.get("availability_zone"),
            )
            allocations.append((request, block))
        return cls(parent=parent, allocations=tuple(allocations))
