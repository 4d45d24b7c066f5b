"""Subnet address planning.

Public and private subnets are carved out of the parent block in two separate
offset bands. Each band is counted in subnet-sized blocks: with the default
bands and /24 subnets in 172.16.0.0/16 the public tier starts at 172.16.1.0/24
and the private tier at 172.16.11.0/24.
"""

from __future__ import annotations

import logging
from itertools import combinations
from typing import List, Optional, Sequence

from ..errors import CapacityExceeded, InvalidPrefix
from ..models.network_block import MAX_PREFIX, NetworkBlock, SubnetPlan, SubnetRequest, SubnetTier

logger = logging.getLogger(__name__)


class AddressPlanner:
    """Computes subnet ranges from a parent network block.

    Attributes:
        public_band_start: First block index of the public band
        private_band_start: First block index of the private band
    """

    PUBLIC_BAND_START = 1
    PRIVATE_BAND_START = 11

    def __init__(
        self,
        public_band_start: int = PUBLIC_BAND_START,
        private_band_start: int = PRIVATE_BAND_START,
    ) -> None:
        if public_band_start < 0 or private_band_start <= public_band_start:
            raise ValueError("Private band must start after the public band")
        self.public_band_start = public_band_start
        self.private_band_start = private_band_start

    @property
    def public_band_capacity(self) -> int:
        """Subnets the public band holds while keeping one free block before the private band."""
        return self.private_band_start - self.public_band_start - 1

    def band(self, tier: SubnetTier, slots: int, with_private: bool = True) -> range:
        """Block indexes a tier may occupy in a parent of the given number of slots.

        The public band stops one block short of the private band. Without a
        private tier it runs to the end of the parent.
        """
        if tier == SubnetTier.PRIVATE:
            return range(self.private_band_start, slots)
        end = self.private_band_start - 1 if with_private else slots
        return range(self.public_band_start, min(end, slots))

    def plan(
        self,
        parent: NetworkBlock,
        public_count: int,
        private_count: int,
        subnet_prefix: int,
        availability_zones: Optional[Sequence[str]] = None,
    ) -> SubnetPlan:
        """Produce a subnet plan for the parent block.

        Args:
            parent: Parent (VPC) network block
            public_count: Number of public subnets
            private_count: Number of private subnets
            subnet_prefix: Prefix length of every subnet
            availability_zones: Zones assigned round-robin per tier (optional)

        Returns:
            SubnetPlan with public subnets first, then private subnets

        Raises:
            InvalidPrefix: If subnet_prefix is out of range or shorter than the parent prefix
            CapacityExceeded: If the subnets or bands do not fit in the parent
        """
        if public_count < 0 or private_count < 0:
            raise ValueError("Subnet counts cannot be negative")

        if not 0 <= subnet_prefix <= MAX_PREFIX:
            raise InvalidPrefix(f"Subnet prefix /{subnet_prefix} is outside [0, 32]")

        if subnet_prefix < parent.prefix_length:
            raise InvalidPrefix(
                f"Subnet prefix /{subnet_prefix} must be at least the parent prefix /{parent.prefix_length}"
            )

        subnet_size = 1 << (MAX_PREFIX - subnet_prefix)
        slots = parent.size // subnet_size
        total = public_count + private_count

        if total * subnet_size > parent.size:
            raise CapacityExceeded(
                f"{total} x /{subnet_prefix} subnets need {total * subnet_size} addresses, "
                f"{parent.cidr} only has {parent.size}"
            )

        if private_count and public_count > self.public_band_capacity:
            raise CapacityExceeded(
                f"Public band holds at most {self.public_band_capacity} subnets, {public_count} requested"
            )

        if public_count and self.public_band_start + public_count > slots:
            raise CapacityExceeded(f"Public band does not fit in {parent.cidr} with /{subnet_prefix} subnets")

        if private_count and self.private_band_start + private_count > slots:
            raise CapacityExceeded(
                f"Private band needs blocks {self.private_band_start}-{self.private_band_start + private_count - 1} "
                f"but {parent.cidr} only has {slots} /{subnet_prefix} blocks"
            )

        zones = list(availability_zones or [])
        allocations = []

        for tier, count, band_start in (
            (SubnetTier.PUBLIC, public_count, self.public_band_start),
            (SubnetTier.PRIVATE, private_count, self.private_band_start),
        ):
            for i in range(count):
                request = SubnetRequest(
                    tier=tier,
                    index=i + 1,
                    prefix_length=subnet_prefix,
                    az_hint=zones[i % len(zones)] if zones else None,
                )
                block = block_at(parent, subnet_prefix, band_start + i)
                allocations.append((request, block))

        plan = SubnetPlan(parent=parent, allocations=tuple(allocations))
        validate_plan(plan)

        logger.debug(f"Planned {len(plan)} subnets in {parent.cidr}: {[b.cidr for b in plan.blocks]}")
        return plan


def block_at(parent: NetworkBlock, prefix_length: int, index: int) -> NetworkBlock:
    """Return the index-th block of the given prefix length inside parent."""
    size = 1 << (MAX_PREFIX - prefix_length)
    return NetworkBlock(parent.base_address + index * size, prefix_length)


def validate_plan(plan: SubnetPlan) -> None:
    """Check that every block is inside the parent, no two blocks overlap, and
    at least one free block separates the public tier from the private tier.

    Raises:
        CapacityExceeded: If a block falls outside the parent
        ValueError: If two blocks overlap or the tiers touch or interleave
    """
    blocks: List[NetworkBlock] = plan.blocks
    for block in blocks:
        if not plan.parent.contains(block):
            raise CapacityExceeded(f"Subnet {block.cidr} is outside {plan.parent.cidr}")
    for first, second in combinations(blocks, 2):
        if first.overlaps(second):
            raise ValueError(f"Subnets {first.cidr} and {second.cidr} overlap")

    public = [block for _, block in plan.tier(SubnetTier.PUBLIC)]
    private = [block for _, block in plan.tier(SubnetTier.PRIVATE)]
    if public and private:
        last_public = max(public, key=lambda block: block.end)
        first_private = min(private, key=lambda block: block.base_address)
        if first_private.base_address < last_public.end + last_public.size:
            raise ValueError(
                f"Private subnet {first_private.cidr} must start at least one block after "
                f"public subnet {last_public.cidr}"
            )
