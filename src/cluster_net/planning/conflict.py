"""CIDR conflict detection and resolution.

Checks candidate blocks against blocks already present in the target environment
and, on conflict, walks a fixed search sequence so the same inputs always resolve
to the same block.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, Optional, Sequence

from ..errors import NoAvailableAddressSpace
from ..models.network_block import NetworkBlock, SubnetPlan, SubnetTier
from .address import AddressPlanner, validate_plan

logger = logging.getLogger(__name__)

# RFC 1918 ranges, in the order alternatives are suggested
PRIVATE_RANGES = (
    NetworkBlock.from_cidr("172.16.0.0/12"),
    NetworkBlock.from_cidr("10.0.0.0/8"),
    NetworkBlock.from_cidr("192.168.0.0/16"),
)
WHOLE_SPACE = NetworkBlock(0, 0)


def overlaps(first: NetworkBlock, second: NetworkBlock) -> bool:
    """Check whether two blocks share any address."""
    return first.overlaps(second)


def enclosing_range(block: NetworkBlock) -> NetworkBlock:
    """Private range containing block, or the whole IPv4 space."""
    for private_range in PRIVATE_RANGES:
        if private_range.contains(block):
            return private_range
    return WHOLE_SPACE


class ConflictResolver:
    """Resolves address-space conflicts with existing network blocks.

    Attributes:
        max_attempts: Maximum alternative blocks tried per resolution
    """

    DEFAULT_MAX_ATTEMPTS = 10

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts

    def is_exact_duplicate(self, candidate: NetworkBlock, existing: Iterable[NetworkBlock]) -> bool:
        """Cheap pre-check: an existing block is identical to the candidate."""
        return any(block == candidate for block in existing)

    def find_conflicts(self, candidate: NetworkBlock, existing: Iterable[NetworkBlock]) -> List[NetworkBlock]:
        """Existing blocks that overlap the candidate."""
        return [block for block in existing if overlaps(candidate, block)]

    def search_sequence(self, candidate: NetworkBlock) -> Iterator[NetworkBlock]:
        """Yield alternative blocks of the candidate's size.

        Blocks follow the candidate in address order and wrap around inside the
        enclosing private range (or the whole IPv4 space), so 172.16.0.0/16 is
        followed by 172.17.0.0/16, 172.18.0.0/16 and so on.
        """
        scope = enclosing_range(candidate)
        if candidate.prefix_length < scope.prefix_length:
            scope = WHOLE_SPACE

        slots = scope.size // candidate.size
        start = (candidate.base_address - scope.base_address) // candidate.size

        for step in range(1, slots):
            index = (start + step) % slots
            yield NetworkBlock(scope.base_address + index * candidate.size, candidate.prefix_length)

    def resolve_network(self, candidate: NetworkBlock, existing: Sequence[NetworkBlock]) -> NetworkBlock:
        """Return the candidate if it is free, otherwise the first free alternative.

        Args:
            candidate: Requested parent (VPC) block
            existing: Blocks observed in the target environment

        Returns:
            Non-conflicting network block

        Raises:
            NoAvailableAddressSpace: If no alternative is free within max_attempts
        """
        if self.is_exact_duplicate(candidate, existing):
            logger.warning(f"CIDR {candidate.cidr} is already in use by an existing network")
            conflicts = [candidate]
        else:
            conflicts = self.find_conflicts(candidate, existing)

        if not conflicts:
            logger.debug(f"No CIDR conflicts found for {candidate.cidr}")
            return candidate

        logger.info(
            f"CIDR {candidate.cidr} conflicts with {', '.join(b.cidr for b in conflicts)}, searching for an alternative"
        )

        attempted: List[NetworkBlock] = []
        for alternative in self.search_sequence(candidate):
            if len(attempted) >= self.max_attempts:
                break
            attempted.append(alternative)
            if not self.find_conflicts(alternative, existing):
                logger.info(f"Using alternative CIDR {alternative.cidr} instead of {candidate.cidr}")
                return alternative

        alternatives = self.suggest_alternatives(candidate, existing, exclude=attempted)
        raise NoAvailableAddressSpace(
            f"No free /{candidate.prefix_length} block found after {len(attempted)} attempts "
            f"starting from {candidate.cidr}",
            candidate=candidate,
            attempted=attempted,
            alternatives=alternatives,
        )

    def resolve_subnets(
        self,
        plan: SubnetPlan,
        existing: Sequence[NetworkBlock],
        planner: Optional[AddressPlanner] = None,
    ) -> SubnetPlan:
        """Move only the subnets that collide with existing blocks.

        Each conflicting subnet is moved to the next free block of the same size
        inside its own tier's band, searching forward from its current position
        and wrapping around within the band. Subnets without conflicts keep their
        blocks.

        Args:
            plan: Subnet plan to check
            existing: Blocks observed in the target environment
            planner: Planner whose bands the plan was laid out in (default bands if omitted)

        Raises:
            NoAvailableAddressSpace: If a subnet's band is used up or max_attempts is reached
        """
        planner = planner or AddressPlanner()
        with_private = bool(plan.tier(SubnetTier.PRIVATE))
        resolved = plan

        for request, block in plan:
            if not self.find_conflicts(block, existing):
                continue

            taken = [b for r, b in resolved if r != request]
            band = planner.band(request.tier, plan.parent.size // block.size, with_private=with_private)
            attempted: List[NetworkBlock] = []
            placed = None

            for alternative in self._subnet_sequence(plan.parent, block, band):
                if len(attempted) >= self.max_attempts:
                    break
                attempted.append(alternative)
                if not self.find_conflicts(alternative, existing) and not self.find_conflicts(alternative, taken):
                    placed = alternative
                    break

            if placed is None:
                raise NoAvailableAddressSpace(
                    f"No free /{block.prefix_length} block for {request.name} in the {request.tier.value} band "
                    f"of {plan.parent.cidr} after {len(attempted)} attempts",
                    candidate=block,
                    attempted=attempted,
                )

            logger.info(f"Moving {request.name} from {block.cidr} to {placed.cidr}")
            resolved = resolved.with_block(request, placed)

        validate_plan(resolved)
        return resolved

    def _subnet_sequence(self, parent: NetworkBlock, block: NetworkBlock, band: range) -> Iterator[NetworkBlock]:
        """Blocks of the subnet's size after it inside the band, wrapping around."""
        indexes = list(band)
        position = (block.base_address - parent.base_address) // block.size
        start = indexes.index(position) if position in band else -1
        for step in range(1, len(indexes) + 1):
            index = indexes[(start + step) % len(indexes)]
            if index != position:
                yield NetworkBlock(parent.base_address + index * block.size, block.prefix_length)

    def suggest_alternatives(
        self,
        candidate: NetworkBlock,
        existing: Sequence[NetworkBlock],
        exclude: Iterable[NetworkBlock] = (),
        limit: int = 3,
    ) -> List[NetworkBlock]:
        """Free blocks of the candidate's size from every private range."""
        excluded = set(exclude) | {candidate}
        suggestions: List[NetworkBlock] = []
        scan_limit = 256

        for private_range in PRIVATE_RANGES:
            if candidate.prefix_length < private_range.prefix_length:
                continue
            slots = min(private_range.size // candidate.size, scan_limit)
            for index in range(slots):
                block = NetworkBlock(private_range.base_address + index * candidate.size, candidate.prefix_length)
                if block in excluded or self.find_conflicts(block, existing):
                    continue
                suggestions.append(block)
                break
            if len(suggestions) >= limit:
                break

        return suggestions


__all__ = [
    "ConflictResolver",
    "PRIVATE_RANGES",
    "enclosing_range",
    "overlaps",
]
