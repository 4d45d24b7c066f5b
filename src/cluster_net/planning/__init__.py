"""Address planning and CIDR conflict resolution.

Classes:
    AddressPlanner: Subnet range computation from a parent block
    ConflictResolver: Overlap detection and deterministic alternative search
"""

from __future__ import annotations

from .address import AddressPlanner
from .conflict import ConflictResolver, overlaps

__all__ = [
    "AddressPlanner",
    "ConflictResolver",
    "overlaps",
]
