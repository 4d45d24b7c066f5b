"""Resource dependency graph.

Creation order is computed with Kahn's algorithm. Deletion order for a ledger is
the same algorithm run over the reversed edges.
"""

from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, Iterator, List, Mapping, Sequence, Set

from ..errors import GraphError
from ..models.resource_node import HandleRecord, ResourceNode


class ResourceGraph:
    """DAG of resource nodes.

    Attributes:
        nodes: Nodes keyed by logical name, in insertion order
    """

    def __init__(self, nodes: Iterable[ResourceNode] = ()) -> None:
        self.nodes: Dict[str, ResourceNode] = {}
        for node in nodes:
            self.add(node)

    def add(self, node: ResourceNode) -> ResourceNode:
        """Add a node.

        Raises:
            GraphError: If a node with the same logical name exists
        """
        if node.logical_name in self.nodes:
            raise GraphError(f"Duplicate resource node '{node.logical_name}'")
        self.nodes[node.logical_name] = node
        return node

    def add_dependency(self, parent: str, child: str) -> None:
        """Declare that child must be created after parent."""
        if child not in self.nodes:
            raise GraphError(f"Unknown resource node '{child}'")
        self.nodes[child].depends_on.add(parent)

    def __contains__(self, logical_name: object) -> bool:
        return logical_name in self.nodes

    def __getitem__(self, logical_name: str) -> ResourceNode:
        return self.nodes[logical_name]

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def validate(self) -> None:
        """Check that every dependency exists and the graph is acyclic.

        Raises:
            GraphError: On a missing dependency or a cycle
        """
        for node in self.nodes.values():
            missing = node.depends_on - set(self.nodes)
            if missing:
                raise GraphError(f"Node '{node.logical_name}' depends on unknown node(s): {', '.join(sorted(missing))}")
        self.creation_tiers()

    def has_cycle(self) -> bool:
        try:
            self.creation_tiers()
        except GraphError:
            return True
        return False

    def creation_tiers(self) -> List[List[str]]:
        """Group nodes into waves; every node's dependencies sit in earlier waves.

        Nodes inside a wave keep insertion order.

        Raises:
            GraphError: If the graph has a cycle
        """
        dependencies = {
            name: {d for d in node.depends_on if d in self.nodes} for name, node in self.nodes.items()
        }
        return _kahn_tiers(list(self.nodes), dependencies)

    def creation_order(self) -> List[str]:
        """Flattened creation tiers."""
        return [name for tier in self.creation_tiers() for name in tier]


def _kahn_tiers(names: Sequence[str], dependencies: Mapping[str, Set[str]]) -> List[List[str]]:
    in_degree = {name: len(dependencies[name]) for name in names}
    dependents: Dict[str, List[str]] = {name: [] for name in names}
    for name in names:
        for parent in dependencies[name]:
            dependents[parent].append(name)

    position = {name: i for i, name in enumerate(names)}
    ready = [name for name in names if in_degree[name] == 0]
    tiers: List[List[str]] = []
    visited = 0

    while ready:
        tiers.append(ready)
        visited += len(ready)
        next_ready = []
        for name in ready:
            for child in dependents[name]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    next_ready.append(child)
        ready = sorted(next_ready, key=position.__getitem__)

    if visited != len(names):
        stuck = sorted(name for name, degree in in_degree.items() if degree > 0)
        raise GraphError(f"Circular dependency between: {', '.join(stuck)}")

    return tiers


def compute_deletion_order(records: Sequence[HandleRecord]) -> List[HandleRecord]:
    """Order ledger records so that every resource is deleted before its dependencies.

    Among records whose dependents are all gone, the most recently created one
    goes first, so a ledger written in creation order unwinds in exact reverse.
    Dependencies on records not in the ledger are ignored. Records caught in a
    dependency cycle are appended in reverse creation order instead of failing.
    """
    by_name = {record.logical_name: record for record in records}
    creation_index = {record.logical_name: i for i, record in enumerate(records)}

    # remaining dependents per record
    dependents: Dict[str, Set[str]] = {name: set() for name in by_name}
    for record in records:
        for parent in record.depends_on:
            if parent in by_name and parent != record.logical_name:
                dependents[parent].add(record.logical_name)

    order: List[HandleRecord] = []
    ready = deque(sorted((n for n, d in dependents.items() if not d), key=creation_index.__getitem__, reverse=True))
    done: Set[str] = set()

    while ready:
        name = ready.popleft()
        done.add(name)
        order.append(by_name[name])
        newly_ready = []
        for parent in by_name[name].depends_on:
            if parent not in dependents or parent in done:
                continue
            dependents[parent].discard(name)
            if not dependents[parent]:
                newly_ready.append(parent)
        if newly_ready:
            merged = list(ready) + newly_ready
            ready = deque(sorted(merged, key=creation_index.__getitem__, reverse=True))

    leftover = [record for record in reversed(records) if record.logical_name not in done]
    return order + leftover
