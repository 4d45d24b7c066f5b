"""Error taxonomy for network planning, provisioning and teardown.

Every error raised by this package derives from ClusterNetError so callers
(the CLI in particular) can separate expected failures from programming errors.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class ClusterNetError(Exception):
    """Base class for all cluster network provisioning errors."""


# Address planning


class AddressSpaceError(ClusterNetError):
    """Subnet plan cannot be computed from the requested address space."""


class CapacityExceeded(AddressSpaceError):
    """Requested subnets do not fit inside the parent network block."""


class InvalidPrefix(AddressSpaceError):
    """Prefix length is out of range or smaller than the parent prefix."""


# Conflict resolution


class ConflictError(ClusterNetError):
    """Candidate address space collides with existing network blocks."""


class NoAvailableAddressSpace(ConflictError):
    """Search for a non-conflicting block was exhausted.

    Attributes:
        candidate: Block originally requested
        attempted: Blocks tried during the search, in order
        alternatives: Non-conflicting blocks an operator could pick instead
    """

    def __init__(
        self,
        message: str,
        candidate: Any = None,
        attempted: Sequence[Any] = (),
        alternatives: Sequence[Any] = (),
    ) -> None:
        super().__init__(message)
        self.candidate = candidate
        self.attempted = list(attempted)
        self.alternatives = list(alternatives)


# Provider (external resource-management API)


class ProviderError(ClusterNetError):
    """Error returned by the cloud provider.

    Attributes:
        code: Provider error code (e.g. "DependencyViolation")
    """

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class ResourceNotFound(ProviderError):
    """Resource does not exist (or no longer exists)."""


class DependencyViolation(ProviderError):
    """Resource is still referenced by another resource."""


class TransientProviderError(ProviderError):
    """Throttling, eventual-consistency lag or a temporary service failure."""


class InvalidParameter(ProviderError):
    """Request was rejected as malformed."""


class QuotaExceeded(ProviderError):
    """Account or region limit reached."""


class ResourceConflict(ProviderError):
    """Resource already exists or collides with an existing one."""


class UnsupportedResourceKind(ProviderError):
    """Provider has no create/delete mapping for the resource kind."""


# Creation


class CreationError(ClusterNetError):
    """Provisioning could not complete."""


class CreationFailed(CreationError):
    """A resource node failed to create; the run was unwound.

    Attributes:
        node: Logical name of the node that failed
        cause: Underlying exception
    """

    def __init__(self, node: str, cause: BaseException) -> None:
        super().__init__(f"Failed to create '{node}': {cause}")
        self.node = node
        self.cause = cause


class ProvisioningCancelled(CreationError):
    """Provisioning was cancelled by the caller; the run was unwound."""

    def __init__(self, node: Optional[str] = None) -> None:
        message = "Provisioning cancelled"
        if node:
            message += f" before '{node}'"
        super().__init__(message)
        self.node = node


class GraphError(ClusterNetError, ValueError):
    """Resource graph is malformed (cycle, missing dependency, duplicate node)."""


# Teardown


class TeardownError(ClusterNetError):
    """Teardown could not delete every recorded resource."""


class TeardownIncomplete(TeardownError):
    """Resources remain after the bounded number of teardown passes.

    Attributes:
        remaining: Remaining (logical_name, kind, handle) tuples
    """

    def __init__(self, remaining: Sequence[tuple[str, str, str]]) -> None:
        names = ", ".join(f"{kind} {handle} ({name})" for name, kind, handle in remaining)
        super().__init__(f"{len(remaining)} resource(s) could not be deleted: {names}")
        self.remaining = list(remaining)
