"""Dependency-ordered resource creation.

Walks a resource graph in topological waves, reusing anything already in the
ledger and recording every new handle before dependents are created. Any
failure or cancellation unwinds the whole ledger.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..errors import CreationError, CreationFailed, ProviderError, ProvisioningCancelled, ResourceNotFound
from ..ledger.handle_store import ResourceHandleStore
from ..models.provisioning_run import StepRecord, StepStatus
from ..models.resource_node import NodeState, Ref, ResourceNode
from .graph import ResourceGraph
from .provider import CloudProvider
from .retry import RetryPolicy, call_with_retry, is_transient
from .unwinder import TeardownReport, Unwinder

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Outcome of a provisioning run.

    Attributes:
        succeeded: True only if every node reached CREATED
        handles: Handles of nodes that were created or reused
        failure: First fatal error (None on success)
        teardown: Unwind report when the run failed
        steps: Per-node step records
    """

    succeeded: bool
    handles: Dict[str, str] = field(default_factory=dict)
    failure: Optional[CreationError] = None
    teardown: Optional[TeardownReport] = None
    steps: List[StepRecord] = field(default_factory=list)

    def count(self, status: StepStatus) -> int:
        return sum(1 for step in self.steps if step.status == status)


def resolve_refs(value: Any, store: ResourceHandleStore) -> Any:
    """Replace every Ref inside a spec with the referenced handle.

    Raises:
        CreationError: If a referenced resource has no recorded handle
    """
    if isinstance(value, Ref):
        handle = store.lookup(value.logical_name)
        if handle is None:
            raise CreationError(f"Referenced resource '{value.logical_name}' has not been created")
        return handle
    if isinstance(value, dict):
        return {key: resolve_refs(item, store) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_refs(item, store) for item in value]
    if isinstance(value, tuple):
        return tuple(resolve_refs(item, store) for item in value)
    return value


class LifecycleOrchestrator:
    """Creates a resource graph in dependency order.

    Each node goes planned → creating → created, or → failed. A failure stops
    scheduling, lets in-flight siblings finish, and unwinds every resource in
    the ledger; a partially built topology is never left running.

    Attributes:
        provider: Cloud provider
        store: Resource handle ledger shared with the unwinder
        unwinder: Teardown used for rollback
        retry_policy: Per-node retry bounds for transient errors
        max_workers: Concurrent creations per wave (1 = sequential)
        verify_reused: Describe reused handles and recreate stale ones
    """

    def __init__(
        self,
        provider: CloudProvider,
        store: ResourceHandleStore,
        unwinder: Optional[Unwinder] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_workers: int = 1,
        verify_reused: bool = False,
        cancel_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.provider = provider
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.unwinder = unwinder or Unwinder(provider, retry_policy=self.retry_policy, sleep=sleep)
        self.max_workers = max_workers
        self.verify_reused = verify_reused
        self.cancel_event = cancel_event
        self._sleep = sleep
        self._steps_lock = threading.Lock()

    def run(self, graph: ResourceGraph) -> ProvisionResult:
        """Create every node of the graph.

        Args:
            graph: Resource graph to create

        Returns:
            ProvisionResult; on failure it carries the cause and the unwind report
        """
        graph.validate()
        steps: List[StepRecord] = []
        tiers = graph.creation_tiers()
        logger.info(f"Provisioning {len(graph)} resource(s) in {len(tiers)} wave(s)")

        try:
            for tier in tiers:
                nodes = [graph[name] for name in tier]
                if self.max_workers > 1 and len(nodes) > 1:
                    self._run_concurrent(nodes, steps)
                else:
                    for node in nodes:
                        self._check_cancelled(node)
                        self._create_node(node, steps)
        except (CreationFailed, ProvisioningCancelled) as failure:
            logger.error(f"{failure}; rolling back {len(self.store)} resource(s)")
            report = self.unwinder.teardown(self.store)
            self._mark_deleted(graph, report)
            return ProvisionResult(
                succeeded=False,
                handles=self._handles(graph),
                failure=failure,
                teardown=report,
                steps=steps + report.steps,
            )
        except KeyboardInterrupt:
            logger.error(f"Interrupted; rolling back {len(self.store)} resource(s)")
            self.unwinder.teardown(self.store)
            raise

        logger.info(f"Provisioning complete: {len(graph)} resource(s)")
        return ProvisionResult(succeeded=True, handles=self._handles(graph), steps=steps)

    def _run_concurrent(self, nodes: List[ResourceNode], steps: List[StepRecord]) -> None:
        for node in nodes:
            self._check_cancelled(node)

        errors: List[BaseException] = []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(nodes))) as executor:
            futures = [executor.submit(self._create_node, node, steps) for node in nodes]
            # Wait for every sibling so their ledger entries land before unwinding
            for future in futures:
                error = future.exception()
                if error is not None:
                    errors.append(error)

        if errors:
            raise errors[0]

    def _check_cancelled(self, node: ResourceNode) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ProvisioningCancelled(node.logical_name)

    def _create_node(self, node: ResourceNode, steps: List[StepRecord]) -> None:
        try:
            existing = self.store.lookup(node.logical_name)
            if existing is not None and self._is_reusable(node, existing):
                node.handle = existing
                node.state = NodeState.CREATED
                logger.debug(f"Reusing {node.kind} {existing} for '{node.logical_name}'")
                self._add_step(steps, node, StepStatus.REUSED)
                return

            node.state = NodeState.CREATING
            spec = resolve_refs(node.spec, self.store)
            handle = call_with_retry(
                lambda: self.provider.create(node.kind, spec),
                self.retry_policy,
                is_transient,
                description=f"create {node.kind} '{node.logical_name}'",
                sleep=self._sleep,
            )
            node.handle = handle
            self.store.record(node.logical_name, node.kind, handle, depends_on=node.depends_on)
            logger.info(f"Created {node.kind} {handle} ({node.logical_name})")

            call_with_retry(
                lambda: self.provider.finalize(node.kind, handle, spec),
                self.retry_policy,
                is_transient,
                description=f"finalize {node.kind} {handle}",
                sleep=self._sleep,
            )
        except Exception as e:
            self._fail(node, steps, e)
            raise CreationFailed(node.logical_name, e) from e

        node.state = NodeState.CREATED
        self._add_step(steps, node, StepStatus.CREATED)

    def _is_reusable(self, node: ResourceNode, handle: str) -> bool:
        if not self.verify_reused:
            return True
        try:
            call_with_retry(
                lambda: self.provider.describe(node.kind, handle),
                self.retry_policy,
                is_transient,
                description=f"describe {node.kind} {handle}",
                sleep=self._sleep,
            )
        except ResourceNotFound:
            logger.warning(f"Recorded {node.kind} {handle} for '{node.logical_name}' no longer exists, recreating")
            self.store.remove(node.logical_name)
            return False
        return True

    def _fail(self, node: ResourceNode, steps: List[StepRecord], error: BaseException) -> None:
        node.state = NodeState.FAILED
        if node.handle is not None and node.logical_name not in self.store:
            logger.error(f"{node.kind} {node.handle} was created but is not in the ledger, delete it manually")
        logger.error(f"Failed to create {node.kind} '{node.logical_name}': {error}")
        self._add_step(steps, node, StepStatus.FAILED, error)

    def _add_step(
        self,
        steps: List[StepRecord],
        node: ResourceNode,
        status: StepStatus,
        error: Optional[BaseException] = None,
    ) -> None:
        step = StepRecord(
            logical_name=node.logical_name,
            kind=node.kind,
            status=status,
            timestamp=datetime.now(timezone.utc),
            handle=node.handle,
            error_code=error.code if isinstance(error, ProviderError) else None,
            error_message=(str(error) or type(error).__name__) if error is not None else None,
        )
        with self._steps_lock:
            steps.append(step)

    def _mark_deleted(self, graph: ResourceGraph, report: TeardownReport) -> None:
        for record in report.deleted:
            if record.logical_name in graph:
                graph[record.logical_name].state = NodeState.DELETED

    def _handles(self, graph: ResourceGraph) -> Dict[str, str]:
        return {
            node.logical_name: node.handle
            for node in graph
            if node.handle is not None and node.state == NodeState.CREATED
        }
