"""Reverse-order teardown of recorded resources.

Used both to roll back a failed provisioning run and for explicit teardown of a
ledger left by an earlier run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..errors import DependencyViolation, ProviderError, ResourceNotFound, TeardownIncomplete
from ..ledger.handle_store import ResourceHandleStore
from ..models.provisioning_run import StepRecord, StepStatus
from ..models.resource_node import HandleRecord
from .graph import compute_deletion_order
from .provider import CloudProvider
from .retry import RetryPolicy, call_with_retry, is_transient

logger = logging.getLogger(__name__)


@dataclass
class TeardownReport:
    """Outcome of a teardown.

    Attributes:
        deleted: Records whose resources were deleted (or already gone), in deletion order
        remaining: Records still in the ledger after the last pass
        passes: Number of passes run
        steps: Per-attempt step records
    """

    deleted: List[HandleRecord] = field(default_factory=list)
    remaining: List[HandleRecord] = field(default_factory=list)
    passes: int = 0
    steps: List[StepRecord] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return not self.remaining

    def raise_for_remaining(self) -> None:
        """Raise TeardownIncomplete if any resource is left."""
        if self.remaining:
            raise TeardownIncomplete([(r.logical_name, r.kind, r.handle) for r in self.remaining])


class Unwinder:
    """Deletes ledger entries in reverse-dependency order.

    A resource that is already gone counts as deleted. A DependencyViolation
    defers the resource to the next pass; some references (two security groups
    referencing each other, an instance still shutting down) only clear once
    other deletions have gone through. Every confirmed deletion is removed from
    the ledger immediately, so an interrupted teardown resumes where it stopped.

    Attributes:
        provider: Cloud provider
        retry_policy: Per-call retry bounds for transient errors
        max_passes: Maximum passes over the remaining resources
        pass_policy: Backoff between passes
    """

    def __init__(
        self,
        provider: CloudProvider,
        retry_policy: Optional[RetryPolicy] = None,
        max_passes: int = 5,
        pass_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_passes < 1:
            raise ValueError("max_passes must be at least 1")
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_passes = max_passes
        self.pass_policy = pass_policy or RetryPolicy(max_attempts=max_passes, base_delay=10.0)
        self._sleep = sleep

    def plan(self, store: ResourceHandleStore) -> List[HandleRecord]:
        """Deletion order for the current ledger, without deleting anything."""
        return compute_deletion_order(store.all())

    def teardown(self, store: ResourceHandleStore) -> TeardownReport:
        """Delete every resource recorded in the store.

        Args:
            store: Ledger to consume

        Returns:
            TeardownReport; report.completed is False if resources remain
        """
        report = TeardownReport()
        remaining = self.plan(store)

        if not remaining:
            logger.info("Nothing to tear down")
            store.clear_outputs()
            store.clear_network_plan()
            return report

        logger.info(f"Tearing down {len(remaining)} resource(s)")

        for pass_number in range(1, self.max_passes + 1):
            report.passes = pass_number
            deferred = []

            for record in remaining:
                if self._delete_record(store, record, pass_number, report):
                    report.deleted.append(record)
                else:
                    deferred.append(record)

            if not deferred:
                break

            remaining = compute_deletion_order(deferred)
            if pass_number < self.max_passes:
                wait_time = self.pass_policy.delay_for(pass_number)
                logger.warning(
                    f"{len(deferred)} resource(s) still blocked after pass {pass_number}/{self.max_passes}, "
                    f"retrying in {wait_time:.0f}s"
                )
                self._sleep(wait_time)
        else:
            report.remaining = remaining
            logger.error(
                f"Teardown incomplete, {len(remaining)} resource(s) remain: "
                + ", ".join(f"{r.kind} {r.handle}" for r in remaining)
            )
            return report

        store.clear_outputs()
        store.clear_network_plan()
        logger.info(f"Teardown complete, {len(report.deleted)} resource(s) deleted in {report.passes} pass(es)")
        return report

    def _delete_record(
        self,
        store: ResourceHandleStore,
        record: HandleRecord,
        pass_number: int,
        report: TeardownReport,
    ) -> bool:
        """Delete one resource. Returns True once it is gone and off the ledger."""
        try:
            call_with_retry(
                lambda: self.provider.delete(record.kind, record.handle),
                self.retry_policy,
                is_transient,
                description=f"delete {record.kind} {record.handle}",
                sleep=self._sleep,
            )
            logger.info(f"Deleted {record.kind} {record.handle} ({record.logical_name})")
        except ResourceNotFound:
            logger.info(f"{record.kind} {record.handle} ({record.logical_name}) already deleted")
        except DependencyViolation as e:
            logger.debug(f"Dependency violation for {record.handle}, deferring: {e}")
            report.steps.append(self._step(record, StepStatus.DEFERRED, pass_number, e))
            return False
        except Exception as e:
            logger.error(f"Failed to delete {record.kind} {record.handle}: {e}")
            report.steps.append(self._step(record, StepStatus.FAILED, pass_number, e))
            return False

        store.remove(record.logical_name)
        report.steps.append(self._step(record, StepStatus.DELETED, pass_number))
        return True

    @staticmethod
    def _step(
        record: HandleRecord,
        status: StepStatus,
        attempt: int,
        error: Optional[BaseException] = None,
    ) -> StepRecord:
        return StepRecord(
            logical_name=record.logical_name,
            kind=record.kind,
            status=status,
            timestamp=datetime.now(timezone.utc),
            handle=record.handle,
            error_code=error.code if isinstance(error, ProviderError) else None,
            error_message=(str(error) or type(error).__name__) if error is not None else None,
            attempt=attempt,
        )
