"""
Apply/destroy driver.

Diffs the declared resource set against the fingerprint store, runs the
scheduler over what needs attention and records every outcome.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from pvesync.config import settings
from pvesync.database.store import FingerprintStore
from pvesync.driver.report import PassPlan, PassReport
from pvesync.errors import ConfigError, ErrorKind
from pvesync.probe.prober import StateProber
from pvesync.reconcile.reconcilers import BaseReconciler, build_reconcilers
from pvesync.resources.models import (
    Outcome,
    ReconcileResult,
    ReconciliationRecord,
    ResourceDescriptor,
    ResourceId,
    ResourceKind,
    compute_fingerprint,
)
from pvesync.scheduler.tiers import TierScheduler
from pvesync.ssh.client import ConnectionContext, SSHExecutor

logger = logging.getLogger(__name__)

# Failures after which the remote state cannot be assumed
UNVERIFIED_ERRORS = (ErrorKind.TIMEOUT, ErrorKind.CONNECTION, ErrorKind.PROBE_UNAVAILABLE)


def _state_after(result: ReconcileResult) -> str:
    if result.error_kind in UNVERIFIED_ERRORS:
        return "unknown"
    if result.outcome in (Outcome.SUCCEEDED, Outcome.SKIPPED):
        return "present"
    if result.state is not None:
        return result.state.label
    return "unknown"


class ApplyDriver:
    """
    Runs apply and destroy passes.

    A pass never raises for per-resource failures; they are collected in the
    returned PassReport. ``cancel()`` stops scheduling new resources.
    """

    def __init__(
        self,
        store: FingerprintStore,
        executor: SSHExecutor,
        context: ConnectionContext,
        *,
        prober: Optional[StateProber] = None,
        reconcilers: Optional[Dict[ResourceKind, BaseReconciler]] = None,
        scheduler: Optional[TierScheduler] = None,
        verify_unchanged: bool = settings.VERIFY_UNCHANGED,
    ):
        self.store = store
        self.executor = executor
        self.context = context
        self.prober = prober or StateProber(executor, context)
        self.reconcilers = reconcilers or build_reconcilers(executor, context)
        self.scheduler = scheduler or TierScheduler()
        self.verify_unchanged = verify_unchanged
        self._cancel_event = asyncio.Event()

    def cancel(self) -> None:
        """Request cooperative cancellation of the running pass."""
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested; in-flight commands will finish")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def fingerprint(self, descriptor: ResourceDescriptor) -> str:
        return compute_fingerprint(descriptor, self.context.fingerprint_params())

    async def plan(self, desired: Iterable[ResourceDescriptor]) -> PassPlan:
        """
        Classify the declared set against stored records.

        Raises:
            ConfigError: If two descriptors share a resource id
        """
        records = {r.resource_id: r for r in await self.store.all()}
        plan = PassPlan()
        seen = set()

        for descriptor in desired:
            rid = descriptor.resource_id
            if rid in seen:
                raise ConfigError(f"Duplicate resource {rid}")
            seen.add(rid)

            fingerprint = self.fingerprint(descriptor)
            plan.fingerprints[rid] = fingerprint
            record = records.get(rid)
            if record is not None and record.owned:
                plan.owned.add(rid)
            if record is None:
                plan.added.append(descriptor)
            elif record.fingerprint != fingerprint:
                plan.changed.append(descriptor)
            else:
                plan.unchanged.append(descriptor)
                if record.needs_retry:
                    plan.retry.append(descriptor)

        plan.removed = [r for rid, r in records.items() if rid not in seen]
        logger.info(
            f"Plan: {len(plan.added)} added, {len(plan.changed)} changed, "
            f"{len(plan.unchanged)} unchanged ({len(plan.retry)} to retry), "
            f"{len(plan.removed)} removed"
        )
        return plan

    async def apply(self, desired: Iterable[ResourceDescriptor]) -> PassReport:
        """
        Converge remote nodes to the declared resource set.

        Resources that left the declared set are destroyed first, in reverse
        dependency order, then the declared set is applied tier by tier. Only
        resources pvesync has converged are destroyed; the rest are released.
        """
        self._cancel_event.clear()
        report = PassReport(action="apply")
        plan = await self.plan(desired)

        if plan.removed:
            report.destroy_results = await self._destroy_records(plan.removed)

        skip_ids = set()
        if not self.verify_unchanged:
            retry_ids = {d.resource_id for d in plan.retry}
            skip_ids = {d.resource_id for d in plan.unchanged if d.resource_id not in retry_ids}

        async def apply_one(descriptor: ResourceDescriptor) -> ReconcileResult:
            rid = descriptor.resource_id
            if rid in skip_ids:
                return ReconcileResult(
                    resource_id=rid,
                    outcome=Outcome.SKIPPED,
                    message="unchanged since last successful pass",
                )

            state = await self.prober.probe(descriptor)
            result = await self.reconcilers[descriptor.kind].reconcile(descriptor, state)
            await self.store.record(ReconciliationRecord(
                kind=descriptor.kind,
                key=descriptor.key,
                fingerprint=plan.fingerprints[rid],
                last_state=_state_after(result),
                last_outcome=result.outcome,
                descriptor=descriptor,
                owned=rid in plan.owned or result.mutated or result.terminal_ok,
            ))
            return result

        results = await self.scheduler.run(
            plan.desired, apply_one, cancel_event=self._cancel_event
        )
        report.apply_results = list(results.values())
        return self._finish(report)

    async def destroy(self) -> PassReport:
        """Destroy every owned resource, best-effort, in reverse dependency order."""
        self._cancel_event.clear()
        report = PassReport(action="destroy")
        records = await self.store.all()
        report.destroy_results = await self._destroy_records(records)
        return self._finish(report)

    async def _destroy_records(self, records: List[ReconciliationRecord]) -> List[ReconcileResult]:
        by_id: Dict[ResourceId, ReconciliationRecord] = {}
        results: List[ReconcileResult] = []
        for record in records:
            if not record.owned:
                # Conflicting or never created by pvesync; leave the remote object alone
                await self.store.delete(record.resource_id)
                logger.warning(f"{record.resource_id} was never converged by pvesync; released without changes")
                results.append(ReconcileResult(
                    resource_id=record.resource_id,
                    outcome=Outcome.SKIPPED,
                    message="never converged by pvesync; released without changes",
                ))
            elif record.descriptor is None:
                logger.warning(f"Record {record.resource_id} has no descriptor snapshot; cannot destroy")
                results.append(ReconcileResult(
                    resource_id=record.resource_id,
                    outcome=Outcome.NOT_ATTEMPTED,
                    message="no descriptor snapshot recorded",
                ))
            else:
                by_id[record.resource_id] = record

        async def destroy_one(descriptor: ResourceDescriptor) -> ReconcileResult:
            rid = descriptor.resource_id
            state = await self.prober.probe(descriptor)
            result = await self.reconcilers[descriptor.kind].reconcile_destroy(descriptor, state)
            if result.terminal_ok:
                await self.store.delete(rid)
                logger.info(f"Destroyed {rid}: {result.message or result.outcome.value}")
            else:
                previous = by_id[rid]
                await self.store.record(ReconciliationRecord(
                    kind=previous.kind,
                    key=previous.key,
                    fingerprint=previous.fingerprint,
                    last_state="unknown" if result.error_kind in UNVERIFIED_ERRORS else state.label,
                    last_outcome=Outcome.FAILED,
                    descriptor=descriptor,
                    owned=True,
                ))
                logger.error(f"Destroy of {rid} failed: {result.message}")
            return result

        destroyed = await self.scheduler.run(
            [r.descriptor for r in by_id.values()],
            destroy_one,
            reverse=True,
            gate=False,
            cancel_event=self._cancel_event,
        )
        results.extend(destroyed.values())
        return results

    def _finish(self, report: PassReport) -> PassReport:
        report.cancelled = self.cancelled
        report.finished_at = datetime.now(timezone.utc)
        counts = ", ".join(f"{k}={v}" for k, v in report.counts().items())
        if report.success:
            logger.info(f"{report.action} pass completed: {counts}")
        else:
            logger.error(f"{report.action} pass completed with failures: {counts}")
        return report
