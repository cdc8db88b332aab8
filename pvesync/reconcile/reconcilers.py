"""
Per-kind resource reconcilers.

Each reconciler turns a descriptor plus its probed RemoteState into the
minimal command sequence that converges the remote node, and classifies the
outcome. Exceptions from the executor never escape; they become failed
results tagged with an ErrorKind.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple, Type

from pvesync.config import settings
from pvesync.errors import ErrorKind, RemoteConnectionError, RemoteError
from pvesync.reconcile import commands
from pvesync.resources.models import (
    STORAGE_KINDS,
    HostResult,
    Outcome,
    ReconcileResult,
    RemoteState,
    ResourceDescriptor,
    ResourceKind,
)
from pvesync.ssh.client import ConnectionContext, SSHCommandResult, SSHExecutor
from pvesync.utils.retry import call_with_retry

logger = logging.getLogger(__name__)

ALREADY_EXISTS = ("already exists", "already defined")
ALREADY_GONE = ("does not exist", "not found", "no such")

STDERR_EXCERPT = 500


class BaseReconciler:
    """
    Shared create/converge/destroy flow.

    Subclasses provide the command sequences and, where needed, the set of
    target hosts and the non-zero outputs that mean "already done".
    """

    kind: ResourceKind
    # Commands idempotent by argument: a mismatch is converged, not a conflict
    convergent: bool = False
    benign_signatures: Tuple[str, ...] = ALREADY_EXISTS
    destroy_benign_signatures: Tuple[str, ...] = ALREADY_GONE

    def __init__(
        self,
        executor: SSHExecutor,
        context: ConnectionContext,
        retries: int = settings.CONNECT_RETRIES,
        retry_delay: float = settings.RETRY_DELAY,
    ):
        self.executor = executor
        self.context = context
        self.retries = retries
        self.retry_delay = retry_delay

    # -- hooks -------------------------------------------------------------

    def create_commands(self, descriptor: ResourceDescriptor, state: RemoteState) -> List[str]:
        raise NotImplementedError

    def destroy_commands(self, descriptor: ResourceDescriptor) -> List[str]:
        return []

    def apply_hosts(self, descriptor: ResourceDescriptor) -> List[str]:
        return [descriptor.primary_host]

    def destroy_hosts(self, descriptor: ResourceDescriptor) -> List[str]:
        return [descriptor.primary_host]

    def converges(self, state: RemoteState) -> bool:
        """Whether a present, non-matching resource is modified rather than refused."""
        return self.convergent

    # -- flow --------------------------------------------------------------

    async def reconcile(self, descriptor: ResourceDescriptor, state: RemoteState) -> ReconcileResult:
        """
        Converge one resource given its probed state.

        Args:
            descriptor: Desired resource
            state: RemoteState from the prober in this same pass

        Returns:
            ReconcileResult with outcome SUCCEEDED, SKIPPED or FAILED
        """
        rid = descriptor.resource_id

        if state.is_unknown:
            return ReconcileResult(
                resource_id=rid,
                outcome=Outcome.FAILED,
                error_kind=ErrorKind.PROBE_UNAVAILABLE,
                message=f"Remote state could not be determined: {state.reason}",
                state=state,
            )

        if state.is_matching:
            logger.info(f"{rid} already matches desired state")
            return ReconcileResult(
                resource_id=rid,
                outcome=Outcome.SKIPPED,
                message="already present and matching",
                state=state,
            )

        if state.is_conflicting and not self.converges(state):
            logger.warning(f"{rid} exists with conflicting configuration: {state.details}")
            return ReconcileResult(
                resource_id=rid,
                outcome=Outcome.FAILED,
                error_kind=ErrorKind.CONFLICT,
                message=f"Present but not matching desired configuration: {state.details}",
                state=state,
            )

        cmds = self.create_commands(descriptor, state)
        return await self._run_on_hosts(
            descriptor, self.apply_hosts(descriptor), cmds, state, self.benign_signatures
        )

    async def reconcile_destroy(self, descriptor: ResourceDescriptor, state: RemoteState) -> ReconcileResult:
        """
        Remove one resource given its probed state.

        Absent resources are skipped; failures are returned, never raised.
        """
        rid = descriptor.resource_id

        if state.is_unknown:
            return ReconcileResult(
                resource_id=rid,
                outcome=Outcome.FAILED,
                error_kind=ErrorKind.PROBE_UNAVAILABLE,
                message=f"Remote state could not be determined: {state.reason}",
                state=state,
            )

        if state.is_absent:
            return ReconcileResult(
                resource_id=rid,
                outcome=Outcome.SKIPPED,
                message="already absent",
                state=state,
            )

        cmds = self.destroy_commands(descriptor)
        if not cmds:
            logger.warning(f"{rid} has no compensating command; released from management")
            return ReconcileResult(
                resource_id=rid,
                outcome=Outcome.SKIPPED,
                message="no compensating command; released from management",
                state=state,
            )

        return await self._run_on_hosts(
            descriptor, self.destroy_hosts(descriptor), cmds, state, self.destroy_benign_signatures
        )

    # -- execution ---------------------------------------------------------

    async def _execute(self, host: str, command: str) -> SSHCommandResult:
        # Only failures to reach the host are retried; a dropped or timed-out
        # command may already have changed remote state.
        return await call_with_retry(
            lambda: self.executor.execute(host, self.context, command),
            retries=self.retries,
            delay=self.retry_delay,
            catch_exceptions=RemoteConnectionError,
            label=f"command on {host}",
        )

    async def _run_sequence(
        self, host: str, cmds: Sequence[str], benign: Sequence[str]
    ) -> Tuple[HostResult, bool]:
        """Run commands in order on one host; stop at the first hard failure."""
        issued = False
        already_present = False
        for command in cmds:
            try:
                issued = True
                result = await self._execute(host, command)
            except RemoteError as e:
                return HostResult(
                    host=host, ok=False, error_kind=e.kind, message=str(e)
                ), issued

            if result.success:
                continue
            if _matches(result.output, benign):
                logger.info(f"Tolerated on {host}: {result.output.strip()[:200]}")
                already_present = True
                continue
            return HostResult(
                host=host,
                ok=False,
                exit_code=result.exit_code,
                stderr=result.stderr.strip()[:STDERR_EXCERPT],
                error_kind=ErrorKind.COMMAND,
                message=f"'{command}' exited {result.exit_code}",
            ), issued

        return HostResult(host=host, ok=True, already_present=already_present), issued

    async def _run_on_hosts(
        self,
        descriptor: ResourceDescriptor,
        hosts: Sequence[str],
        cmds: Sequence[str],
        state: RemoteState,
        benign: Sequence[str],
    ) -> ReconcileResult:
        """
        Run the sequence on every host.

        Hosts that already succeeded are not rolled back when a later host
        fails; the result lists every failing host.
        """
        rid = descriptor.resource_id
        host_results: List[HostResult] = []
        mutated = False
        for host in hosts:
            host_result, issued = await self._run_sequence(host, cmds, benign)
            mutated = mutated or issued
            host_results.append(host_result)
            if not host_result.ok:
                logger.error(f"{rid} failed on {host}: {host_result.message} {host_result.stderr}")

        failures = [h for h in host_results if not h.ok]
        if failures:
            return ReconcileResult(
                resource_id=rid,
                outcome=Outcome.FAILED,
                error_kind=failures[0].error_kind,
                message="; ".join(f"{h.host}: {h.message}" for h in failures),
                stderr="\n".join(f"{h.host}: {h.stderr}" for h in failures if h.stderr),
                state=state,
                host_results=host_results,
                mutated=mutated,
            )

        if host_results and all(h.already_present for h in host_results):
            return ReconcileResult(
                resource_id=rid,
                outcome=Outcome.SKIPPED,
                message="already present on every host",
                state=state,
                host_results=host_results,
                mutated=mutated,
            )

        return ReconcileResult(
            resource_id=rid,
            outcome=Outcome.SUCCEEDED,
            state=state,
            host_results=host_results,
            mutated=mutated,
        )


def _matches(text: str, signatures: Sequence[str]) -> bool:
    lowered = text.lower()
    return any(sig in lowered for sig in signatures)


class ClusterCreateReconciler(BaseReconciler):
    """Forms the cluster on its primary node with ``pvecm create``."""
    kind = ResourceKind.CLUSTER_CREATE

    def create_commands(self, descriptor, state):
        return [commands.cluster_create(descriptor)]


class ClusterJoinReconciler(BaseReconciler):
    """Joins a node to the cluster; ``pvecm delnode`` on the cluster host removes it."""
    kind = ResourceKind.CLUSTER_JOIN
    benign_signatures = ALREADY_EXISTS + (
        "already a member",
        "may already be a member",
        "already part of a cluster",
    )

    def create_commands(self, descriptor, state):
        return [commands.cluster_join(descriptor)]

    def destroy_commands(self, descriptor):
        return [commands.cluster_delnode(descriptor)]

    def destroy_hosts(self, descriptor):
        return [descriptor.attributes.get("cluster_host") or descriptor.primary_host]


class HAGroupReconciler(BaseReconciler):
    """HA group membership via ha-manager; re-issued to converge node lists."""
    kind = ResourceKind.HA_GROUP
    convergent = True
    benign_signatures = ALREADY_EXISTS + ("already in group",)

    def create_commands(self, descriptor, state):
        return [commands.ha_group_create(descriptor, exists=not state.is_absent)]

    def destroy_commands(self, descriptor):
        return [commands.ha_group_remove(descriptor)]


class CorosyncTuneReconciler(BaseReconciler):
    """Sets totem parameters through corosync-cmapctl."""
    kind = ResourceKind.COROSYNC_TUNE
    convergent = True

    def create_commands(self, descriptor, state):
        observed = state.details.get("observed", {})
        return [
            commands.corosync_set(param, value)
            for param, value in descriptor.attributes.items()
            if param in commands.COROSYNC_KEYS
            and value is not None
            and observed.get(param) != str(value)
        ]


class StorageReconciler(BaseReconciler):
    """
    Shared storage (NFS, iSCSI, Ceph RBD).

    ``pvesm add`` is issued once per target node; the storage definition is
    cluster-wide, so nodes after the first usually answer "already defined",
    which is tolerated.
    """

    def __init__(self, executor, context, kind: ResourceKind = ResourceKind.STORAGE_NFS, **kwargs):
        super().__init__(executor, context, **kwargs)
        self.kind = kind

    def apply_hosts(self, descriptor):
        return list(descriptor.hosts)

    def create_commands(self, descriptor, state):
        return [commands.storage_add(descriptor)]

    def destroy_commands(self, descriptor):
        return [commands.storage_remove(descriptor)]


class BackupJobReconciler(BaseReconciler):
    """vzdump backup job scheduled through the cluster backup API."""
    kind = ResourceKind.BACKUP_JOB
    convergent = True

    def create_commands(self, descriptor, state):
        if state.is_absent:
            return [commands.backup_job_create(descriptor)]
        return [commands.backup_job_update(descriptor)]

    def destroy_commands(self, descriptor):
        return [commands.backup_job_remove(descriptor)]


class LXCReconciler(BaseReconciler):
    """LXC container provisioning with pct."""
    kind = ResourceKind.LXC

    def converges(self, state):
        # A stopped container that otherwise matches is started; any other
        # difference is left to the operator
        return bool(state.details.get("config_matching")) and state.details.get("running") is False

    def create_commands(self, descriptor, state):
        if state.is_absent:
            return [commands.lxc_create(descriptor)]
        return [commands.lxc_start(descriptor)]

    def destroy_commands(self, descriptor):
        return [commands.lxc_destroy(descriptor)]


RECONCILERS: Dict[ResourceKind, Type[BaseReconciler]] = {
    ResourceKind.CLUSTER_CREATE: ClusterCreateReconciler,
    ResourceKind.CLUSTER_JOIN: ClusterJoinReconciler,
    ResourceKind.HA_GROUP: HAGroupReconciler,
    ResourceKind.COROSYNC_TUNE: CorosyncTuneReconciler,
    ResourceKind.BACKUP_JOB: BackupJobReconciler,
    ResourceKind.LXC: LXCReconciler,
}


def build_reconcilers(
    executor: SSHExecutor,
    context: ConnectionContext,
    retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
) -> Dict[ResourceKind, BaseReconciler]:
    """Instantiate one reconciler per kind sharing the executor and context."""
    kwargs = {}
    if retries is not None:
        kwargs["retries"] = retries
    if retry_delay is not None:
        kwargs["retry_delay"] = retry_delay

    reconcilers: Dict[ResourceKind, BaseReconciler] = {
        kind: cls(executor, context, **kwargs) for kind, cls in RECONCILERS.items()
    }
    for kind in STORAGE_KINDS:
        reconcilers[kind] = StorageReconciler(executor, context, kind=kind, **kwargs)
    return reconcilers
