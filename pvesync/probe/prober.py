"""
State prober: classifies the real remote state of a declared resource.

Runs read-only queries through the executor and hands their output to
pvesync.probe.parsers. Transport errors and timeouts are reported as
UNKNOWN, never as ABSENT.
"""

import logging
from typing import Awaitable, Callable, Dict

from pvesync.errors import RemoteError
from pvesync.probe import parsers
from pvesync.reconcile import commands
from pvesync.resources.models import (
    STORAGE_KINDS,
    STORAGE_TYPE_TAGS,
    RemoteState,
    ResourceDescriptor,
    ResourceKind,
)
from pvesync.ssh.client import ConnectionContext, SSHCommandResult, SSHExecutor

logger = logging.getLogger(__name__)


class StateProber:
    """
    Per-kind remote state classification.

    ``probe`` never raises for remote failures; the reason ends up in
    ``RemoteState.reason`` instead.
    """

    def __init__(self, executor: SSHExecutor, context: ConnectionContext):
        self.executor = executor
        self.context = context
        self._probes: Dict[ResourceKind, Callable[[ResourceDescriptor], Awaitable[RemoteState]]] = {
            ResourceKind.CLUSTER_CREATE: self._probe_cluster,
            ResourceKind.CLUSTER_JOIN: self._probe_join,
            ResourceKind.HA_GROUP: self._probe_ha_group,
            ResourceKind.COROSYNC_TUNE: self._probe_corosync,
            ResourceKind.BACKUP_JOB: self._probe_backup_job,
            ResourceKind.LXC: self._probe_lxc,
        }
        for kind in STORAGE_KINDS:
            self._probes[kind] = self._probe_storage

    async def probe(self, descriptor: ResourceDescriptor) -> RemoteState:
        """
        Query the remote system and classify the resource's current state.

        Args:
            descriptor: Resource to probe

        Returns:
            RemoteState (ABSENT, PRESENT or UNKNOWN)
        """
        try:
            state = await self._probes[descriptor.kind](descriptor)
        except RemoteError as e:
            logger.warning(f"Probe of {descriptor.resource_id} unavailable: {e}")
            return RemoteState.unknown(str(e))

        logger.debug(f"Probe of {descriptor.resource_id}: {state.label}")
        return state

    async def _run(self, host: str, command: str) -> SSHCommandResult:
        return await self.executor.execute(host, self.context, command)

    async def _probe_cluster(self, descriptor: ResourceDescriptor) -> RemoteState:
        desired_name = descriptor.attributes.get("name", descriptor.key)
        host = descriptor.primary_host

        result = await self._run(host, commands.CLUSTER_STATUS_JSON)
        if result.success:
            state = parsers.parse_cluster_status_json(result.stdout, desired_name)
            if not state.is_unknown:
                return state

        # Older releases or a broken API: fall back to pvecm text output
        result = await self._run(host, commands.CLUSTER_STATUS_TEXT)
        return parsers.parse_pvecm_status(result.exit_code, result.output, desired_name)

    async def _probe_join(self, descriptor: ResourceDescriptor) -> RemoteState:
        node = descriptor.attributes.get("node", descriptor.key)
        result = await self._run(descriptor.primary_host, commands.CLUSTER_NODES)
        return parsers.parse_pvecm_nodes(result.exit_code, result.output, node)

    async def _probe_ha_group(self, descriptor: ResourceDescriptor) -> RemoteState:
        result = await self._run(descriptor.primary_host, commands.HA_GROUP_CONFIG)
        return parsers.parse_ha_group_state(
            result.exit_code, result.output, descriptor.key, descriptor.attributes
        )

    async def _probe_corosync(self, descriptor: ResourceDescriptor) -> RemoteState:
        observed = {}
        matching = True
        for param in commands.COROSYNC_KEYS:
            desired = descriptor.attributes.get(param)
            if desired is None:
                continue
            result = await self._run(descriptor.primary_host, commands.corosync_get(param))
            if result.exit_code != 0:
                if not parsers.cmap_key_missing(result.output):
                    return RemoteState.unknown(
                        f"corosync-cmapctl exited {result.exit_code}: {result.output.strip()[:200]}"
                    )
                value = None
            else:
                value = parsers.parse_cmap_value(result.exit_code, result.stdout)
                if value is None:
                    return RemoteState.unknown(
                        f"unparseable corosync-cmapctl output: {result.stdout.strip()[:200]}"
                    )
            observed[param] = value
            matching = matching and value == str(desired)
        return RemoteState.present(matching=matching, observed=observed)

    async def _probe_storage(self, descriptor: ResourceDescriptor) -> RemoteState:
        result = await self._run(descriptor.primary_host, commands.STORAGE_LIST_JSON)
        if not result.success:
            return RemoteState.unknown(f"storage listing exited {result.exit_code}: {result.stderr.strip()[:200]}")
        return parsers.parse_storage_state(
            result.stdout, descriptor.key, STORAGE_TYPE_TAGS[descriptor.kind]
        )

    async def _probe_backup_job(self, descriptor: ResourceDescriptor) -> RemoteState:
        result = await self._run(descriptor.primary_host, commands.BACKUP_JOBS_JSON)
        if not result.success:
            return RemoteState.unknown(f"backup job listing exited {result.exit_code}: {result.stderr.strip()[:200]}")
        return parsers.parse_backup_job_state(result.stdout, descriptor.key, descriptor.attributes)

    async def _probe_lxc(self, descriptor: ResourceDescriptor) -> RemoteState:
        vmid = descriptor.attributes["vmid"]
        result = await self._run(descriptor.primary_host, commands.lxc_config(vmid))
        state = parsers.parse_pct_config(
            result.exit_code, result.output, descriptor.key, descriptor.attributes
        )
        if not descriptor.attributes.get("start") or state.is_absent or state.is_unknown:
            return state

        result = await self._run(descriptor.primary_host, commands.lxc_status(vmid))
        running = parsers.parse_pct_status(result.exit_code, result.output)
        if running is None:
            return RemoteState.unknown(f"pct status exited {result.exit_code}: {result.output.strip()[:200]}")
        return RemoteState.present(
            matching=state.is_matching and running,
            observed=state.details.get("observed"),
            config_matching=state.is_matching,
            running=running,
        )
