"""
Tests for the state prober.
"""

import pytest

from pvesync.errors import RemoteConnectionError, RemoteTimeoutError
from pvesync.probe.prober import StateProber
from pvesync.resources.models import ResourceDescriptor, ResourceKind

from helpers import (
    PVECM_NOT_IN_CLUSTER,
    STANDALONE_STATUS_JSON,
    cluster_status_json,
    pvecm_nodes_output,
    storage_list_json,
)


def cluster(name="pvecluster"):
    return ResourceDescriptor(
        kind=ResourceKind.CLUSTER_CREATE, key=name, attributes={"name": name}, hosts=["10.0.0.1"]
    )


class TestStateProber:
    """Test per-kind probing through a scripted executor."""

    @pytest.fixture
    def prober(self, fake_executor, context):
        return StateProber(fake_executor, context)

    @pytest.mark.asyncio
    async def test_cluster_present_from_json(self, prober, fake_executor):
        fake_executor.on("pvesh get /cluster/status", stdout=cluster_status_json("pvecluster"))

        state = await prober.probe(cluster())

        assert state.is_matching
        assert fake_executor.calls == [("10.0.0.1", "pvesh get /cluster/status --output-format json")]

    @pytest.mark.asyncio
    async def test_cluster_falls_back_to_pvecm(self, prober, fake_executor):
        fake_executor.on("pvesh get /cluster/status", exit_code=255, stderr="ipcc failed")
        fake_executor.on("pvecm status", exit_code=2, stderr=PVECM_NOT_IN_CLUSTER)

        state = await prober.probe(cluster())

        assert state.is_absent
        assert [c for _, c in fake_executor.calls] == [
            "pvesh get /cluster/status --output-format json",
            "pvecm status",
        ]

    @pytest.mark.asyncio
    async def test_standalone_json_is_absent(self, prober, fake_executor):
        fake_executor.on("pvesh get /cluster/status", stdout=STANDALONE_STATUS_JSON)

        assert (await prober.probe(cluster())).is_absent

    @pytest.mark.asyncio
    async def test_transport_error_is_unknown(self, prober, fake_executor):
        fake_executor.on("pvesh get", raises=RemoteConnectionError("refused", host="10.0.0.1"))

        state = await prober.probe(cluster())

        assert state.is_unknown
        assert "refused" in state.reason

    @pytest.mark.asyncio
    async def test_timeout_is_unknown(self, prober, fake_executor):
        fake_executor.on("pvesh get", raises=RemoteTimeoutError("timed out"))

        assert (await prober.probe(cluster())).is_unknown

    @pytest.mark.asyncio
    async def test_join_membership_lookup(self, prober, fake_executor):
        fake_executor.on("pvecm nodes", stdout=pvecm_nodes_output("pve1", "pve2"), host="10.0.0.2")
        join = ResourceDescriptor(
            kind=ResourceKind.CLUSTER_JOIN, key="pve2",
            attributes={"node": "pve2", "cluster_ip": "10.0.0.1"}, hosts=["10.0.0.2"],
        )

        assert (await prober.probe(join)).is_matching

    @pytest.mark.asyncio
    async def test_corosync_mismatch_reports_observed(self, prober, fake_executor):
        fake_executor.on("totem.token", stdout="totem.token (u32) = 1000\n")
        fake_executor.on("totem.consensus", stdout="totem.consensus (u32) = 6000\n")
        tune = ResourceDescriptor(
            kind=ResourceKind.COROSYNC_TUNE, key="totem",
            attributes={"token_timeout": 3000, "consensus_timeout": 6000}, hosts=["10.0.0.1"],
        )

        state = await prober.probe(tune)

        assert state.is_conflicting
        assert state.details["observed"] == {"token_timeout": "1000", "consensus_timeout": "6000"}

    @pytest.mark.asyncio
    async def test_corosync_unset_key_counts_as_mismatch(self, prober, fake_executor):
        fake_executor.on("totem.join", exit_code=1, stderr="Can't get key totem.join. Error CS_ERR_NOT_EXIST")
        tune = ResourceDescriptor(
            kind=ResourceKind.COROSYNC_TUNE, key="totem", attributes={"join_timeout": 60}, hosts=["10.0.0.1"],
        )

        state = await prober.probe(tune)

        assert state.is_conflicting
        assert state.details["observed"] == {"join_timeout": None}

    @pytest.mark.asyncio
    async def test_corosync_cmap_unavailable(self, prober, fake_executor):
        fake_executor.on("corosync-cmapctl", exit_code=1, stderr="Failed to initialize the cmap API")
        tune = ResourceDescriptor(
            kind=ResourceKind.COROSYNC_TUNE, key="totem", attributes={"join_timeout": 60}, hosts=["10.0.0.1"],
        )

        assert (await prober.probe(tune)).is_unknown

    @pytest.mark.asyncio
    async def test_storage_lookup_uses_type_tag(self, prober, fake_executor):
        fake_executor.on("pvesh get /storage", stdout=storage_list_json(("ceph1", "rbd")))
        ceph = ResourceDescriptor(
            kind=ResourceKind.STORAGE_CEPH, key="ceph1", attributes={"pool": "rbd"}, hosts=["10.0.0.1"],
        )

        assert (await prober.probe(ceph)).is_matching

    @pytest.mark.asyncio
    async def test_storage_listing_failure_is_unknown(self, prober, fake_executor):
        fake_executor.on("pvesh get /storage", exit_code=1, stderr="500 Internal Server Error")
        nfs = ResourceDescriptor(kind=ResourceKind.STORAGE_NFS, key="nfs1", hosts=["10.0.0.1"])

        state = await prober.probe(nfs)

        assert state.is_unknown
        assert "500" in state.reason

    @pytest.mark.asyncio
    async def test_lxc_missing_container_is_absent(self, prober, fake_executor):
        fake_executor.on("pct config 105", exit_code=2,
                         stderr="Configuration file 'nodes/pve2/lxc/105.conf' does not exist")
        container = ResourceDescriptor(
            kind=ResourceKind.LXC, key="web1", attributes={"vmid": 105, "node": "pve2"}, hosts=["10.0.0.2"],
        )

        assert (await prober.probe(container)).is_absent
        assert fake_executor.calls == [("10.0.0.2", "pct config 105")]

    @pytest.mark.asyncio
    async def test_corosync_unparseable_output_is_unknown(self, prober, fake_executor):
        fake_executor.on("totem.token", stdout="unexpected banner\n")
        tune = ResourceDescriptor(
            kind=ResourceKind.COROSYNC_TUNE, key="totem", attributes={"token_timeout": 3000}, hosts=["10.0.0.1"],
        )

        state = await prober.probe(tune)

        assert state.is_unknown
        assert "unparseable" in state.reason

    @pytest.mark.asyncio
    async def test_lxc_started_container_matches(self, prober, fake_executor):
        fake_executor.on("pct config 105", stdout="hostname: web1\ncores: 2\n")
        fake_executor.on("pct status 105", stdout="status: running\n")
        container = ResourceDescriptor(
            kind=ResourceKind.LXC, key="web1", attributes={"vmid": 105, "cores": 2, "start": True},
            hosts=["10.0.0.2"],
        )

        state = await prober.probe(container)

        assert state.is_matching
        assert state.details["running"] is True

    @pytest.mark.asyncio
    async def test_lxc_stopped_container_differs(self, prober, fake_executor):
        fake_executor.on("pct config 105", stdout="hostname: web1\n")
        fake_executor.on("pct status 105", stdout="status: stopped\n")
        container = ResourceDescriptor(
            kind=ResourceKind.LXC, key="web1", attributes={"vmid": 105, "start": True}, hosts=["10.0.0.2"],
        )

        state = await prober.probe(container)

        assert state.is_conflicting
        assert state.details["config_matching"] is True
        assert state.details["running"] is False

    @pytest.mark.asyncio
    async def test_lxc_status_not_checked_unless_started(self, prober, fake_executor):
        fake_executor.on("pct config 105", stdout="hostname: web1\n")
        container = ResourceDescriptor(
            kind=ResourceKind.LXC, key="web1", attributes={"vmid": 105}, hosts=["10.0.0.2"],
        )

        assert (await prober.probe(container)).is_matching
        assert fake_executor.calls == [("10.0.0.2", "pct config 105")]

    @pytest.mark.asyncio
    async def test_lxc_status_failure_is_unknown(self, prober, fake_executor):
        fake_executor.on("pct config 105", stdout="hostname: web1\n")
        fake_executor.on("pct status 105", exit_code=255, stderr="connection reset")
        container = ResourceDescriptor(
            kind=ResourceKind.LXC, key="web1", attributes={"vmid": 105, "start": True}, hosts=["10.0.0.2"],
        )

        assert (await prober.probe(container)).is_unknown
