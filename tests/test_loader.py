"""
Tests for the declarative configuration loader.
"""

import pytest
import yaml

from pvesync.errors import ConfigError
from pvesync.inventory.loader import load_config, parse_config
from pvesync.resources.models import ResourceId, ResourceKind, compute_fingerprint
from pvesync.utils.timeparse import parse_time


def base_config():
    return {
        "connection": {
            "host": "10.0.0.1",
            "user": "root",
            "private_key_path": "~/.ssh/id_ed25519",
            "command_timeout": "90s",
            "nodes": {"pve1": "10.0.0.1", "pve2": "10.0.0.2", "pve3": "10.0.0.3"},
        },
        "cluster": {
            "create": {"name": "pvecluster", "primary_node": "pve1", "link0": "10.0.0.1"},
            "joins": [{"node": "pve2"}, {"node": "pve3", "link0": "10.0.0.3"}],
        },
        "ha_groups": [{"name": "critical", "nodes": ["pve1", "pve2"], "restricted": True}],
        "corosync": {"token_timeout": 3000, "consensus_timeout": 3600},
        "storages": [
            {"id": "nfs1", "type": "nfs", "server": "10.0.0.50", "export": "/export/pve", "nodes": ["pve1", "pve2"]},
            {"id": "ceph1", "type": "ceph", "pool": "vms", "monhost": ["10.0.0.1", "10.0.0.2"]},
        ],
        "backup_jobs": [
            {"id": "daily", "vms": [100, 101], "storage": "nfs1", "schedule": "02:00", "mode": "snapshot", "maxfiles": 7},
        ],
        "containers": [
            {"hostname": "web1", "node": "pve3", "vmid": 105, "ostemplate": "local:vztmpl/debian-12.tar.zst",
             "storage": "ceph1", "cores": 2, "memory": 1024},
        ],
    }


def by_id(state):
    return {d.resource_id: d for d in state.resources}


class TestParseConfig:
    """Test conversion of a configuration document into descriptors."""

    def test_full_document(self):
        state = parse_config(base_config())
        resources = by_id(state)

        assert len(state.resources) == 9
        cluster = resources[ResourceId(ResourceKind.CLUSTER_CREATE, "pvecluster")]
        assert cluster.hosts == ["10.0.0.1"]
        assert cluster.attributes["link0"] == "10.0.0.1"

    def test_connection_context(self):
        context = parse_config(base_config()).context

        assert context.command_timeout == 90
        assert context.default_host == "10.0.0.1"
        assert context.host_for("pve3") == "10.0.0.3"
        assert not context.private_key_path.startswith("~")
        assert context.verify_host_keys is True

    def test_host_key_checks_disabled_explicitly(self):
        config = base_config()
        config["connection"]["verify_host_keys"] = False
        config["connection"]["known_hosts"] = "/etc/pvesync/known_hosts"

        context = parse_config(config).context

        assert context.verify_host_keys is False
        assert context.known_hosts == "/etc/pvesync/known_hosts"

    def test_joins_target_joining_node(self):
        join = by_id(parse_config(base_config()))[ResourceId(ResourceKind.CLUSTER_JOIN, "pve3")]

        assert join.hosts == ["10.0.0.3"]
        assert join.attributes["cluster_ip"] == "10.0.0.1"
        assert join.attributes["cluster_host"] == "10.0.0.1"

    def test_storage_kinds_and_hosts(self):
        resources = by_id(parse_config(base_config()))

        nfs = resources[ResourceId(ResourceKind.STORAGE_NFS, "nfs1")]
        ceph = resources[ResourceId(ResourceKind.STORAGE_CEPH, "ceph1")]
        assert nfs.hosts == ["10.0.0.1", "10.0.0.2"]
        assert "type" not in nfs.attributes
        assert ceph.hosts == ["10.0.0.1"]

    def test_backup_vms_are_strings(self):
        job = by_id(parse_config(base_config()))[ResourceId(ResourceKind.BACKUP_JOB, "daily")]

        assert job.attributes["vms"] == ["100", "101"]

    def test_disabled_resource_excluded(self):
        config = base_config()
        config["ha_groups"][0]["enabled"] = False

        resources = by_id(parse_config(config))

        assert ResourceId(ResourceKind.HA_GROUP, "critical") not in resources

    def test_force_run_changes_fingerprint(self):
        first = by_id(parse_config(base_config()))[ResourceId(ResourceKind.HA_GROUP, "critical")]
        config = base_config()
        config["ha_groups"][0]["force_run"] = "2024-06-01"
        second = by_id(parse_config(config))[ResourceId(ResourceKind.HA_GROUP, "critical")]

        assert compute_fingerprint(first) != compute_fingerprint(second)

    def test_empty_corosync_section_is_ignored(self):
        config = base_config()
        config["corosync"] = {}

        resources = by_id(parse_config(config))

        assert ResourceId(ResourceKind.COROSYNC_TUNE, "totem") not in resources


class TestValidation:
    """Test rejection of invalid documents."""

    def test_invalid_backup_mode(self):
        config = base_config()
        config["backup_jobs"][0]["mode"] = "hibernate"

        with pytest.raises(ConfigError):
            parse_config(config)

    def test_nfs_requires_server(self):
        config = base_config()
        del config["storages"][0]["server"]

        with pytest.raises(ConfigError) as exc_info:
            parse_config(config)

        assert "server" in str(exc_info.value)

    def test_unknown_field_rejected(self):
        config = base_config()
        config["ha_groups"][0]["colour"] = "blue"

        with pytest.raises(ConfigError):
            parse_config(config)

    def test_invalid_timeout(self):
        config = base_config()
        config["connection"]["command_timeout"] = "soon"

        with pytest.raises(ConfigError):
            parse_config(config)

    def test_duplicate_storage_ids(self):
        config = base_config()
        config["storages"].append(dict(config["storages"][0]))

        with pytest.raises(ConfigError):
            parse_config(config)

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            parse_config(["connection"])


class TestLoadConfig:
    """Test reading configuration files."""

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "cluster.yaml"
        path.write_text(yaml.safe_dump(base_config()))

        state = load_config(str(path))

        assert len(state.resources) == 9

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("connection: [unclosed\n")

        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "absent.yaml"))


class TestParseTime:
    """Test duration parsing."""

    @pytest.mark.parametrize("value,expected", [("15s", 15), ("10m", 600), ("1h", 3600), ("45", 45), (30, 30)])
    def test_valid(self, value, expected):
        assert parse_time(value) == expected

    @pytest.mark.parametrize("value", ["10x", "", "m", True, -5, 1.5])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_time(value)
