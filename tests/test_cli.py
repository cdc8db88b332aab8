"""
Tests for the pvesync command line.
"""

import pytest
import yaml
from unittest.mock import patch

from pvesync.cli.main import app

from helpers import PVECM_NOT_IN_CLUSTER, STANDALONE_STATUS_JSON, FakeExecutor


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text(yaml.safe_dump({
        "connection": {"host": "10.0.0.1", "nodes": {"pve1": "10.0.0.1", "pve2": "10.0.0.2"}},
        "cluster": {"create": {"name": "c1", "primary_node": "pve1"}, "joins": [{"node": "pve2"}]},
    }))
    return str(path)


@pytest.fixture
def state_path(tmp_path):
    return str(tmp_path / "state.db")


@pytest.fixture
def fake_cluster():
    executor = FakeExecutor()
    executor.on("pvesh get /cluster/status", stdout=STANDALONE_STATUS_JSON)
    executor.on("pvecm nodes", exit_code=2, stderr=PVECM_NOT_IN_CLUSTER)
    return executor


def run(cli_runner, state_path, *args):
    return cli_runner.invoke(app, ["--state", state_path, *args])


class TestRunCommands:
    """Test apply, plan and destroy."""

    def test_plan_lists_creations(self, cli_runner, state_path, config_file):
        result = run(cli_runner, state_path, "plan", config_file)

        assert result.exit_code == 0
        assert "ClusterCreate/c1" in result.output
        assert "create" in result.output

    def test_apply_success(self, cli_runner, state_path, config_file, fake_cluster):
        with patch("pvesync.cli.run.SSHExecutor", return_value=fake_cluster):
            result = run(cli_runner, state_path, "apply", config_file)

        assert result.exit_code == 0
        assert "Pass completed successfully" in result.output
        assert ("10.0.0.1", "pvecm create c1") in fake_cluster.mutations

    def test_apply_failure_exits_2(self, cli_runner, state_path, config_file, fake_cluster):
        fake_cluster.on("pvecm create", exit_code=1, stderr="corosync link invalid")

        with patch("pvesync.cli.run.SSHExecutor", return_value=fake_cluster):
            result = run(cli_runner, state_path, "apply", config_file)

        assert result.exit_code == 2
        assert "ClusterCreate/c1" in result.output
        assert "CommandError" in result.output

    def test_apply_json_report(self, cli_runner, state_path, config_file, fake_cluster):
        with patch("pvesync.cli.run.SSHExecutor", return_value=fake_cluster):
            result = run(cli_runner, state_path, "apply", config_file, "--json")

        assert result.exit_code == 0
        assert '"applied": 2' in result.output
        assert '"success": true' in result.output

    def test_destroy_after_apply(self, cli_runner, state_path, config_file, fake_cluster):
        with patch("pvesync.cli.run.SSHExecutor", return_value=fake_cluster):
            run(cli_runner, state_path, "apply", config_file)
            result = run(cli_runner, state_path, "destroy", config_file)

        assert result.exit_code == 0
        listing = run(cli_runner, state_path, "state", "list")
        assert "No managed resources recorded" in listing.output

    def test_invalid_config_exits_1(self, cli_runner, state_path, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"connection": {"user": "root"}}))

        result = run(cli_runner, state_path, "apply", str(path))

        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestStateCommands:
    """Test state inspection."""

    def test_list_empty(self, cli_runner, state_path):
        result = run(cli_runner, state_path, "state", "list")

        assert result.exit_code == 0
        assert "No managed resources recorded" in result.output

    def test_list_json_after_apply(self, cli_runner, state_path, config_file, fake_cluster):
        with patch("pvesync.cli.run.SSHExecutor", return_value=fake_cluster):
            run(cli_runner, state_path, "apply", config_file)

        result = run(cli_runner, state_path, "state", "list", "--json")

        assert result.exit_code == 0
        assert '"kind": "ClusterCreate"' in result.output
        assert '"last_outcome": "succeeded"' in result.output
        assert '"owned": true' in result.output

    def test_forget(self, cli_runner, state_path, config_file, fake_cluster):
        with patch("pvesync.cli.run.SSHExecutor", return_value=fake_cluster):
            run(cli_runner, state_path, "apply", config_file)

        result = run(cli_runner, state_path, "state", "forget", "ClusterJoin", "pve2")

        assert result.exit_code == 0
        listing = run(cli_runner, state_path, "state", "list", "--json")
        assert '"ClusterJoin"' not in listing.output

    def test_forget_missing(self, cli_runner, state_path):
        result = run(cli_runner, state_path, "state", "forget", "LXC", "web1")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_forget_rejects_unknown_kind(self, cli_runner, state_path):
        result = run(cli_runner, state_path, "state", "forget", "VM", "100")

        assert result.exit_code == 2
