import pytest
from click.testing import CliRunner

from pvesync.database.store import FingerprintStore
from pvesync.ssh.client import ConnectionContext

from helpers import FakeExecutor


@pytest.fixture
def context():
    return ConnectionContext(
        user="root",
        port=22,
        private_key_path="/root/.ssh/id_ed25519",
        connect_timeout=5,
        command_timeout=30,
        default_host="10.0.0.1",
        node_hosts={"pve1": "10.0.0.1", "pve2": "10.0.0.2", "pve3": "10.0.0.3"},
    )


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def store(tmp_path):
    state = FingerprintStore(str(tmp_path / "state.db"))
    yield state
    state.close()


@pytest.fixture
def cli_runner():
    return CliRunner()
