"""
Scripted stand-ins for remote Proxmox nodes used across the test suite.
"""

import json
from typing import List, Optional, Tuple

from pvesync.ssh.client import SSHCommandResult

READ_ONLY_PREFIXES = (
    "pvesh get",
    "pvecm status",
    "pvecm nodes",
    "ha-manager groupconfig",
    "corosync-cmapctl -g",
    "pct config",
    "pct status",
)

STANDALONE_STATUS_JSON = json.dumps([{"type": "node", "name": "pve1", "online": 1, "local": 1}])

PVECM_NOT_IN_CLUSTER = (
    "Error: Corosync config '/etc/pve/corosync.conf' does not exist - "
    "is this node part of a cluster?"
)


def cluster_status_json(name: str, nodes=("pve1",)) -> str:
    entries = [{"type": "cluster", "id": "cluster", "name": name, "quorate": 1, "nodes": len(nodes)}]
    entries += [{"type": "node", "name": n, "online": 1} for n in nodes]
    return json.dumps(entries)


def pvecm_nodes_output(*members: str) -> str:
    lines = ["", "Membership information", "----------------------", "    Nodeid      Votes Name"]
    for index, member in enumerate(members, start=1):
        suffix = " (local)" if index == 1 else ""
        lines.append(f"         {index}          1 {member}{suffix}")
    return "\n".join(lines) + "\n"


def ha_groupconfig_output(groups: dict) -> str:
    blocks = []
    for name, options in groups.items():
        lines = [f"group: {name}"]
        lines += [f"\t{key} {value}" for key, value in options.items()]
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def storage_list_json(*entries: Tuple[str, str]) -> str:
    return json.dumps([{"storage": sid, "type": stype, "content": "images"} for sid, stype in entries])


def make_result(command: str = "", host: str = "10.0.0.1", exit_code: int = 0,
                stdout: str = "", stderr: str = "") -> SSHCommandResult:
    return SSHCommandResult(
        command=command,
        host=host,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        execution_time=0.01,
    )


class FakeExecutor:
    """
    Executor double answering commands from substring rules.

    Later rules win, so a test can change what a node reports between
    passes. Unmatched commands succeed with empty output.
    """

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self._rules = []

    def on(self, fragment: str, *, exit_code: int = 0, stdout: str = "", stderr: str = "",
           host: Optional[str] = None, raises: Optional[Exception] = None) -> "FakeExecutor":
        self._rules.append((fragment, host, exit_code, stdout, stderr, raises))
        return self

    async def execute(self, host, context, command, timeout=None):
        self.calls.append((host, command))
        for fragment, rule_host, exit_code, stdout, stderr, raises in reversed(self._rules):
            if fragment in command and (rule_host is None or rule_host == host):
                if raises is not None:
                    raise raises
                return make_result(command, host, exit_code, stdout, stderr)
        return make_result(command, host)

    async def close(self):
        pass

    @property
    def mutations(self) -> List[Tuple[str, str]]:
        return [(h, c) for h, c in self.calls if not c.startswith(READ_ONLY_PREFIXES)]

    def reset_calls(self) -> None:
        self.calls.clear()
