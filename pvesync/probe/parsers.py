"""
Parsers for Proxmox CLI output.

This is the only module coupled to the human- and machine-oriented output
formats of pvesh, pvecm, ha-manager, corosync-cmapctl and pct. Every parser
returns a RemoteState and answers UNKNOWN rather than guessing when output
does not look like anything it recognizes.
"""

import json
import re
from typing import Any, Dict, Iterable, List, Optional

from pvesync.resources.models import RemoteState

CLUSTER_INDICATORS = ("Cluster information", "Cluster name")
CLUSTER_NAME_RE = re.compile(r"Cluster name\s*:\s*(\S+)", re.IGNORECASE)

# Emitted by pvecm and pvesh on a standalone node
NOT_IN_CLUSTER_SIGNATURES = (
    "does not exist - is this node part of a cluster",
    "not part of a cluster",
    "no cluster configuration",
    "cannot initialize cmap service",
)

NODE_ROW_RE = re.compile(r"^\s*\d+\s+\d+\s+(\S+?)(?:\s+\(local\))?\s*$")
HA_GROUP_RE = re.compile(r"^group:\s*(\S+)\s*$")
CMAP_VALUE_RE = re.compile(r"^\S+\s+\([^)]*\)\s*=\s*(\S+)\s*$")
PCT_DOES_NOT_EXIST = re.compile(r"does not exist|no such file", re.IGNORECASE)
PCT_STATUS_RE = re.compile(r"^status:\s*(\w+)", re.MULTILINE)
SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)([KMGT])?$", re.IGNORECASE)
SIZE_UNITS = {"K": 1 / 1024, "M": 1, "G": 1024, "T": 1024 * 1024}


def _matches_any(text: str, signatures) -> bool:
    lowered = text.lower()
    return any(sig.lower() in lowered for sig in signatures)


def _load_json(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def parse_cluster_status_json(stdout: str, desired_name: str) -> RemoteState:
    """
    Classify ``pvesh get /cluster/status --output-format json``.

    Proxmox returns either an array of typed entries
    (``[{"type": "cluster", "name": ...}, {"type": "node", ...}]``) or,
    on some releases, a single object carrying ``name``/``quorate``.
    An array with only node entries means a standalone node.
    """
    data = _load_json(stdout)
    if data is None:
        return RemoteState.unknown("cluster status is not valid JSON")

    if isinstance(data, list):
        cluster = next(
            (e for e in data if isinstance(e, dict) and e.get("type") == "cluster"), None
        )
        if cluster is not None:
            nodes = [e.get("name") for e in data if isinstance(e, dict) and e.get("type") == "node"]
            name = cluster.get("name")
            return RemoteState.present(
                matching=name == desired_name,
                cluster_name=name,
                quorate=bool(cluster.get("quorate")),
                nodes=nodes,
            )
        if all(isinstance(e, dict) and e.get("type") == "node" for e in data):
            return RemoteState.absent()
        return RemoteState.unknown("unrecognized cluster status entries")

    if isinstance(data, dict) and ("name" in data or "quorate" in data):
        name = data.get("name")
        return RemoteState.present(
            matching=name == desired_name,
            cluster_name=name,
            quorate=bool(data.get("quorate")),
        )

    return RemoteState.unknown("unrecognized cluster status shape")


def parse_pvecm_status(exit_code: int, output: str, desired_name: str) -> RemoteState:
    """Classify ``pvecm status`` text output."""
    if any(ind in output for ind in CLUSTER_INDICATORS):
        match = CLUSTER_NAME_RE.search(output)
        name = match.group(1) if match else None
        return RemoteState.present(matching=name == desired_name, cluster_name=name)

    if _matches_any(output, NOT_IN_CLUSTER_SIGNATURES):
        return RemoteState.absent()

    if exit_code == 0:
        # Clean exit without any cluster indicator
        return RemoteState.absent()

    return RemoteState.unknown(f"pvecm status exited {exit_code}: {output.strip()[:200]}")


def parse_pvecm_nodes(exit_code: int, output: str, node: str) -> RemoteState:
    """Classify ``pvecm nodes``: present if ``node`` is listed as a member."""
    if exit_code != 0:
        if _matches_any(output, NOT_IN_CLUSTER_SIGNATURES):
            return RemoteState.absent()
        return RemoteState.unknown(f"pvecm nodes exited {exit_code}: {output.strip()[:200]}")

    members: List[str] = []
    for line in output.splitlines():
        match = NODE_ROW_RE.match(line)
        if match:
            members.append(match.group(1))

    if not members:
        if "Membership information" in output:
            return RemoteState.absent()
        return RemoteState.unknown("no member table in pvecm nodes output")

    if node in members:
        return RemoteState.present(matching=True, members=members)
    return RemoteState.absent()


def parse_ha_groups(output: str) -> Dict[str, Dict[str, Any]]:
    """
    Parse ``ha-manager groupconfig`` into ``{group: {option: value}}``.

    The format mirrors /etc/pve/ha/groups.cfg: a ``group: <name>`` header
    followed by indented ``key value`` lines.
    """
    groups: Dict[str, Dict[str, Any]] = {}
    current: Optional[Dict[str, Any]] = None
    for raw in output.splitlines():
        line = raw.rstrip()
        if not line.strip():
            current = None
            continue
        header = HA_GROUP_RE.match(line)
        if header:
            current = groups.setdefault(header.group(1), {})
            continue
        if current is not None and raw[:1].isspace():
            parts = line.split(None, 1)
            current[parts[0]] = parts[1] if len(parts) > 1 else ""
    return groups


def _ha_node_priorities(nodes: Iterable[Any]) -> Dict[str, Optional[str]]:
    # members are written as node or node:prio
    members: Dict[str, Optional[str]] = {}
    for item in nodes:
        name, _, prio = str(item).strip().partition(":")
        if name:
            members[name] = prio or None
    return members


def parse_ha_group_state(exit_code: int, output: str, group: str, attributes: Dict[str, Any]) -> RemoteState:
    """Classify one HA group against its desired nodes and options."""
    if exit_code != 0:
        return RemoteState.unknown(f"ha-manager groupconfig exited {exit_code}: {output.strip()[:200]}")

    groups = parse_ha_groups(output)
    if output.strip() and not groups:
        return RemoteState.unknown("unparseable ha-manager groupconfig output")
    if group not in groups:
        return RemoteState.absent()

    observed = groups[group]
    matching = (
        _ha_node_priorities(observed.get("nodes", "").split(","))
        == _ha_node_priorities(attributes.get("nodes", []))
    )
    for flag in ("restricted", "nofailback"):
        if flag in attributes:
            matching = matching and int(observed.get(flag, 0) or 0) == int(bool(attributes[flag]))
    return RemoteState.present(matching=matching, observed=observed)


def parse_cmap_value(exit_code: int, output: str) -> Optional[str]:
    """Extract the value from ``corosync-cmapctl -g`` output, None if unset."""
    if exit_code != 0:
        return None
    for line in output.splitlines():
        match = CMAP_VALUE_RE.match(line.strip())
        if match:
            return match.group(1)
    return None


def parse_storage_state(stdout: str, key: str, type_tag: str) -> RemoteState:
    """Classify ``pvesh get /storage --output-format json`` for one storage id."""
    data = _load_json(stdout)
    if not isinstance(data, list):
        return RemoteState.unknown("storage listing is not a JSON array")

    for entry in data:
        if isinstance(entry, dict) and entry.get("storage") == key:
            observed_type = entry.get("type")
            return RemoteState.present(matching=observed_type == type_tag, type=observed_type)
    return RemoteState.absent()


def _keep_last(entry: Dict[str, Any]) -> Optional[str]:
    # prune-backups comes back as a dict or as "keep-last=3,keep-daily=7"
    prune = entry.get("prune-backups")
    if isinstance(prune, str):
        prune = _kv_pairs(prune)
    if isinstance(prune, dict) and prune.get("keep-last") is not None:
        return str(prune["keep-last"])
    if entry.get("maxfiles") is not None:
        return str(entry["maxfiles"])
    return None


def parse_backup_job_state(stdout: str, job_id: str, attributes: Dict[str, Any]) -> RemoteState:
    """Classify ``pvesh get /cluster/backup --output-format json`` for one job."""
    data = _load_json(stdout)
    if not isinstance(data, list):
        return RemoteState.unknown("backup job listing is not a JSON array")

    for entry in data:
        if isinstance(entry, dict) and entry.get("id") == job_id:
            observed_vms = {v for v in str(entry.get("vmid", "")).split(",") if v}
            matching = (
                entry.get("storage") == attributes.get("storage")
                and entry.get("schedule") == attributes.get("schedule")
                and entry.get("mode", "snapshot") == attributes.get("mode", "snapshot")
                and observed_vms == {str(v) for v in attributes.get("vms", [])}
                and str(entry.get("enabled", 1)) == "1"
            )
            if attributes.get("maxfiles") is not None:
                matching = matching and _keep_last(entry) == str(attributes["maxfiles"])
            for attr in ("compress", "mailto"):
                if attributes.get(attr) is not None:
                    matching = matching and str(entry.get(attr, "")) == str(attributes[attr])
            return RemoteState.present(matching=matching, observed=entry)
    return RemoteState.absent()


def _kv_pairs(value: str) -> Dict[str, str]:
    return dict(p.strip().split("=", 1) for p in value.split(",") if "=" in p)


def _size_in_mib(value: Any) -> Optional[int]:
    # pct sizes are GiB when unsuffixed
    match = SIZE_RE.match(str(value).strip())
    if not match:
        return None
    number, unit = match.groups()
    return int(float(number) * SIZE_UNITS[(unit or "G").upper()])


def _rootfs_matches(observed: str, attributes: Dict[str, Any]) -> bool:
    # e.g. local-lvm:vm-100-disk-0,size=8G
    volume, _, options = observed.partition(",")
    if volume.split(":", 1)[0] != attributes["storage"]:
        return False
    size = _kv_pairs(options).get("size")
    return size is not None and _size_in_mib(size) == _size_in_mib(attributes.get("rootfs_size", 8))


def parse_pct_config(exit_code: int, output: str, hostname: str, attributes: Dict[str, Any]) -> RemoteState:
    """Classify ``pct config <vmid>`` against the desired container."""
    if exit_code != 0:
        if PCT_DOES_NOT_EXIST.search(output):
            return RemoteState.absent()
        return RemoteState.unknown(f"pct config exited {exit_code}: {output.strip()[:200]}")

    config: Dict[str, str] = {}
    for line in output.splitlines():
        if ":" in line:
            name, value = line.split(":", 1)
            config[name.strip()] = value.strip()
    if not config:
        return RemoteState.unknown("empty pct config output")

    matching = config.get("hostname") == hostname
    for attr in ("cores", "memory"):
        if attributes.get(attr) is not None:
            matching = matching and config.get(attr) == str(attributes[attr])
    if attributes.get("storage"):
        matching = matching and _rootfs_matches(config.get("rootfs", ""), attributes)
    if attributes.get("net0"):
        # pct adds hwaddr and type, so the declared pairs need only be a subset
        wanted = _kv_pairs(attributes["net0"]).items()
        matching = matching and wanted <= _kv_pairs(config.get("net0", "")).items()
    return RemoteState.present(matching=matching, observed=config)


def parse_pct_status(exit_code: int, output: str) -> Optional[bool]:
    """Whether ``pct status <vmid>`` reports the container running, None if unclear."""
    if exit_code != 0:
        return None
    match = PCT_STATUS_RE.search(output)
    if not match:
        return None
    return match.group(1) == "running"


def cmap_key_missing(output: str) -> bool:
    """Whether ``corosync-cmapctl -g`` failed only because the key is unset."""
    return _matches_any(output, ("CS_ERR_NOT_EXIST", "does not exist"))
