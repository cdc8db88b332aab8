"""
Proxmox CLI command lines built from resource attributes.

Flag names belong to the Proxmox tools and are passed through verbatim;
this module only assembles and quotes them.
"""

import shlex
from typing import Any, Dict, Iterable, List, Optional

from pvesync.resources.models import STORAGE_TYPE_TAGS, ResourceDescriptor, ResourceKind

# Read-only queries used by the prober
CLUSTER_STATUS_JSON = "pvesh get /cluster/status --output-format json"
CLUSTER_STATUS_TEXT = "pvecm status"
CLUSTER_NODES = "pvecm nodes"
HA_GROUP_CONFIG = "ha-manager groupconfig"
STORAGE_LIST_JSON = "pvesh get /storage --output-format json"
BACKUP_JOBS_JSON = "pvesh get /cluster/backup --output-format json"

# corosync totem keys managed by CorosyncTune, attribute name -> cmap key
COROSYNC_KEYS = {
    "token_timeout": "totem.token",
    "join_timeout": "totem.join",
    "consensus_timeout": "totem.consensus",
    "token_retransmits": "totem.token_retransmits_before_loss_const",
}


def _join(parts: Iterable[Any]) -> str:
    return " ".join(shlex.quote(str(p)) for p in parts)


def _csv(values: Iterable[Any]) -> str:
    return ",".join(str(v) for v in values)


def _flags(options: Dict[str, Any]) -> List[str]:
    """Render ``{"name": value}`` as ``--name value`` pairs, skipping None."""
    args: List[str] = []
    for name, value in options.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = int(value)
        elif isinstance(value, (list, tuple)):
            value = _csv(value)
        args.extend([f"--{name}", value])
    return args


def corosync_get(param: str) -> str:
    return _join(["corosync-cmapctl", "-g", COROSYNC_KEYS[param]])


def lxc_config(vmid: Any) -> str:
    return _join(["pct", "config", vmid])


def lxc_status(vmid: Any) -> str:
    return _join(["pct", "status", vmid])


def cluster_create(descriptor: ResourceDescriptor) -> str:
    attrs = descriptor.attributes
    return _join(["pvecm", "create", attrs.get("name", descriptor.key)] + _flags({
        "link0": attrs.get("link0"),
        "votes": attrs.get("votes"),
    }))


def cluster_join(descriptor: ResourceDescriptor) -> str:
    attrs = descriptor.attributes
    return _join(["pvecm", "add", attrs["cluster_ip"]] + _flags({
        "link0": attrs.get("link0"),
        "use_ssh": attrs.get("use_ssh", True),
    }))


def cluster_delnode(descriptor: ResourceDescriptor) -> str:
    return _join(["pvecm", "delnode", descriptor.attributes.get("node", descriptor.key)])


def ha_group_create(descriptor: ResourceDescriptor, exists: bool = False) -> str:
    attrs = descriptor.attributes
    verb = "groupset" if exists else "groupadd"
    return _join(["ha-manager", verb, descriptor.key] + _flags({
        "nodes": _csv(attrs.get("nodes", [])),
        "restricted": attrs.get("restricted"),
        "nofailback": attrs.get("nofailback"),
    }))


def ha_group_remove(descriptor: ResourceDescriptor) -> str:
    return _join(["ha-manager", "groupremove", descriptor.key])


def corosync_set(param: str, value: Any) -> str:
    return _join(["corosync-cmapctl", "-s", COROSYNC_KEYS[param], "u32", value])


def storage_add(descriptor: ResourceDescriptor) -> str:
    attrs = descriptor.attributes
    storage_type = STORAGE_TYPE_TAGS[descriptor.kind]
    options: Dict[str, Any]
    if descriptor.kind == ResourceKind.STORAGE_NFS:
        mount_options = attrs.get("options") or {}
        options = {
            "server": attrs["server"],
            "export": attrs["export"],
            "content": attrs.get("content") or ["backup", "iso"],
            "options": _csv(f"{k}={v}" for k, v in sorted(mount_options.items())) or None,
        }
    elif descriptor.kind == ResourceKind.STORAGE_ISCSI:
        options = {
            "portal": attrs["portal"],
            "target": attrs["target"],
            "content": attrs.get("content") or ["none"],
        }
    else:
        options = {
            "pool": attrs["pool"],
            "monhost": " ".join(attrs.get("monhost", [])) or None,
            "username": attrs.get("username"),
            "content": attrs.get("content") or ["images", "rootdir"],
            "krbd": attrs.get("krbd"),
        }
    options["nodes"] = _csv(attrs.get("nodes", [])) or None
    return _join(["pvesm", "add", storage_type, descriptor.key] + _flags(options))


def storage_remove(descriptor: ResourceDescriptor) -> str:
    return _join(["pvesm", "remove", descriptor.key])


def _backup_job_options(descriptor: ResourceDescriptor) -> Dict[str, Any]:
    attrs = descriptor.attributes
    maxfiles = attrs.get("maxfiles")
    return {
        "vmid": _csv(attrs.get("vms", [])),
        "storage": attrs["storage"],
        "schedule": attrs["schedule"],
        "mode": attrs.get("mode", "snapshot"),
        "prune-backups": f"keep-last={maxfiles}" if maxfiles is not None else None,
        "compress": attrs.get("compress"),
        "mailto": attrs.get("mailto"),
        "enabled": True,
    }


def backup_job_create(descriptor: ResourceDescriptor) -> str:
    return _join(["pvesh", "create", "/cluster/backup"] + _flags(
        {"id": descriptor.key, **_backup_job_options(descriptor)}
    ))


def backup_job_update(descriptor: ResourceDescriptor) -> str:
    return _join(["pvesh", "set", f"/cluster/backup/{descriptor.key}"] + _flags(_backup_job_options(descriptor)))


def backup_job_remove(descriptor: ResourceDescriptor) -> str:
    return _join(["pvesh", "delete", f"/cluster/backup/{descriptor.key}"])


def lxc_create(descriptor: ResourceDescriptor) -> str:
    attrs = descriptor.attributes
    rootfs: Optional[str] = None
    if attrs.get("storage"):
        rootfs = f"{attrs['storage']}:{attrs.get('rootfs_size', 8)}"
    return _join(["pct", "create", attrs["vmid"], attrs["ostemplate"]] + _flags({
        "hostname": descriptor.key,
        "cores": attrs.get("cores"),
        "memory": attrs.get("memory"),
        "rootfs": rootfs,
        "net0": attrs.get("net0"),
        "start": attrs.get("start", False),
        "unprivileged": attrs.get("unprivileged", True),
    }))


def lxc_destroy(descriptor: ResourceDescriptor) -> str:
    return _join(["pct", "destroy", descriptor.attributes["vmid"], "--purge", "1", "--force", "1"])


def lxc_start(descriptor: ResourceDescriptor) -> str:
    return _join(["pct", "start", descriptor.attributes["vmid"]])
