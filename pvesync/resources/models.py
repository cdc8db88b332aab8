"""
Resource models (Pydantic) for the reconciliation engine.

Defines the declared resource descriptor, the observed remote state, the
fingerprint used for change detection and the per-resource reconcile result.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pvesync.errors import ErrorKind


class ResourceKind(str, Enum):
    """Kinds of Proxmox configuration managed by the engine."""
    CLUSTER_CREATE = "ClusterCreate"
    CLUSTER_JOIN = "ClusterJoin"
    HA_GROUP = "HAGroup"
    COROSYNC_TUNE = "CorosyncTune"
    STORAGE_NFS = "StorageNFS"
    STORAGE_ISCSI = "StorageISCSI"
    STORAGE_CEPH = "StorageCeph"
    BACKUP_JOB = "BackupJob"
    LXC = "LXC"


STORAGE_KINDS = frozenset({
    ResourceKind.STORAGE_NFS,
    ResourceKind.STORAGE_ISCSI,
    ResourceKind.STORAGE_CEPH,
})

# Storage type tag reported by `pvesh get /storage` for each storage kind
STORAGE_TYPE_TAGS = {
    ResourceKind.STORAGE_NFS: "nfs",
    ResourceKind.STORAGE_ISCSI: "iscsi",
    ResourceKind.STORAGE_CEPH: "rbd",
}


class Outcome(str, Enum):
    """Result of a single reconciliation attempt."""
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


class StateStatus(str, Enum):
    """Remote state classification produced by the prober."""
    ABSENT = "absent"
    PRESENT = "present"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ResourceId:
    """Identity of a resource: stable across reconciliation runs."""

    kind: ResourceKind
    key: str

    def __str__(self) -> str:
        return f"{self.kind.value}/{self.key}"


class ResourceDescriptor(BaseModel):
    """A declared resource: kind, identity key, desired attributes, target hosts."""
    model_config = ConfigDict(frozen=True)

    kind: ResourceKind = Field(description="Resource kind")
    key: str = Field(min_length=1, description="Identity key, unique within kind")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Kind-specific desired attributes")
    hosts: List[str] = Field(default_factory=list, description="Target hosts in execution order")

    @property
    def resource_id(self) -> ResourceId:
        return ResourceId(self.kind, self.key)

    @property
    def primary_host(self) -> str:
        """First target host; probes and single-host commands run here."""
        if not self.hosts:
            raise ValueError(f"Resource {self.resource_id} has no target hosts")
        return self.hosts[0]


def compute_fingerprint(
    descriptor: ResourceDescriptor,
    connection: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Compute SHA256 fingerprint of a descriptor's desired configuration.

    Args:
        descriptor: Resource descriptor
        connection: Non-secret connection parameters (user, port)

    Returns:
        Hex digest, stable for equal inputs
    """
    normalized = {
        "kind": descriptor.kind.value,
        "key": descriptor.key,
        "attributes": descriptor.attributes,
        "hosts": descriptor.hosts,
        "connection": connection or {},
    }
    json_str = json.dumps(normalized, sort_keys=True, separators=(',', ':'), default=str)
    return hashlib.sha256(json_str.encode()).hexdigest()


class RemoteState(BaseModel):
    """
    Observed remote state of a resource.

    Tagged by ``status``: ABSENT, PRESENT (with ``matching`` and ``details``)
    or UNKNOWN (with ``reason``). UNKNOWN is never to be read as ABSENT.
    """
    model_config = ConfigDict(frozen=True)

    status: StateStatus
    matching: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None

    @classmethod
    def absent(cls) -> "RemoteState":
        return cls(status=StateStatus.ABSENT)

    @classmethod
    def present(cls, matching: bool, **details: Any) -> "RemoteState":
        return cls(status=StateStatus.PRESENT, matching=matching, details=details)

    @classmethod
    def unknown(cls, reason: str) -> "RemoteState":
        return cls(status=StateStatus.UNKNOWN, reason=reason)

    @property
    def is_absent(self) -> bool:
        return self.status == StateStatus.ABSENT

    @property
    def is_unknown(self) -> bool:
        return self.status == StateStatus.UNKNOWN

    @property
    def is_matching(self) -> bool:
        return self.status == StateStatus.PRESENT and self.matching

    @property
    def is_conflicting(self) -> bool:
        return self.status == StateStatus.PRESENT and not self.matching

    @property
    def label(self) -> str:
        """Short label persisted in reconciliation records."""
        if self.is_conflicting:
            return "conflicting"
        return self.status.value


class HostResult(BaseModel):
    """Outcome of one command sequence on one target host."""
    host: str
    ok: bool
    already_present: bool = False
    exit_code: Optional[int] = None
    stderr: str = ""
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None


class ReconcileResult(BaseModel):
    """Result of reconciling (or destroying) a single resource."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    resource_id: ResourceId
    outcome: Outcome
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    stderr: str = ""
    state: Optional[RemoteState] = None
    host_results: List[HostResult] = Field(default_factory=list)
    mutated: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def failed(self) -> bool:
        return self.outcome == Outcome.FAILED

    @property
    def terminal_ok(self) -> bool:
        """Whether dependents may proceed after this result."""
        return self.outcome in (Outcome.SUCCEEDED, Outcome.SKIPPED)


class ReconciliationRecord(BaseModel):
    """Persisted last-applied state of a resource, held by the fingerprint store."""
    kind: ResourceKind
    key: str
    fingerprint: Optional[str] = None
    last_state: str = StateStatus.UNKNOWN.value
    last_outcome: Outcome
    descriptor: Optional[ResourceDescriptor] = None
    # Set once pvesync has converged or modified the resource; only owned
    # resources are ever destroyed
    owned: bool = False
    updated_at: Optional[datetime] = None

    @property
    def resource_id(self) -> ResourceId:
        return ResourceId(self.kind, self.key)

    @property
    def needs_retry(self) -> bool:
        """Last attempt failed or left state unverified."""
        return (
            self.last_outcome in (Outcome.FAILED, Outcome.NOT_ATTEMPTED)
            or self.last_state == StateStatus.UNKNOWN.value
        )
