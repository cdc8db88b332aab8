"""
Declarative configuration loader.

Reads a YAML document, validates it with pydantic and turns it into the
connection context plus the list of resource descriptors for one pass.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from pvesync.config import settings
from pvesync.errors import ConfigError
from pvesync.resources.models import ResourceDescriptor, ResourceKind
from pvesync.ssh.client import ConnectionContext
from pvesync.utils.logging import redact
from pvesync.utils.timeparse import parse_time

logger = logging.getLogger(__name__)


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ManagedSchema(_Strict):
    """Fields shared by every declared resource."""
    enabled: bool = Field(default=True, description="Disabled resources are left out of the desired set")
    force_run: Optional[str] = Field(default=None, description="Change this token to force reconciliation")


class ConnectionSchema(_Strict):
    host: str = Field(..., description="Address of the node used for cluster-wide commands")
    user: str = "root"
    port: int = Field(default=22, ge=1, le=65535)
    private_key_path: Optional[str] = None
    password: Optional[str] = None
    known_hosts: Optional[str] = None
    verify_host_keys: bool = Field(default=settings.VERIFY_HOST_KEYS, description="Set false to skip host key checks")
    connect_timeout: int = settings.CONNECT_TIMEOUT
    command_timeout: int = settings.COMMAND_TIMEOUT
    nodes: Dict[str, str] = Field(default_factory=dict, description="Proxmox node name -> SSH address")

    @field_validator("connect_timeout", "command_timeout", mode="before")
    @classmethod
    def _parse_duration(cls, value: Union[str, int]) -> int:
        return parse_time(value)


class ClusterCreateSchema(ManagedSchema):
    name: str
    primary_node: Optional[str] = None
    link0: Optional[str] = None
    votes: Optional[int] = None


class ClusterJoinSchema(ManagedSchema):
    node: str
    cluster_ip: Optional[str] = None
    link0: Optional[str] = None


class ClusterSchema(_Strict):
    create: Optional[ClusterCreateSchema] = None
    joins: List[ClusterJoinSchema] = Field(default_factory=list)


class HAGroupSchema(ManagedSchema):
    name: str
    nodes: List[str] = Field(..., min_length=1)
    restricted: Optional[bool] = None
    nofailback: Optional[bool] = None


class CorosyncSchema(ManagedSchema):
    token_timeout: Optional[int] = Field(default=None, ge=1)
    join_timeout: Optional[int] = Field(default=None, ge=1)
    consensus_timeout: Optional[int] = Field(default=None, ge=1)
    token_retransmits: Optional[int] = Field(default=None, ge=1)


class StorageSchema(ManagedSchema):
    id: str
    type: Literal["nfs", "iscsi", "rbd", "ceph"]
    nodes: List[str] = Field(default_factory=list)
    content: Optional[List[str]] = None
    # nfs
    server: Optional[str] = None
    export: Optional[str] = None
    options: Optional[Dict[str, Any]] = None
    # iscsi
    portal: Optional[str] = None
    target: Optional[str] = None
    # rbd
    pool: Optional[str] = None
    monhost: Optional[List[str]] = None
    username: Optional[str] = None
    krbd: Optional[bool] = None

    @model_validator(mode="after")
    def _check_type_fields(self) -> "StorageSchema":
        required = {
            "nfs": ("server", "export"),
            "iscsi": ("portal", "target"),
            "rbd": ("pool",),
            "ceph": ("pool",),
        }[self.type]
        missing = [name for name in required if getattr(self, name) is None]
        if missing:
            raise ValueError(f"{self.type} storage '{self.id}' requires: {', '.join(missing)}")
        return self


class BackupJobSchema(ManagedSchema):
    id: str
    vms: List[Union[int, str]] = Field(..., min_length=1)
    storage: str
    schedule: str
    mode: Literal["snapshot", "stop", "suspend"] = "snapshot"
    maxfiles: Optional[int] = Field(default=None, ge=1)
    compress: Optional[Literal["0", "1", "gzip", "lzo", "zstd"]] = None
    mailto: Optional[str] = None


class ContainerSchema(ManagedSchema):
    hostname: str
    node: str
    vmid: int = Field(..., ge=100)
    ostemplate: str
    storage: Optional[str] = None
    rootfs_size: int = Field(default=8, ge=1)
    cores: Optional[int] = Field(default=None, ge=1)
    memory: Optional[int] = Field(default=None, ge=16)
    net0: Optional[str] = None
    start: bool = False


class DesiredStateSchema(_Strict):
    connection: ConnectionSchema
    cluster: ClusterSchema = Field(default_factory=ClusterSchema)
    ha_groups: List[HAGroupSchema] = Field(default_factory=list)
    corosync: Optional[CorosyncSchema] = None
    storages: List[StorageSchema] = Field(default_factory=list)
    backup_jobs: List[BackupJobSchema] = Field(default_factory=list)
    containers: List[ContainerSchema] = Field(default_factory=list)


STORAGE_KIND_BY_TYPE = {
    "nfs": ResourceKind.STORAGE_NFS,
    "iscsi": ResourceKind.STORAGE_ISCSI,
    "rbd": ResourceKind.STORAGE_CEPH,
    "ceph": ResourceKind.STORAGE_CEPH,
}


@dataclass
class DesiredState:
    """Connection context and declared resources for one pass."""
    context: ConnectionContext
    resources: List[ResourceDescriptor] = field(default_factory=list)


def _attributes(item: ManagedSchema, exclude: set) -> Dict[str, Any]:
    return item.model_dump(exclude=exclude | {"enabled"}, exclude_none=True)


def build_context(conn: ConnectionSchema) -> ConnectionContext:
    key_path = os.path.expanduser(conn.private_key_path) if conn.private_key_path else None
    redact(conn.private_key_path, key_path, conn.password)
    return ConnectionContext(
        user=conn.user,
        port=conn.port,
        private_key_path=key_path,
        password=conn.password,
        connect_timeout=conn.connect_timeout,
        command_timeout=conn.command_timeout,
        known_hosts=conn.known_hosts or settings.KNOWN_HOSTS,
        verify_host_keys=conn.verify_host_keys,
        default_host=conn.host,
        node_hosts=dict(conn.nodes),
    )


def build_resources(schema: DesiredStateSchema, context: ConnectionContext) -> List[ResourceDescriptor]:
    """Expand the validated document into resource descriptors, dropping disabled ones."""
    conn_host = schema.connection.host
    resources: List[ResourceDescriptor] = []

    def add(item: ManagedSchema, kind: ResourceKind, key: str, attributes: Dict[str, Any], hosts: List[str]):
        if not item.enabled:
            logger.info(f"{kind.value}/{key} is disabled; excluded from desired state")
            return
        resources.append(ResourceDescriptor(kind=kind, key=key, attributes=attributes, hosts=hosts))

    create = schema.cluster.create
    cluster_host = conn_host
    if create is not None:
        if create.primary_node:
            cluster_host = context.host_for(create.primary_node)
        add(create, ResourceKind.CLUSTER_CREATE, create.name,
            _attributes(create, set()), [cluster_host])

    for join in schema.cluster.joins:
        attributes = _attributes(join, set())
        attributes.setdefault("cluster_ip", cluster_host)
        attributes["cluster_host"] = cluster_host
        add(join, ResourceKind.CLUSTER_JOIN, join.node, attributes, [context.host_for(join.node)])

    for group in schema.ha_groups:
        add(group, ResourceKind.HA_GROUP, group.name, _attributes(group, {"name"}), [conn_host])

    corosync = schema.corosync
    if corosync is not None:
        attributes = _attributes(corosync, set())
        if any(k != "force_run" for k in attributes):
            add(corosync, ResourceKind.COROSYNC_TUNE, "totem", attributes, [conn_host])

    for storage in schema.storages:
        hosts = [context.host_for(node) for node in storage.nodes] or [conn_host]
        add(storage, STORAGE_KIND_BY_TYPE[storage.type], storage.id,
            _attributes(storage, {"id", "type"}), hosts)

    for job in schema.backup_jobs:
        attributes = _attributes(job, {"id"})
        attributes["vms"] = [str(v) for v in job.vms]
        add(job, ResourceKind.BACKUP_JOB, job.id, attributes, [conn_host])

    for container in schema.containers:
        add(container, ResourceKind.LXC, container.hostname,
            _attributes(container, {"hostname"}), [context.host_for(container.node)])

    seen = set()
    for descriptor in resources:
        if descriptor.resource_id in seen:
            raise ConfigError(f"Duplicate resource {descriptor.resource_id}")
        seen.add(descriptor.resource_id)

    return resources


def parse_config(data: Any) -> DesiredState:
    """
    Validate a parsed configuration document.

    Raises:
        ConfigError: If the document is not valid
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")
    try:
        schema = DesiredStateSchema.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    context = build_context(schema.connection)
    return DesiredState(context=context, resources=build_resources(schema, context))


def load_config(path: str) -> DesiredState:
    """Load and validate the YAML configuration at ``path``."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as e:
        raise ConfigError(f"Cannot read configuration {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    state = parse_config(data)
    logger.info(f"Loaded {len(state.resources)} resources from {path}")
    return state
