"""
Dependency graph over resource kinds.

The graph is explicit data: each kind declares the kinds that must be
reconciled before it. Tiers are the topological depth layers.
"""

from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from pvesync.errors import DependencyCycleError
from pvesync.resources.models import STORAGE_KINDS, ResourceDescriptor, ResourceKind

PREREQUISITES: Mapping[ResourceKind, FrozenSet[ResourceKind]] = {
    ResourceKind.CLUSTER_CREATE: frozenset(),
    ResourceKind.CLUSTER_JOIN: frozenset({ResourceKind.CLUSTER_CREATE}),
    ResourceKind.HA_GROUP: frozenset({ResourceKind.CLUSTER_JOIN}),
    ResourceKind.COROSYNC_TUNE: frozenset({ResourceKind.CLUSTER_JOIN}),
    ResourceKind.STORAGE_NFS: frozenset({ResourceKind.CLUSTER_JOIN}),
    ResourceKind.STORAGE_ISCSI: frozenset({ResourceKind.CLUSTER_JOIN}),
    ResourceKind.STORAGE_CEPH: frozenset({ResourceKind.CLUSTER_JOIN}),
    ResourceKind.BACKUP_JOB: STORAGE_KINDS,
    ResourceKind.LXC: STORAGE_KINDS,
}


class DependencyGraph:
    """
    Acyclic prerequisite graph over resource kinds.

    Validated on construction; raises DependencyCycleError on a cycle.
    """

    def __init__(self, prerequisites: Optional[Mapping[ResourceKind, Iterable[ResourceKind]]] = None):
        source = PREREQUISITES if prerequisites is None else prerequisites
        self.prerequisites: Dict[ResourceKind, FrozenSet[ResourceKind]] = {
            kind: frozenset(prereqs) for kind, prereqs in source.items()
        }
        for prereqs in list(self.prerequisites.values()):
            for kind in prereqs:
                self.prerequisites.setdefault(kind, frozenset())
        self.depth = self._compute_depths()

    def _compute_depths(self) -> Dict[ResourceKind, int]:
        # Kahn's algorithm; depth is the longest prerequisite chain
        remaining = {kind: set(prereqs) for kind, prereqs in self.prerequisites.items()}
        dependents: Dict[ResourceKind, List[ResourceKind]] = defaultdict(list)
        for kind, prereqs in self.prerequisites.items():
            for prereq in prereqs:
                dependents[prereq].append(kind)

        depth: Dict[ResourceKind, int] = {}
        ready = [kind for kind, prereqs in remaining.items() if not prereqs]
        for kind in ready:
            depth[kind] = 0

        while ready:
            kind = ready.pop()
            for dependent in dependents[kind]:
                depth[dependent] = max(depth.get(dependent, 0), depth[kind] + 1)
                remaining[dependent].discard(kind)
                if not remaining[dependent]:
                    ready.append(dependent)

        cyclic = sorted(k.value for k, prereqs in remaining.items() if prereqs)
        if cyclic:
            raise DependencyCycleError(f"Dependency cycle among kinds: {', '.join(cyclic)}")
        return depth

    def kind_tiers(self) -> List[List[ResourceKind]]:
        """Kinds grouped by depth, shallowest first."""
        tiers: Dict[int, List[ResourceKind]] = defaultdict(list)
        for kind, level in self.depth.items():
            tiers[level].append(kind)
        return [sorted(tiers[level], key=lambda k: k.value) for level in sorted(tiers)]

    def order(self, descriptors: Iterable[ResourceDescriptor]) -> List[List[ResourceDescriptor]]:
        """
        Group descriptors into tiers for execution.

        Empty tiers are dropped; within a tier descriptors are sorted by
        kind and key so runs are deterministic.
        """
        tiers: Dict[int, List[ResourceDescriptor]] = defaultdict(list)
        for descriptor in descriptors:
            if descriptor.kind not in self.depth:
                raise KeyError(f"Kind {descriptor.kind.value} is not part of the dependency graph")
            tiers[self.depth[descriptor.kind]].append(descriptor)
        return [
            sorted(tiers[level], key=lambda d: (d.kind.value, d.key))
            for level in sorted(tiers)
        ]
