"""
Pass plan and pass report data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from pvesync.resources.models import (
    Outcome,
    ReconcileResult,
    ReconciliationRecord,
    ResourceDescriptor,
    ResourceId,
)


@dataclass
class PassPlan:
    """Diff between the declared resource set and the stored records."""

    added: List[ResourceDescriptor] = field(default_factory=list)
    changed: List[ResourceDescriptor] = field(default_factory=list)
    unchanged: List[ResourceDescriptor] = field(default_factory=list)
    removed: List[ReconciliationRecord] = field(default_factory=list)
    # Unchanged resources whose last attempt failed or left state unknown
    retry: List[ResourceDescriptor] = field(default_factory=list)
    fingerprints: Dict[ResourceId, str] = field(default_factory=dict)
    # Recorded resources pvesync has converged or modified
    owned: Set[ResourceId] = field(default_factory=set)

    @property
    def desired(self) -> List[ResourceDescriptor]:
        return self.added + self.changed + self.unchanged

    def category(self, rid: ResourceId) -> str:
        for name in ("added", "changed", "retry"):
            if any(d.resource_id == rid for d in getattr(self, name)):
                return name
        return "unchanged"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'added': [str(d.resource_id) for d in self.added],
            'changed': [str(d.resource_id) for d in self.changed],
            'unchanged': [str(d.resource_id) for d in self.unchanged],
            'retry': [str(d.resource_id) for d in self.retry],
            'removed': [str(r.resource_id) for r in self.removed],
        }


@dataclass
class FailureEntry:
    """One failed resource as surfaced to the operator."""

    resource_id: ResourceId
    phase: str
    error_kind: Optional[str]
    message: str
    stderr: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resource': str(self.resource_id),
            'phase': self.phase,
            'error_kind': self.error_kind,
            'message': self.message,
            'stderr': self.stderr,
        }


@dataclass
class PassReport:
    """Aggregated outcome of an apply or destroy pass."""

    action: str
    apply_results: List[ReconcileResult] = field(default_factory=list)
    destroy_results: List[ReconcileResult] = field(default_factory=list)
    cancelled: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def _count(self, results: List[ReconcileResult], outcome: Outcome) -> int:
        return sum(1 for r in results if r.outcome == outcome)

    @property
    def applied(self) -> int:
        return self._count(self.apply_results, Outcome.SUCCEEDED)

    @property
    def destroyed(self) -> int:
        return self._count(self.destroy_results, Outcome.SUCCEEDED)

    @property
    def skipped(self) -> int:
        return (
            self._count(self.apply_results, Outcome.SKIPPED)
            + self._count(self.destroy_results, Outcome.SKIPPED)
        )

    @property
    def failed(self) -> int:
        return (
            self._count(self.apply_results, Outcome.FAILED)
            + self._count(self.destroy_results, Outcome.FAILED)
        )

    @property
    def not_attempted(self) -> int:
        return (
            self._count(self.apply_results, Outcome.NOT_ATTEMPTED)
            + self._count(self.destroy_results, Outcome.NOT_ATTEMPTED)
        )

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def failures(self) -> List[FailureEntry]:
        entries = []
        for phase, results in (("destroy", self.destroy_results), ("apply", self.apply_results)):
            for result in results:
                if result.outcome == Outcome.FAILED:
                    entries.append(FailureEntry(
                        resource_id=result.resource_id,
                        phase=phase,
                        error_kind=result.error_kind.value if result.error_kind else None,
                        message=result.message,
                        stderr=result.stderr,
                    ))
        return entries

    def counts(self) -> Dict[str, int]:
        return {
            'applied': self.applied,
            'skipped': self.skipped,
            'failed': self.failed,
            'destroyed': self.destroyed,
            'not_attempted': self.not_attempted,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/JSON output."""
        return {
            'action': self.action,
            'success': self.success,
            'cancelled': self.cancelled,
            'counts': self.counts(),
            'failures': [f.to_dict() for f in self.failures],
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }
