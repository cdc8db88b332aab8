"""
Resource model package for pvesync.
"""

from pvesync.resources.models import (
    Outcome,
    ReconcileResult,
    ReconciliationRecord,
    RemoteState,
    ResourceDescriptor,
    ResourceId,
    ResourceKind,
    compute_fingerprint,
)

__all__ = [
    "Outcome",
    "ReconcileResult",
    "ReconciliationRecord",
    "RemoteState",
    "ResourceDescriptor",
    "ResourceId",
    "ResourceKind",
    "compute_fingerprint",
]
