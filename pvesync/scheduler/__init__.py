"""
Dependency ordering and tiered execution.
"""

from pvesync.scheduler.graph import PREREQUISITES, DependencyGraph
from pvesync.scheduler.tiers import TierScheduler

__all__ = ["PREREQUISITES", "DependencyGraph", "TierScheduler"]
