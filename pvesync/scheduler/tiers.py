"""
Tiered execution of a resource set over the dependency graph.

Resources in a tier run concurrently, bounded by a semaphore; a tier
completes before the next one starts. Once any resource in a tier fails or
is not attempted, every resource in the later tiers is reported as not
attempted.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from pvesync.config import settings
from pvesync.resources.models import (
    Outcome,
    ReconcileResult,
    ResourceDescriptor,
    ResourceId,
)
from pvesync.scheduler.graph import DependencyGraph

logger = logging.getLogger(__name__)

ResourceAction = Callable[[ResourceDescriptor], Awaitable[ReconcileResult]]


class TierScheduler:
    """Runs an async action over descriptors in dependency order."""

    def __init__(self, graph: Optional[DependencyGraph] = None, max_workers: int = settings.MAX_WORKERS):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.graph = graph or DependencyGraph()
        self.max_workers = max_workers

    async def run(
        self,
        descriptors: Iterable[ResourceDescriptor],
        action: ResourceAction,
        *,
        reverse: bool = False,
        gate: bool = True,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[ResourceId, ReconcileResult]:
        """
        Execute ``action`` for every descriptor, tier by tier.

        Args:
            descriptors: Resources to process
            action: Coroutine function producing a ReconcileResult
            reverse: Run tiers deepest first (destroy order)
            gate: After a tier with failures, mark all later tiers not attempted
            cancel_event: When set, resources not yet started are not attempted

        Returns:
            Mapping of resource id to result, one entry per descriptor
        """
        tiers = self.graph.order(descriptors)
        if reverse:
            tiers.reverse()

        semaphore = asyncio.Semaphore(self.max_workers)
        incomplete: List[ResourceId] = []
        results: Dict[ResourceId, ReconcileResult] = {}

        async def run_one(descriptor: ResourceDescriptor) -> ReconcileResult:
            rid = descriptor.resource_id
            if gate and incomplete:
                names = ", ".join(sorted(str(r) for r in incomplete))
                logger.info(f"Not attempting {rid}: earlier tier did not complete ({names})")
                return _not_attempted(rid, f"prerequisite tier did not complete: {names}")

            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return _not_attempted(rid, "pass cancelled")
                try:
                    return await action(descriptor)
                except Exception as e:
                    logger.exception(f"Unexpected error while processing {rid}")
                    return ReconcileResult(
                        resource_id=rid,
                        outcome=Outcome.FAILED,
                        message=f"Unexpected error: {e}",
                    )

        for index, tier in enumerate(tiers):
            logger.debug(f"Tier {index}: {', '.join(str(d.resource_id) for d in tier)}")
            gated = gate and bool(incomplete)
            tier_results = await asyncio.gather(*(run_one(d) for d in tier))
            for descriptor, result in zip(tier, tier_results):
                results[descriptor.resource_id] = result
                # only the tier that first failed is named in later messages
                if not result.terminal_ok and not gated:
                    incomplete.append(descriptor.resource_id)

        return results


def _not_attempted(rid: ResourceId, message: str) -> ReconcileResult:
    return ReconcileResult(resource_id=rid, outcome=Outcome.NOT_ATTEMPTED, message=message)
