"""
Merge Scheduler - Scheduler.

============================================================
PURPOSE
============================================================
Consolidate fine partitions into the coarse partition of their
period after they move into a coarser tier, so old data ends
up in as few partitions as its tier calls for.

FLOW (after a successful MOVE):
1. Find the tier of the new location in the dataset's template
2. If that tier is coarser than the partition, find the coarse
   partition of the same period
3. Check eligibility (adjacent, co-located, neither busy)
4. Lock both partitions, merge in the storage engine, widen the
   coarse boundary, remove the fine partition's metadata

FAILURE ISOLATION:
- Ineligible pairs are recorded DEFERRED (not an error)
- Merge failures are recorded FAILED and logged
- Nothing here ever raises into the triggering MOVE
- retry_deferred() re-attempts DEFERRED and FAILED candidates

Merges into the same coarse period run one at a time.

============================================================
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, Optional, Tuple

from core.clock import ClockProtocol
from core.exceptions import ActionError
from core.types import Granularity, Partition
from execution_engine.adapters.base import StorageEngine
from execution_engine.config import EngineConfig
from execution_engine.errors import classify_exception
from execution_engine.types import ActionResult
from merge_scheduler.eligibility import MergePeriod, check_merge_eligibility, pick_coarse
from storage.repositories.definitions import DatasetRepository, TierTemplateRepository
from storage.repositories.execution import EvaluationQueueRepository
from storage.repositories.merges import DEFERRED, FAILED, MERGED, MergeCandidateRepository
from storage.repositories.partitions import PartitionRepository
from tier_planner.periods import infer_granularity, period_bounds


logger = logging.getLogger(__name__)


# ============================================================
# OUTCOME
# ============================================================

class MergeStatus(Enum):
    """Result of a merge attempt."""

    MERGED = "MERGED"
    DEFERRED = "DEFERRED"
    FAILED = "FAILED"
    NOT_APPLICABLE = "NOT_APPLICABLE"
    """The partition's tier does not call for a merge."""


@dataclass
class MergeOutcome:
    """What happened to one fine partition."""

    partition_id: int
    status: MergeStatus
    reason: str
    coarse_partition_id: Optional[int] = None
    lower_bound: Optional[date] = None
    upper_bound: Optional[date] = None
    """Coarse partition boundaries after a merge."""


@dataclass
class _MergeTarget:
    fine: Partition
    granularity: Granularity
    period: MergePeriod


# ============================================================
# SCHEDULER
# ============================================================

class MergeScheduler:
    """Consolidates fine partitions after moves."""

    def __init__(
        self,
        storage_engine: StorageEngine,
        partition_repo: PartitionRepository,
        candidate_repo: MergeCandidateRepository,
        dataset_repo: DatasetRepository,
        template_repo: TierTemplateRepository,
        queue_repo: EvaluationQueueRepository,
        clock: ClockProtocol,
        config: EngineConfig,
    ):
        self._engine = storage_engine
        self._partitions = partition_repo
        self._candidates = candidate_repo
        self._datasets = dataset_repo
        self._templates = template_repo
        self._queue = queue_repo
        self._clock = clock
        self._config = config

        self._target_locks: Dict[Tuple[str, date], asyncio.Lock] = {}
        self._orphans = set()

    # --------------------------------------------------------
    # ENTRY POINTS
    # --------------------------------------------------------

    async def on_move_completed(self, partition_id: int) -> MergeOutcome:
        """Hook called by the execution engine after a successful MOVE."""
        outcome = await self.try_merge(partition_id)
        if outcome.status == MergeStatus.MERGED:
            logger.info(
                f"Partition {partition_id} merged into {outcome.coarse_partition_id}: "
                f"[{outcome.lower_bound}, {outcome.upper_bound})"
            )
        elif outcome.status != MergeStatus.NOT_APPLICABLE:
            logger.info(f"Partition {partition_id} left standalone: {outcome.reason}")
        return outcome

    async def retry_deferred(self) -> Dict[str, int]:
        """Re-attempt DEFERRED and FAILED candidates with attempts left."""
        summary = {status.value: 0 for status in MergeStatus}
        candidates = self._candidates.list_retryable(
            self._config.merge.max_attempts,
            self._config.merge.retry_batch_size,
        )
        for candidate in candidates:
            outcome = await self.try_merge(candidate.partition_id)
            if outcome.status == MergeStatus.NOT_APPLICABLE:
                self._candidates.remove(candidate.partition_id)
            summary[outcome.status.value] += 1
        if candidates:
            logger.info(f"Merge retry: {len(candidates)} candidates, {summary}")
        return summary

    async def try_merge(self, partition_id: int) -> MergeOutcome:
        """
        Attempt to absorb a partition into the coarse partition of its period.

        Never raises.
        """
        try:
            target = self._resolve_target(partition_id)
            if isinstance(target, MergeOutcome):
                return target
            lock = self._lock_for(target.fine.dataset, target.period.start)
            async with lock:
                return await self._merge_locked(target)
        except Exception as e:
            logger.error(f"Merge of partition {partition_id} failed: {e}", exc_info=True)
            return MergeOutcome(partition_id, MergeStatus.FAILED, str(e))

    # --------------------------------------------------------
    # TARGET
    # --------------------------------------------------------

    def _resolve_target(self, partition_id: int):
        fine = self._partitions.get(partition_id)
        if fine is None:
            return MergeOutcome(partition_id, MergeStatus.NOT_APPLICABLE, "Partition no longer exists")
        if fine.lower_bound is None or fine.upper_bound is None:
            return MergeOutcome(partition_id, MergeStatus.NOT_APPLICABLE, "Partition boundaries unknown")

        dataset = self._datasets.get(fine.dataset)
        template = self._templates.get(dataset.template_name) if dataset and dataset.template_name else None
        if template is None:
            return MergeOutcome(partition_id, MergeStatus.NOT_APPLICABLE, "Dataset has no tier template")

        tier = template.tier_for_location(fine.location)
        if tier is None or tier.granularity is None:
            return MergeOutcome(
                partition_id, MergeStatus.NOT_APPLICABLE,
                f"Location {fine.location} is not a tier location",
            )

        span = infer_granularity(fine.lower_bound, fine.upper_bound)
        if span is not None and not tier.granularity.is_coarser_than(span):
            return MergeOutcome(
                partition_id, MergeStatus.NOT_APPLICABLE,
                f"Tier {tier.tier.value} granularity {tier.granularity.value} is not coarser "
                f"than the partition",
            )

        start, end = period_bounds(fine.lower_bound, tier.granularity)
        period = MergePeriod(start, end)
        if not period.contains(fine):
            return MergeOutcome(
                partition_id, MergeStatus.NOT_APPLICABLE,
                f"Partition spans more than one {tier.granularity.value} period",
            )
        return _MergeTarget(fine, tier.granularity, period)

    def _lock_for(self, dataset: str, period_start: date) -> asyncio.Lock:
        key = (dataset, period_start)
        if key not in self._target_locks:
            self._target_locks[key] = asyncio.Lock()
        return self._target_locks[key]

    # --------------------------------------------------------
    # MERGE
    # --------------------------------------------------------

    async def _merge_locked(self, target: _MergeTarget) -> MergeOutcome:
        # Re-read under the period lock: a previous merge may have changed things.
        fine = self._partitions.get(target.fine.partition_id)
        if fine is None:
            return MergeOutcome(target.fine.partition_id, MergeStatus.NOT_APPLICABLE, "Partition no longer exists")

        overlapping = self._partitions.find_overlapping(fine.dataset, target.period.start, target.period.end)
        coarse = pick_coarse(fine, overlapping, target.period)
        eligible, reason = check_merge_eligibility(fine, coarse, target.period)
        if not eligible:
            self._record(fine, target, DEFERRED, reason)
            return MergeOutcome(fine.partition_id, MergeStatus.DEFERRED, reason)

        token = f"merge-{uuid.uuid4().hex[:12]}"
        now = self._clock.now()
        if not self._partitions.try_acquire(coarse.partition_id, token, now):
            reason = f"Partition {coarse.name} is busy"
            self._record(fine, target, DEFERRED, reason)
            return MergeOutcome(fine.partition_id, MergeStatus.DEFERRED, reason)
        if not self._partitions.try_acquire(fine.partition_id, token, now):
            self._partitions.release(coarse.partition_id, token)
            reason = f"Partition {fine.name} is busy"
            self._record(fine, target, DEFERRED, reason)
            return MergeOutcome(fine.partition_id, MergeStatus.DEFERRED, reason)

        timeout = self._config.timeout.merge_seconds
        task = asyncio.ensure_future(self._engine.merge(coarse, fine))
        try:
            result: ActionResult = await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            reason = f"Merge exceeded its {timeout:.0f}s timeout"
            logger.error(f"{reason}: {fine.name} into {coarse.name}; both stay busy until it returns")
            self._record(fine, target, FAILED, reason)
            self._orphans.add(task)
            task.add_done_callback(
                lambda done: self._on_late_merge(done, coarse, fine, target, token)
            )
            return MergeOutcome(fine.partition_id, MergeStatus.FAILED, reason, coarse.partition_id)
        except Exception as e:
            code = classify_exception(e)
            message = e.message if isinstance(e, ActionError) else str(e)
            reason = f"{code}: {message}"
            logger.error(f"Merge of {fine.name} into {coarse.name} failed: {reason}")
            self._record(fine, target, FAILED, reason)
            self._partitions.release(coarse.partition_id, token)
            self._partitions.release(fine.partition_id, token)
            return MergeOutcome(fine.partition_id, MergeStatus.FAILED, reason, coarse.partition_id)

        lower, upper = self._apply(coarse, fine, target, result)
        self._partitions.release(coarse.partition_id, token)
        return MergeOutcome(
            fine.partition_id,
            MergeStatus.MERGED,
            f"Merged into {coarse.name}",
            coarse_partition_id=coarse.partition_id,
            lower_bound=lower,
            upper_bound=upper,
        )

    def _apply(
        self,
        coarse: Partition,
        fine: Partition,
        target: _MergeTarget,
        result: ActionResult,
    ) -> Tuple[date, date]:
        """Widen the coarse partition and drop the fine one's metadata."""
        lower = min(coarse.lower_bound, fine.lower_bound)
        upper = max(coarse.upper_bound, fine.upper_bound)
        byte_size = result.byte_size if result.byte_size is not None else coarse.byte_size + fine.byte_size
        row_count = result.row_count if result.row_count is not None else coarse.row_count + fine.row_count
        self._partitions.set_bounds(coarse.partition_id, lower, upper, byte_size, row_count)
        self._partitions.delete(fine.partition_id)
        self._queue.remove_for_partition(fine.partition_id)
        self._record(fine, target, MERGED, f"Merged into {coarse.name}", coarse.partition_id)
        return lower, upper

    def _on_late_merge(
        self,
        task: asyncio.Future,
        coarse: Partition,
        fine: Partition,
        target: _MergeTarget,
        token: str,
    ) -> None:
        self._orphans.discard(task)
        if not task.cancelled() and task.exception() is None:
            logger.info(f"Timed-out merge of {fine.name} into {coarse.name} finished late")
            self._apply(coarse, fine, target, task.result())
            self._partitions.release(coarse.partition_id, token)
            return
        logger.warning(f"Timed-out merge of {fine.name} into {coarse.name} did not complete")
        self._partitions.release(coarse.partition_id, token)
        self._partitions.release(fine.partition_id, token)

    def _record(
        self,
        fine: Partition,
        target: _MergeTarget,
        status: str,
        reason: str,
        merged_into: Optional[int] = None,
    ) -> None:
        self._candidates.record_attempt(
            fine.dataset,
            fine.partition_id,
            fine.name,
            target.granularity,
            target.period.start,
            target.period.end,
            status,
            reason,
            self._clock.now(),
            merged_into=merged_into,
        )
