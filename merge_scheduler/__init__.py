"""
Partition Merge Scheduler Package.

Consolidates fine partitions into coarse ones after they move
into a coarser tier.
"""

from merge_scheduler.eligibility import MergePeriod, check_merge_eligibility, is_adjacent, pick_coarse
from merge_scheduler.scheduler import MergeOutcome, MergeScheduler, MergeStatus


__all__ = [
    "MergePeriod",
    "check_merge_eligibility",
    "is_adjacent",
    "pick_coarse",
    "MergeOutcome",
    "MergeScheduler",
    "MergeStatus",
]
