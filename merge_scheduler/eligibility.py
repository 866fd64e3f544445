"""
Merge Scheduler - Eligibility.

A fine partition may be absorbed into a coarse partition of the
same period only when:

1. The coarse partition exists and lies inside the period
2. The two are boundary-adjacent (no gap, no overlap)
3. Both sit in the same location
4. Neither has an operation in flight

Anything else leaves the fine partition standalone.
"""

from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Tuple

from core.types import Partition


@dataclass(frozen=True)
class MergePeriod:
    """The coarse period a fine partition belongs to. end is exclusive."""

    start: date
    end: date

    def contains(self, partition: Partition) -> bool:
        return (
            partition.lower_bound is not None
            and partition.upper_bound is not None
            and self.start <= partition.lower_bound
            and partition.upper_bound <= self.end
        )

    def describe(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"


def is_adjacent(first: Partition, second: Partition) -> bool:
    """True when one partition ends exactly where the other starts."""
    return (
        first.upper_bound == second.lower_bound
        or second.upper_bound == first.lower_bound
    )


def check_merge_eligibility(
    fine: Partition,
    coarse: Optional[Partition],
    period: MergePeriod,
) -> Tuple[bool, str]:
    """Returns (eligible, reason)."""
    if coarse is None:
        return False, f"No coarse partition for period {period.describe()}"
    if coarse.lower_bound is None or coarse.upper_bound is None:
        return False, f"Coarse partition {coarse.name} has unknown boundaries"
    if not period.contains(coarse):
        return False, (
            f"Coarse partition {coarse.name} "
            f"[{coarse.lower_bound}, {coarse.upper_bound}) is not inside period {period.describe()}"
        )

    if fine.lower_bound < coarse.upper_bound and coarse.lower_bound < fine.upper_bound:
        return False, f"Partitions {coarse.name} and {fine.name} overlap"
    if not is_adjacent(fine, coarse):
        return False, (
            f"Partitions {coarse.name} and {fine.name} are not adjacent "
            f"(gap between {min(coarse.upper_bound, fine.upper_bound)} and "
            f"{max(coarse.lower_bound, fine.lower_bound)})"
        )

    if fine.location != coarse.location:
        return False, (
            f"Location mismatch: {fine.name} in {fine.location}, "
            f"{coarse.name} in {coarse.location}"
        )

    for partition in (coarse, fine):
        if partition.busy:
            return False, f"Partition {partition.name} is busy"

    return True, "Partitions are adjacent and co-located"


def pick_coarse(fine: Partition, candidates: List[Partition], period: MergePeriod) -> Optional[Partition]:
    """
    Choose the coarse partition for a fine one among the partitions
    overlapping its period.

    Preference: adjacent and co-located, then adjacent, then any
    other partition inside the period (so the deferral reason names it).
    """
    others = [p for p in candidates if p.partition_id != fine.partition_id]
    inside = [p for p in others if period.contains(p)]
    for partition in inside:
        if is_adjacent(fine, partition) and partition.location == fine.location:
            return partition
    for partition in inside:
        if is_adjacent(fine, partition):
            return partition
    if inside:
        return inside[0]
    return others[0] if others else None
