"""
Tier Planner - Partition Column Selection.

============================================================
PURPOSE
============================================================
Choose the date column a dataset should be partitioned by,
from profiling statistics the caller gathered.

Candidates are compared pairwise through a cascade; the first
rule that separates two candidates decides:

1. Data quality: a column with invalid dates loses
   `invalid_date_penalty` quality points
2. Null rate: lower wins when the gap exceeds
   `null_rate_tolerance_pct` percentage points
3. Time component: date-only columns win
4. Usage score: higher wins unless the other is within
   `similar_usage_ratio` of it
5. Range: wider wins

All numbers live on ColumnSelectionWeights.

============================================================
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence


logger = logging.getLogger(__name__)


@dataclass
class ColumnSelectionWeights:
    """Tunable constants of the selection cascade."""

    index_weight: int = 15
    """Usage points per index on the column."""

    where_weight: int = 3
    """Usage points per WHERE-clause reference."""

    join_weight: int = 2
    """Usage points per join reference."""

    invalid_date_penalty: int = 50
    """Quality points lost by a column holding invalid dates."""

    null_rate_tolerance_pct: float = 10.0
    """Null-rate gap (percentage points) below which columns tie."""

    similar_usage_ratio: float = 0.8
    """Usage scores within this ratio of each other tie."""

    null_warning_pct: float = 0.0
    """Null rate above which the chosen column gets a warning."""

    null_critical_pct: float = 25.0
    """Null rate above which the warning is critical."""


@dataclass
class DateColumnCandidate:
    """Profiling statistics of one candidate date column."""

    name: str
    range_days: int = 0
    null_pct: float = 0.0
    has_time_component: bool = False
    invalid_dates: int = 0
    index_count: int = 0
    where_count: int = 0
    join_count: int = 0


@dataclass
class ColumnSelection:
    """Outcome of a column selection."""

    column: Optional[str]
    usage_score: int = 0
    quality_score: int = 100
    warnings: List[str] = field(default_factory=list)
    critical: bool = False


def usage_score(candidate: DateColumnCandidate, weights: ColumnSelectionWeights) -> int:
    return (
        candidate.index_count * weights.index_weight
        + candidate.where_count * weights.where_weight
        + candidate.join_count * weights.join_weight
    )


def quality_score(candidate: DateColumnCandidate, weights: ColumnSelectionWeights) -> int:
    return 100 - (weights.invalid_date_penalty if candidate.invalid_dates > 0 else 0)


def _is_better(
    challenger: DateColumnCandidate,
    incumbent: DateColumnCandidate,
    weights: ColumnSelectionWeights,
) -> bool:
    """Whether challenger beats incumbent under the cascade."""
    c_quality = quality_score(challenger, weights)
    i_quality = quality_score(incumbent, weights)
    if c_quality != i_quality:
        return c_quality > i_quality

    if abs(challenger.null_pct - incumbent.null_pct) > weights.null_rate_tolerance_pct:
        return challenger.null_pct < incumbent.null_pct

    if challenger.has_time_component != incumbent.has_time_component:
        return not challenger.has_time_component

    c_usage = usage_score(challenger, weights)
    i_usage = usage_score(incumbent, weights)
    high, low = max(c_usage, i_usage), min(c_usage, i_usage)
    if low < high * weights.similar_usage_ratio:
        return c_usage > i_usage

    return challenger.range_days > incumbent.range_days


def select_partition_column(
    candidates: Sequence[DateColumnCandidate],
    weights: Optional[ColumnSelectionWeights] = None,
) -> ColumnSelection:
    """
    Pick the best partitioning column.

    Returns a selection with column None when there are no
    candidates. Ties keep the earlier candidate.
    """
    weights = weights or ColumnSelectionWeights()
    if not candidates:
        return ColumnSelection(column=None, warnings=["No date column candidates"])

    best = candidates[0]
    for candidate in candidates[1:]:
        if _is_better(candidate, best, weights):
            best = candidate

    selection = ColumnSelection(
        column=best.name,
        usage_score=usage_score(best, weights),
        quality_score=quality_score(best, weights),
    )

    if best.invalid_dates > 0:
        selection.warnings.append(
            f"Selected date column {best.name} has {best.invalid_dates} invalid dates"
        )
    if best.null_pct > weights.null_warning_pct:
        selection.warnings.append(
            f"Selected date column {best.name} has {best.null_pct}% NULL values"
        )
        if best.null_pct > weights.null_critical_pct:
            selection.critical = True
    if best.has_time_component:
        selection.warnings.append(
            f"Selected date column {best.name} contains a time component; "
            f"partition on its truncated date"
        )

    logger.info(
        f"Selected partition column {best.name} out of {len(candidates)} "
        f"(usage score {selection.usage_score}, range {best.range_days} days)"
    )
    for warning in selection.warnings:
        if selection.critical:
            logger.error(warning)
        else:
            logger.warning(warning)
    return selection
