"""
Tier Planner - Boundary Planner.

============================================================
PURPOSE
============================================================
Lay out the initial partitions of a dataset being loaded with
historical data, so each slice lands directly in the tier its
age calls for: coarse partitions for old data, fine partitions
for recent data.

============================================================
ALGORITHM
============================================================
reference   = as_of, or max_date when not given
hot_cutoff  = ceil_HOT(reference - hot threshold)
warm_cutoff = floor_WARM(reference - warm threshold)

Tier ranges, oldest first:

    COLD  [-inf,        warm_cutoff)
    WARM  [warm_cutoff, hot_cutoff)
    HOT   [hot_cutoff,  +inf)

Inside each range boundaries step by the tier's granularity;
the last partition of a tier is clipped at the next tier's
cutoff. A range the data never reaches yields no partitions.

The COLD age threshold is not a further tier: data older than
the WARM cutoff is COLD regardless. The COLD threshold marks
partitions eligible for archive or purge.

The newest HOT partition is open ended: ongoing loads extend
the dataset with interval partitions described by the plan's
auto_extension.

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from core.exceptions import PlanningError, TemplateValidationError
from core.types import Granularity, Partition, Temperature, TierDefinition, TierTemplate
from tier_planner.periods import advance, ceil_date, floor_date, partition_name, subtract_age
from tier_planner.templates import validate_template


logger = logging.getLogger(__name__)


# ============================================================
# PLAN TYPES
# ============================================================

@dataclass(frozen=True)
class PlannedPartition:
    """One partition of a boundary plan. upper is exclusive."""

    name: str
    lower: date
    upper: date
    tier: Temperature
    granularity: Granularity
    location: str
    codec: str
    open_ended: bool = False
    """Newest HOT partition; later data goes to auto-extension partitions."""

    archive_eligible: bool = False
    """Entirely older than the COLD threshold."""


@dataclass(frozen=True)
class AutoExtension:
    """Interval partitioning applied to data arriving after the plan."""

    granularity: Granularity
    location: str
    codec: str


@dataclass
class PartitionPlan:
    """Ordered, contiguous partition layout for one dataset load."""

    template_name: str
    reference_date: date
    partitions: List[PlannedPartition] = field(default_factory=list)
    auto_extension: Optional[AutoExtension] = None
    cutoffs: Dict[str, date] = field(default_factory=dict)

    @property
    def tier_counts(self) -> Dict[Temperature, int]:
        counts = {tier: 0 for tier in (Temperature.COLD, Temperature.WARM, Temperature.HOT)}
        for planned in self.partitions:
            counts[planned.tier] += 1
        return counts

    def for_tier(self, tier: Temperature) -> List[PlannedPartition]:
        return [p for p in self.partitions if p.tier == tier]

    def summary(self) -> str:
        counts = self.tier_counts
        parts = [f"{tier.value}={counts[tier]}" for tier in counts]
        return f"{len(self.partitions)} partitions ({', '.join(parts)})"

    def to_dict(self) -> Dict:
        return {
            "template": self.template_name,
            "reference_date": self.reference_date.isoformat(),
            "cutoffs": {k: v.isoformat() for k, v in self.cutoffs.items()},
            "tier_counts": {k.value: v for k, v in self.tier_counts.items()},
            "partitions": [
                {
                    "name": p.name,
                    "lower": p.lower.isoformat(),
                    "upper": p.upper.isoformat(),
                    "tier": p.tier.value,
                    "granularity": p.granularity.value,
                    "location": p.location,
                    "codec": p.codec,
                    "open_ended": p.open_ended,
                    "archive_eligible": p.archive_eligible,
                }
                for p in self.partitions
            ],
            "auto_extension": (
                {
                    "granularity": self.auto_extension.granularity.value,
                    "location": self.auto_extension.location,
                    "codec": self.auto_extension.codec,
                }
                if self.auto_extension else None
            ),
        }


# ============================================================
# PLANNER
# ============================================================

class TierBoundaryPlanner:
    """
    Compute partition boundaries for an initial load.

    Stateless; one instance can plan any number of datasets.
    """

    def __init__(self, name_prefix: str = "P"):
        self._name_prefix = name_prefix

    def plan(
        self,
        min_date: date,
        max_date: date,
        template: TierTemplate,
        as_of: Optional[date] = None,
    ) -> PartitionPlan:
        """
        Plan partitions covering [min_date, max_date].

        Raises:
            PlanningError: If the template is invalid or the range is empty
        """
        try:
            validate_template(template)
        except TemplateValidationError as e:
            raise PlanningError(
                f"Cannot plan with template {template.name}: {e.message}",
                context={"codes": e.codes},
                cause=e,
            ) from e

        if max_date < min_date:
            raise PlanningError(
                f"max_date {max_date} is before min_date {min_date}",
                context={"template": template.name},
            )

        hot = template.tier(Temperature.HOT)
        warm = template.tier(Temperature.WARM)
        cold = template.tier(Temperature.COLD)

        reference = as_of or max_date
        hot_cutoff = ceil_date(
            subtract_age(reference, hot.age_days, hot.age_months), hot.granularity
        )
        warm_cutoff = floor_date(
            subtract_age(reference, warm.age_days, warm.age_months), warm.granularity
        )
        archive_cutoff = subtract_age(reference, cold.age_days, cold.age_months)

        plan = PartitionPlan(
            template_name=template.name,
            reference_date=reference,
            cutoffs={
                "hot": hot_cutoff,
                "warm": warm_cutoff,
                "archive": archive_cutoff,
            },
        )

        data_end = max_date + timedelta(days=1)
        tier_ranges: List[Tuple[TierDefinition, Optional[date], Optional[date]]] = [
            (cold, None, warm_cutoff),
            (warm, warm_cutoff, hot_cutoff),
            (hot, hot_cutoff, None),
        ]

        previous_upper: Optional[date] = None
        for definition, tier_lo, tier_hi in tier_ranges:
            if tier_lo is not None and data_end <= tier_lo:
                continue
            if tier_hi is not None and min_date >= tier_hi:
                continue
            partitions = self._plan_tier(
                definition, tier_lo, tier_hi, min_date, data_end, previous_upper, archive_cutoff
            )
            if partitions:
                previous_upper = partitions[-1].upper
                plan.partitions.extend(partitions)

        if plan.partitions and plan.partitions[-1].tier == Temperature.HOT:
            newest = plan.partitions[-1]
            plan.partitions[-1] = PlannedPartition(
                name=newest.name,
                lower=newest.lower,
                upper=newest.upper,
                tier=newest.tier,
                granularity=newest.granularity,
                location=newest.location,
                codec=newest.codec,
                open_ended=True,
                archive_eligible=newest.archive_eligible,
            )
        plan.auto_extension = AutoExtension(
            granularity=hot.granularity,
            location=hot.location,
            codec=hot.codec,
        )

        logger.info(
            f"Planned {template.name} for {min_date}..{max_date} "
            f"(reference {reference}, hot cutoff {hot_cutoff}, warm cutoff {warm_cutoff}): "
            f"{plan.summary()}"
        )
        return plan

    def _plan_tier(
        self,
        definition: TierDefinition,
        tier_lo: Optional[date],
        tier_hi: Optional[date],
        min_date: date,
        data_end: date,
        previous_upper: Optional[date],
        archive_cutoff: date,
    ) -> List[PlannedPartition]:
        granularity = definition.granularity

        if previous_upper is not None:
            start = previous_upper
        else:
            start = floor_date(min_date, granularity)
            if tier_lo is not None and tier_lo > start:
                start = tier_lo

        stop = ceil_date(data_end, granularity)
        if tier_hi is not None and tier_hi < stop:
            stop = tier_hi

        partitions: List[PlannedPartition] = []
        current = start
        while current < stop:
            upper = advance(current, granularity)
            if tier_hi is not None and upper > tier_hi:
                upper = tier_hi
            partitions.append(PlannedPartition(
                name=partition_name(current, granularity, self._name_prefix),
                lower=current,
                upper=upper,
                tier=definition.tier,
                granularity=granularity,
                location=definition.location,
                codec=definition.codec,
                archive_eligible=upper <= archive_cutoff,
            ))
            current = upper
        return partitions


# ============================================================
# APPLY
# ============================================================

async def plan_and_create(
    planner: TierBoundaryPlanner,
    dataset: str,
    min_date: date,
    max_date: date,
    template: TierTemplate,
    storage_engine,
    partition_repo=None,
    as_of: Optional[date] = None,
) -> PartitionPlan:
    """
    Plan a load and hand the layout to the storage engine.

    When a partition repository is given, the partitions the engine
    reports back are recorded as metadata.
    """
    plan = planner.plan(min_date, max_date, template, as_of=as_of)
    created: List[Partition] = await storage_engine.create_partitions(dataset, plan.partitions)
    if partition_repo is not None:
        for partition in created:
            partition_repo.upsert(partition)
    logger.info(f"Created {len(created)} partitions for {dataset}")
    return plan
