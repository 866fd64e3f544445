"""
Policy Engine - Condition Checks.

============================================================
PURPOSE
============================================================
Decide whether one partition is eligible for one policy.

Conditions are conjunctive and checked in a fixed order; the
first failing check supplies the reason:

1. Age in days
2. Age in months (days // 30)
3. Size against the threshold
4. Temperature under the policy's threshold profile
5. Target state already reached (codec, location, read-only)
6. Custom predicate

An unknown age (unparseable boundary) fails any age condition.

============================================================
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from core.constants import DAYS_PER_MONTH
from core.types import ActionType, Partition, Policy, SizeComparison, ThresholdProfile
from temperature.classifier import Classification


logger = logging.getLogger(__name__)

ELIGIBLE_REASON = "Partition meets all policy criteria"

Predicate = Callable[[Partition, Classification], bool]


# ============================================================
# PREDICATE REGISTRY
# ============================================================

class PredicateRegistry:
    """Named custom predicates a policy can reference."""

    def __init__(self):
        self._predicates: Dict[str, Predicate] = {}

    def register(self, name: str, predicate: Predicate) -> None:
        self._predicates[name] = predicate
        logger.debug(f"Registered custom predicate {name}")

    def unregister(self, name: str) -> None:
        self._predicates.pop(name, None)

    def get(self, name: str) -> Optional[Predicate]:
        return self._predicates.get(name)

    def names(self) -> List[str]:
        return sorted(self._predicates)

    def __contains__(self, name: str) -> bool:
        return name in self._predicates


# ============================================================
# CHECKS
# ============================================================

def _format_mb(value: float) -> str:
    text = f"{value:.2f}"
    return text[:-3] if text.endswith(".00") else text.rstrip("0")


def check_conditions(
    policy: Policy,
    partition: Partition,
    classification: Classification,
    profile: ThresholdProfile,
    predicates: Optional[PredicateRegistry] = None,
) -> Tuple[bool, str]:
    """Returns (eligible, reason)."""
    conditions = policy.conditions
    params = policy.params
    age_days = classification.age_days
    age_text = "unknown" if age_days is None else str(age_days)

    if conditions.age_days is not None:
        if age_days is None or age_days < conditions.age_days:
            return False, (
                f"Partition age {age_text} days is less than threshold "
                f"{conditions.age_days} days"
            )

    if conditions.age_months is not None:
        age_months = None if age_days is None else age_days // DAYS_PER_MONTH
        if age_months is None or age_months < conditions.age_months:
            months_text = "unknown" if age_months is None else str(age_months)
            return False, (
                f"Partition age {months_text} months is less than threshold "
                f"{conditions.age_months} months"
            )

    if conditions.size_threshold_mb is not None:
        size_mb = partition.size_mb
        if conditions.size_comparison == SizeComparison.AT_LEAST:
            if size_mb < conditions.size_threshold_mb:
                return False, (
                    f"Partition size {_format_mb(size_mb)} MB is less than threshold "
                    f"{_format_mb(conditions.size_threshold_mb)} MB"
                )
        elif size_mb > conditions.size_threshold_mb:
            return False, (
                f"Partition size {_format_mb(size_mb)} MB is greater than threshold "
                f"{_format_mb(conditions.size_threshold_mb)} MB"
            )

    if conditions.temperature is not None:
        if classification.temperature != conditions.temperature:
            return False, (
                f"Partition temperature ({classification.temperature.value}) does not match "
                f"required {conditions.temperature.value} [thresholds: {profile.describe()}]"
            )

    if policy.action == ActionType.COMPRESS and params.codec and partition.codec == params.codec:
        return False, f"Partition already compressed with {params.codec}"
    if policy.action == ActionType.MOVE and partition.location == params.location:
        return False, f"Partition already in target location {params.location}"
    if policy.action == ActionType.READ_ONLY and partition.read_only:
        return False, "Partition already read-only"

    if conditions.custom_predicate:
        predicate = predicates.get(conditions.custom_predicate) if predicates else None
        if predicate is None:
            return False, f"Custom condition {conditions.custom_predicate} is not registered"
        try:
            met = predicate(partition, classification)
        except Exception as e:
            logger.warning(
                f"Custom condition {conditions.custom_predicate} raised on "
                f"{partition.dataset}.{partition.name}: {e}"
            )
            return False, f"Error evaluating custom condition {conditions.custom_predicate}: {e}"
        if not met:
            return False, f"Custom condition {conditions.custom_predicate} not met"

    return True, ELIGIBLE_REASON
