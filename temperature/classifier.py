"""
Temperature Classifier.

============================================================
PURPOSE
============================================================
Assign a partition a temperature (HOT/WARM/COLD) under a
threshold profile.

Two signals, one step function:

    days < hot_days  -> HOT
    days < warm_days -> WARM
    otherwise        -> COLD

AGE mode uses days since the partition's upper boundary (the
newest data it can hold). ACCESS mode uses days since the most
recent observed read or write, and takes precedence when the
partition has access recency and access tracking is enabled.

A partition whose boundary cannot be parsed is classified COLD
with a warning. It is never dropped from classification.

============================================================
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from core.types import Partition, Temperature, TemperatureSource, ThresholdProfile


logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")


@dataclass(frozen=True)
class Classification:
    """Result of classifying one partition."""

    temperature: Temperature
    age_days: Optional[int]
    """Days since the upper boundary; None when the boundary is unparseable."""

    source: TemperatureSource
    warning: Optional[str] = None
    access_days: Optional[int] = None
    """Days since last access, when access recency was used."""


# ============================================================
# STEP FUNCTION
# ============================================================

def classify_age(age_days: int, profile: ThresholdProfile) -> Temperature:
    """Boundary ages resolve to the older tier."""
    if age_days < profile.hot_days:
        return Temperature.HOT
    if age_days < profile.warm_days:
        return Temperature.WARM
    return Temperature.COLD


# ============================================================
# AGE
# ============================================================

def parse_boundary(high_value: Optional[str]) -> Optional[date]:
    """Extract a date from a raw boundary expression such as
    "TO_DATE(' 2024-01-01 00:00:00', ...)" or "2024-01-01"."""
    if not high_value:
        return None
    match = _ISO_DATE.search(high_value)
    if match is None:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def boundary_date(partition: Partition) -> Optional[date]:
    if partition.upper_bound is not None:
        return partition.upper_bound
    return parse_boundary(partition.high_value)


def partition_age_days(partition: Partition, now: datetime) -> Optional[int]:
    """
    Days since the partition's upper boundary, floored at zero.

    Returns None when no boundary date can be determined.
    """
    boundary = boundary_date(partition)
    if boundary is None:
        return None
    return max(0, (now.date() - boundary).days)


def days_since_access(partition: Partition, now: datetime) -> Optional[int]:
    last_access = partition.last_access_at
    if last_access is None:
        return None
    return max(0, int((now - last_access).total_seconds() // 86400))


# ============================================================
# CLASSIFIER
# ============================================================

class TemperatureClassifier:
    """
    Classify partitions by age or access recency.

    Stateless apart from the access-tracking switch; safe to share.
    """

    def __init__(self, use_access_recency: bool = True):
        self._use_access_recency = use_access_recency

    def classify(
        self,
        partition: Partition,
        profile: ThresholdProfile,
        now: datetime,
    ) -> Classification:
        age_days = partition_age_days(partition, now)

        if self._use_access_recency:
            access_days = days_since_access(partition, now)
            if access_days is not None:
                return Classification(
                    temperature=classify_age(access_days, profile),
                    age_days=age_days,
                    source=TemperatureSource.ACCESS,
                    access_days=access_days,
                )

        if age_days is None:
            warning = (
                f"Boundary of {partition.dataset}.{partition.name} could not be parsed "
                f"({partition.high_value!r}); classified COLD"
            )
            logger.warning(warning)
            return Classification(
                temperature=Temperature.COLD,
                age_days=None,
                source=TemperatureSource.AGE,
                warning=warning,
            )

        return Classification(
            temperature=classify_age(age_days, profile),
            age_days=age_days,
            source=TemperatureSource.AGE,
        )
