"""
Temperature Classifier Package.

Ages partitions into HOT/WARM/COLD under threshold profiles.
"""

from temperature.classifier import (
    Classification,
    TemperatureClassifier,
    classify_age,
    parse_boundary,
    partition_age_days,
)
from temperature.profiles import (
    EffectiveThreshold,
    ProfileService,
    default_profile,
    effective_thresholds,
    resolve_profile,
    seed_default_profiles,
)
from temperature.refresher import RefreshResult, Staleness, TemperatureRefresher


__all__ = [
    "Classification",
    "TemperatureClassifier",
    "classify_age",
    "parse_boundary",
    "partition_age_days",
    "EffectiveThreshold",
    "ProfileService",
    "default_profile",
    "effective_thresholds",
    "resolve_profile",
    "seed_default_profiles",
    "RefreshResult",
    "Staleness",
    "TemperatureRefresher",
]
