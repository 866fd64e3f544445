"""
Core Module - Shared Types.

============================================================
PURPOSE
============================================================
Vocabulary shared by all five lifecycle components:
temperatures/tiers, partition granularities, policy actions,
queue and execution statuses, and the domain records that
flow between repositories and engines.

Persistent rows live in storage.models; these dataclasses are
what the engines compute on.

============================================================
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from .constants import DAYS_PER_MONTH, DEFAULT_PRIORITY
from .exceptions import ThresholdProfileError, ValidationIssue


# ============================================================
# TEMPERATURE / TIER
# ============================================================

class Temperature(Enum):
    """
    Partition temperature.

    Doubles as the tier name in tier templates, so data placed
    at load time ages consistently with ongoing policies.
    """

    HOT = "HOT"
    """Recent, frequently accessed."""

    WARM = "WARM"
    """Aging, occasionally accessed."""

    COLD = "COLD"
    """Old, rarely accessed."""

    @property
    def rank(self) -> int:
        return _TEMPERATURE_RANK[self]


_TEMPERATURE_RANK = {Temperature.HOT: 0, Temperature.WARM: 1, Temperature.COLD: 2}


class TemperatureSource(Enum):
    """Signal a temperature was derived from."""

    AGE = "AGE"
    ACCESS = "ACCESS"


class AccessKind(Enum):
    """Kind of recorded partition access."""

    READ = "READ"
    WRITE = "WRITE"


class Granularity(Enum):
    """Partition interval granularity."""

    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    QUARTER = "QUARTER"
    YEAR = "YEAR"

    @property
    def rank(self) -> int:
        return _GRANULARITY_RANK[self]

    def is_coarser_than(self, other: "Granularity") -> bool:
        """Check whether this granularity spans more time than another."""
        return self.rank > other.rank


_GRANULARITY_RANK = {
    Granularity.DAY: 0,
    Granularity.WEEK: 1,
    Granularity.MONTH: 2,
    Granularity.QUARTER: 3,
    Granularity.YEAR: 4,
}


# ============================================================
# POLICY VOCABULARY
# ============================================================

class ActionType(Enum):
    """Tiering action a policy performs."""

    COMPRESS = "COMPRESS"
    """Recompress in place with a new codec."""

    MOVE = "MOVE"
    """Relocate to another storage location (optionally recodec)."""

    READ_ONLY = "READ_ONLY"
    """Seal the partition against writes."""

    DROP = "DROP"
    """Remove the partition and its data."""

    TRUNCATE = "TRUNCATE"
    """Empty the partition, keep its structure."""

    CUSTOM = "CUSTOM"
    """Operator-supplied action block."""

    def is_destructive(self) -> bool:
        return self in {ActionType.DROP, ActionType.TRUNCATE}


class SizeComparison(Enum):
    """How a size condition compares a partition against its threshold."""

    AT_LEAST = ">="
    AT_MOST = "<="


class QueueStatus(Enum):
    """Evaluation queue entry status."""

    PENDING = "PENDING"
    """Eligible, waiting for a worker."""

    RUNNING = "RUNNING"
    """Claimed by a worker."""

    SUCCESS = "SUCCESS"
    """Executed successfully (terminal for this entry)."""

    FAILED = "FAILED"
    """Executed and failed; may return to PENDING on a later pass."""

    SKIPPED = "SKIPPED"
    """Not executed; reason recorded."""

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self == QueueStatus.SUCCESS


class ExecutionStatus(Enum):
    """Execution log entry status."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    def is_terminal(self) -> bool:
        return self != ExecutionStatus.RUNNING


# ============================================================
# THRESHOLD PROFILE
# ============================================================

@dataclass(frozen=True)
class ThresholdProfile:
    """
    Named (hot, warm, cold) age-day triple.

    Construction fails unless hot_days < warm_days < cold_days,
    so a non-monotonic profile can never reach the database.
    """

    name: str
    """Profile name (unique)."""

    hot_days: int
    """Ages below this are HOT."""

    warm_days: int
    """Ages below this (and at or above hot_days) are WARM."""

    cold_days: int
    """Archive/purge age; everything at or above warm_days is COLD."""

    description: str = ""
    """Free-text description."""

    def __post_init__(self) -> None:
        issues: List[ValidationIssue] = []
        if not self.name:
            issues.append(ValidationIssue(
                "PROFILE_NAME_MISSING", "Threshold profile name is required", "name",
            ))
        for attr in ("hot_days", "warm_days", "cold_days"):
            value = getattr(self, attr)
            if value is None or value <= 0:
                issues.append(ValidationIssue(
                    "PROFILE_THRESHOLD_NOT_POSITIVE",
                    f"{attr} must be a positive number of days, got {value}",
                    attr,
                ))
        if not issues:
            if self.hot_days >= self.warm_days:
                issues.append(ValidationIssue(
                    "PROFILE_HOT_NOT_BELOW_WARM",
                    f"hot_days ({self.hot_days}) must be less than warm_days ({self.warm_days})",
                    "hot_days",
                ))
            if self.warm_days >= self.cold_days:
                issues.append(ValidationIssue(
                    "PROFILE_WARM_NOT_BELOW_COLD",
                    f"warm_days ({self.warm_days}) must be less than cold_days ({self.cold_days})",
                    "warm_days",
                ))
        if issues:
            raise ThresholdProfileError(issues, subject=self.name or "<unnamed>")

    def describe(self) -> str:
        return f"HOT<{self.hot_days}, WARM<{self.warm_days}"


# ============================================================
# TIER TEMPLATE
# ============================================================

@dataclass
class TierDefinition:
    """
    One tier of a tier template.

    Fields are optional at construction so a template read from
    an operator payload can be validated field by field; see
    tier_planner.templates.validate_template.
    """

    tier: Temperature
    """Tier name."""

    granularity: Optional[Granularity] = None
    """Partition interval inside this tier."""

    location: Optional[str] = None
    """Target storage location (tablespace, bucket, volume...)."""

    codec: Optional[str] = None
    """Target compression codec."""

    age_days: Optional[int] = None
    """Age threshold in days."""

    age_months: Optional[int] = None
    """Age threshold in calendar months (takes precedence over days)."""

    @property
    def threshold_days(self) -> Optional[int]:
        """Threshold normalised to days, for ordering checks."""
        if self.age_months is not None:
            return self.age_months * DAYS_PER_MONTH
        return self.age_days


@dataclass
class TierTemplate:
    """Reusable HOT/WARM/COLD layout used at initial load."""

    name: str
    """Template name (unique)."""

    tiers: Dict[Temperature, TierDefinition] = field(default_factory=dict)
    """Tier definitions keyed by tier."""

    description: str = ""

    def tier(self, name: Temperature) -> Optional[TierDefinition]:
        return self.tiers.get(name)

    def tier_for_location(self, location: str) -> Optional[TierDefinition]:
        """Find the tier whose target location matches."""
        for tier in (Temperature.HOT, Temperature.WARM, Temperature.COLD):
            definition = self.tiers.get(tier)
            if definition is not None and definition.location == location:
                return definition
        return None

    @property
    def locations(self) -> List[str]:
        return [d.location for d in self.tiers.values() if d.location]


# ============================================================
# DATASET / PARTITION
# ============================================================

@dataclass
class Dataset:
    """A registered time-partitioned dataset."""

    name: str
    """Dataset name (unique)."""

    partition_column: str = ""
    """Date column the dataset is partitioned by."""

    template_name: Optional[str] = None
    """Tier template the dataset was planned with."""

    description: str = ""


@dataclass
class Partition:
    """
    Snapshot of one partition's metadata.

    lower_bound is inclusive, upper_bound exclusive. high_value is
    the raw boundary text as reported by the storage engine, kept
    for partitions whose bounds could not be parsed.
    """

    dataset: str
    """Owning dataset."""

    name: str
    """Partition name (unique within the dataset)."""

    lower_bound: Optional[date] = None
    """Inclusive lower boundary."""

    upper_bound: Optional[date] = None
    """Exclusive upper boundary."""

    location: str = ""
    """Current storage location."""

    codec: Optional[str] = None
    """Current compression codec (None = uncompressed)."""

    row_count: int = 0
    byte_size: int = 0

    created_at: Optional[datetime] = None
    last_write_at: Optional[datetime] = None
    last_read_at: Optional[datetime] = None

    read_only: bool = False
    """Whether the partition has been sealed."""

    high_value: Optional[str] = None
    """Raw boundary expression."""

    partition_id: Optional[int] = None
    """Database identifier, once persisted."""

    temperature: Optional[Temperature] = None
    """Last classified temperature."""

    busy: bool = False
    """Whether an operation is in flight."""

    @property
    def size_mb(self) -> float:
        return self.byte_size / (1024 * 1024)

    @property
    def last_access_at(self) -> Optional[datetime]:
        """Most recent of last read and last write."""
        moments = [m for m in (self.last_read_at, self.last_write_at) if m is not None]
        return max(moments) if moments else None


@dataclass
class PartitionMetrics:
    """Row and byte counts reported by the metadata provider."""

    rows: int = 0
    bytes: int = 0


@dataclass
class AccessRecency:
    """Last observed read/write times for a partition."""

    last_read: Optional[datetime] = None
    last_write: Optional[datetime] = None


# ============================================================
# POLICY
# ============================================================

@dataclass
class PolicyConditions:
    """Trigger conditions; None means don't care."""

    age_days: Optional[int] = None
    age_months: Optional[int] = None
    temperature: Optional[Temperature] = None
    size_threshold_mb: Optional[float] = None
    size_comparison: SizeComparison = SizeComparison.AT_LEAST
    custom_predicate: Optional[str] = None
    """Name of a predicate registered in policy_engine.conditions."""

    def configured(self) -> List[str]:
        """Names of the conditions that are set."""
        names = []
        if self.age_days is not None:
            names.append("age_days")
        if self.age_months is not None:
            names.append("age_months")
        if self.temperature is not None:
            names.append("temperature")
        if self.size_threshold_mb is not None:
            names.append("size")
        if self.custom_predicate:
            names.append("custom")
        return names


@dataclass
class ActionParameters:
    """Action-specific parameters."""

    codec: Optional[str] = None
    location: Optional[str] = None
    custom_action: Optional[str] = None
    rebuild_indexes: bool = True
    gather_stats: bool = True
    parallel_degree: int = 1


@dataclass
class Policy:
    """
    A validated lifecycle policy.

    Build through policy_engine.PolicyBuilder; direct construction
    skips validation.
    """

    name: str
    dataset: str
    action: ActionType
    conditions: PolicyConditions = field(default_factory=PolicyConditions)
    params: ActionParameters = field(default_factory=ActionParameters)
    priority: int = DEFAULT_PRIORITY
    enabled: bool = True
    profile_name: Optional[str] = None
    description: str = ""
    policy_id: Optional[int] = None
    version: int = 1
