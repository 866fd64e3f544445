"""
Pydantic schemas for the Dashboard API.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.constants import DEFAULT_PRIORITY
from core.types import (
    ActionParameters,
    ActionType,
    Policy,
    PolicyConditions,
    SizeComparison,
    Temperature,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =======================
# COMMON
# =======================

class BaseResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class ValidationIssueSchema(BaseModel):
    code: str
    message: str
    field: Optional[str] = None


class ErrorResponse(BaseResponse):
    error_code: Optional[str] = None
    errors: List[ValidationIssueSchema] = []


# =======================
# 1. HEALTH
# =======================

class HealthDetail(BaseModel):
    healthy: bool
    running: bool
    database: bool
    failing_loops: List[str] = []
    dead_loops: List[str] = []
    temperatures_stale: bool


class HealthResponse(BaseResponse):
    data: HealthDetail


# =======================
# 2. POLICIES
# =======================

class PolicyConditionsSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    age_days: Optional[int] = None
    age_months: Optional[int] = None
    temperature: Optional[Temperature] = None
    size_threshold_mb: Optional[float] = None
    size_comparison: SizeComparison = SizeComparison.AT_LEAST
    custom_predicate: Optional[str] = None


class ActionParametersSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    codec: Optional[str] = None
    location: Optional[str] = None
    custom_action: Optional[str] = None
    rebuild_indexes: bool = True
    gather_stats: bool = True
    parallel_degree: int = 1


class PolicyRequest(BaseModel):
    name: str
    dataset: str
    action: ActionType
    conditions: PolicyConditionsSchema = Field(default_factory=PolicyConditionsSchema)
    params: ActionParametersSchema = Field(default_factory=ActionParametersSchema)
    priority: int = DEFAULT_PRIORITY
    enabled: bool = True
    profile_name: Optional[str] = None
    description: str = ""

    def to_policy(self, policy_id: Optional[int] = None) -> Policy:
        return Policy(
            name=self.name,
            dataset=self.dataset,
            action=self.action,
            conditions=PolicyConditions(**self.conditions.model_dump()),
            params=ActionParameters(**self.params.model_dump()),
            priority=self.priority,
            enabled=self.enabled,
            profile_name=self.profile_name,
            description=self.description,
            policy_id=policy_id,
        )


class PolicyRecord(PolicyRequest):
    model_config = ConfigDict(from_attributes=True)

    policy_id: int
    version: int


class PolicyResponse(BaseResponse):
    data: PolicyRecord


class PolicyListResponse(BaseResponse):
    data: List[PolicyRecord]


# =======================
# 3. THRESHOLDS
# =======================

class EffectiveThresholdRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    policy_id: Optional[int]
    policy_name: str
    profile_name: str
    hot_days: int
    warm_days: int
    cold_days: int
    source: str


class EffectiveThresholdResponse(BaseResponse):
    data: List[EffectiveThresholdRecord]


class ProfileRequest(BaseModel):
    name: str
    hot_days: int
    warm_days: int
    cold_days: int
    description: str = ""


class ProfileRecord(ProfileRequest):
    model_config = ConfigDict(from_attributes=True)


class ProfileResponse(BaseResponse):
    data: ProfileRecord


# =======================
# 4. EXECUTIONS & QUEUE
# =======================

class ExecutionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    execution_id: int
    policy_id: int
    policy_name: str
    partition_id: int
    dataset: str
    partition_name: str
    action_type: str
    status: str
    size_before: Optional[int] = None
    size_after: Optional[int] = None
    space_saved: Optional[int] = None
    compression_ratio: Optional[float] = None
    location_before: Optional[str] = None
    location_after: Optional[str] = None
    codec_before: Optional[str] = None
    codec_after: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    retryable: Optional[bool] = None
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None


class ExecutionListResponse(BaseResponse):
    data: List[ExecutionRecord]


class QueueEntryRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: int
    policy_id: int
    partition_id: int
    eligible: bool
    reason: str
    evaluated_at: datetime
    status: str
    execution_id: Optional[int] = None
    last_executed_at: Optional[datetime] = None
    attempts: int = 0


class QueueResponse(BaseResponse):
    counts: Dict[str, int]
    data: List[QueueEntryRecord]


# =======================
# 5. CONTROLS
# =======================

class AutoExecutionRequest(BaseModel):
    enabled: bool


class WindowRequest(BaseModel):
    start: str = Field(..., description="HH:MM")
    end: str = Field(..., description="HH:MM; earlier than start for overnight windows")


class WeekdayWindowRequest(BaseModel):
    day: str = Field(..., description="Weekday name, e.g. sunday")
    start: Optional[str] = Field(None, description="HH:MM; omit with end to close the day")
    end: Optional[str] = Field(None, description="HH:MM")


class ConcurrencyRequest(BaseModel):
    max_concurrent_operations: int = Field(..., ge=1)


class ScopeRequest(BaseModel):
    policy_id: Optional[int] = None
    dataset: Optional[str] = None


class ExecuteRequest(ScopeRequest):
    max_operations: Optional[int] = Field(None, ge=1)


class BlockClearRequest(BaseModel):
    policy_id: int
    partition_id: Optional[int] = None


class ControlResponse(BaseResponse):
    data: Dict[str, Any] = {}
