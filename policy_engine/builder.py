"""
Policy Engine - Policy Builder.

============================================================
PURPOSE
============================================================
Typed construction and validation of lifecycle policies.

Policies are built through PolicyBuilder and validated before
they exist as Policy objects. Every defect is reported with
its own error code; all defects are collected in one pass.

ERROR CODES:
- POLICY_NAME_MISSING
- POLICY_DATASET_UNKNOWN
- POLICY_ACTION_MISSING
- POLICY_NO_CONDITIONS
- POLICY_PRIORITY_OUT_OF_RANGE
- POLICY_CODEC_REQUIRED          (COMPRESS)
- POLICY_LOCATION_REQUIRED       (MOVE)
- POLICY_CUSTOM_ACTION_REQUIRED  (CUSTOM)
- POLICY_PROFILE_UNKNOWN
- POLICY_AGE_NEGATIVE
- POLICY_SIZE_NEGATIVE

============================================================
"""

from dataclasses import replace
from typing import Callable, List, Optional

from core.constants import DEFAULT_PRIORITY, PRIORITY_MAX, PRIORITY_MIN
from core.exceptions import PolicyValidationError, ValidationIssue
from core.types import (
    ActionParameters,
    ActionType,
    Policy,
    PolicyConditions,
    SizeComparison,
    Temperature,
)


# ============================================================
# VALIDATION
# ============================================================

def collect_policy_issues(
    policy: Policy,
    dataset_exists: Optional[Callable[[str], bool]] = None,
    profile_exists: Optional[Callable[[str], bool]] = None,
) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    conditions = policy.conditions
    params = policy.params

    if not policy.name or not policy.name.strip():
        issues.append(ValidationIssue("POLICY_NAME_MISSING", "Policy name is required", "name"))

    if not policy.dataset:
        issues.append(ValidationIssue(
            "POLICY_DATASET_UNKNOWN", "Policy must target a dataset", "dataset",
        ))
    elif dataset_exists is not None and not dataset_exists(policy.dataset):
        issues.append(ValidationIssue(
            "POLICY_DATASET_UNKNOWN",
            f"Dataset {policy.dataset} is not registered",
            "dataset",
        ))

    if policy.action is None:
        issues.append(ValidationIssue("POLICY_ACTION_MISSING", "Policy action is required", "action"))

    if not conditions.configured():
        issues.append(ValidationIssue(
            "POLICY_NO_CONDITIONS",
            "Policy needs at least one condition (age, temperature, size or custom)",
            "conditions",
        ))

    if not PRIORITY_MIN <= policy.priority <= PRIORITY_MAX:
        issues.append(ValidationIssue(
            "POLICY_PRIORITY_OUT_OF_RANGE",
            f"Priority {policy.priority} is outside {PRIORITY_MIN}..{PRIORITY_MAX}",
            "priority",
        ))

    for attr in ("age_days", "age_months"):
        value = getattr(conditions, attr)
        if value is not None and value < 0:
            issues.append(ValidationIssue(
                "POLICY_AGE_NEGATIVE", f"{attr} must not be negative, got {value}", attr,
            ))

    if conditions.size_threshold_mb is not None and conditions.size_threshold_mb < 0:
        issues.append(ValidationIssue(
            "POLICY_SIZE_NEGATIVE",
            f"size_threshold_mb must not be negative, got {conditions.size_threshold_mb}",
            "size_threshold_mb",
        ))

    if policy.action == ActionType.COMPRESS and not params.codec:
        issues.append(ValidationIssue(
            "POLICY_CODEC_REQUIRED", "COMPRESS policies require a codec", "codec",
        ))
    if policy.action == ActionType.MOVE and not params.location:
        issues.append(ValidationIssue(
            "POLICY_LOCATION_REQUIRED", "MOVE policies require a target location", "location",
        ))
    if policy.action == ActionType.CUSTOM and not params.custom_action:
        issues.append(ValidationIssue(
            "POLICY_CUSTOM_ACTION_REQUIRED",
            "CUSTOM policies require a custom action name",
            "custom_action",
        ))

    if policy.profile_name and profile_exists is not None and not profile_exists(policy.profile_name):
        issues.append(ValidationIssue(
            "POLICY_PROFILE_UNKNOWN",
            f"Threshold profile {policy.profile_name} does not exist",
            "profile_name",
        ))

    return issues


def validate_policy(
    policy: Policy,
    dataset_exists: Optional[Callable[[str], bool]] = None,
    profile_exists: Optional[Callable[[str], bool]] = None,
) -> None:
    """
    Validate a policy.

    Reference checks run only when the lookups are given.

    Raises:
        PolicyValidationError: With every defect found
    """
    issues = collect_policy_issues(policy, dataset_exists, profile_exists)
    if issues:
        raise PolicyValidationError(issues, subject=policy.name or "<unnamed>")


# ============================================================
# BUILDER
# ============================================================

class PolicyBuilder:
    """
    Fluent builder for policies.

    Example:
        policy = (
            PolicyBuilder("compress_warm_sales")
            .for_dataset("sales_fact")
            .compress("QUERY HIGH")
            .when_age_months(12)
            .with_priority(200)
            .build()
        )
    """

    def __init__(self, name: str):
        self._name = name
        self._dataset = ""
        self._action: Optional[ActionType] = None
        self._conditions = PolicyConditions()
        self._params = ActionParameters()
        self._priority = DEFAULT_PRIORITY
        self._enabled = True
        self._profile_name: Optional[str] = None
        self._description = ""

    # --------------------------------------------------------
    # TARGET / ACTION
    # --------------------------------------------------------

    def for_dataset(self, dataset: str) -> "PolicyBuilder":
        self._dataset = dataset
        return self

    def compress(self, codec: str) -> "PolicyBuilder":
        self._action = ActionType.COMPRESS
        self._params.codec = codec
        return self

    def move(self, location: str, codec: Optional[str] = None) -> "PolicyBuilder":
        self._action = ActionType.MOVE
        self._params.location = location
        self._params.codec = codec
        return self

    def read_only(self) -> "PolicyBuilder":
        self._action = ActionType.READ_ONLY
        return self

    def drop(self) -> "PolicyBuilder":
        self._action = ActionType.DROP
        return self

    def truncate(self) -> "PolicyBuilder":
        self._action = ActionType.TRUNCATE
        return self

    def custom(self, action_name: str) -> "PolicyBuilder":
        self._action = ActionType.CUSTOM
        self._params.custom_action = action_name
        return self

    # --------------------------------------------------------
    # CONDITIONS
    # --------------------------------------------------------

    def when_age_days(self, days: int) -> "PolicyBuilder":
        self._conditions.age_days = days
        return self

    def when_age_months(self, months: int) -> "PolicyBuilder":
        self._conditions.age_months = months
        return self

    def when_temperature(self, temperature: Temperature) -> "PolicyBuilder":
        self._conditions.temperature = temperature
        return self

    def when_size_at_least(self, size_mb: float) -> "PolicyBuilder":
        self._conditions.size_threshold_mb = size_mb
        self._conditions.size_comparison = SizeComparison.AT_LEAST
        return self

    def when_size_at_most(self, size_mb: float) -> "PolicyBuilder":
        self._conditions.size_threshold_mb = size_mb
        self._conditions.size_comparison = SizeComparison.AT_MOST
        return self

    def when_custom(self, predicate_name: str) -> "PolicyBuilder":
        self._conditions.custom_predicate = predicate_name
        return self

    # --------------------------------------------------------
    # OPTIONS
    # --------------------------------------------------------

    def with_priority(self, priority: int) -> "PolicyBuilder":
        self._priority = priority
        return self

    def with_profile(self, profile_name: str) -> "PolicyBuilder":
        self._profile_name = profile_name
        return self

    def with_options(
        self,
        rebuild_indexes: bool = True,
        gather_stats: bool = True,
        parallel_degree: int = 1,
    ) -> "PolicyBuilder":
        self._params.rebuild_indexes = rebuild_indexes
        self._params.gather_stats = gather_stats
        self._params.parallel_degree = parallel_degree
        return self

    def disabled(self) -> "PolicyBuilder":
        self._enabled = False
        return self

    def describe(self, description: str) -> "PolicyBuilder":
        self._description = description
        return self

    def build(
        self,
        dataset_exists: Optional[Callable[[str], bool]] = None,
        profile_exists: Optional[Callable[[str], bool]] = None,
    ) -> Policy:
        """
        Build and validate.

        Raises:
            PolicyValidationError: If the policy is invalid
        """
        policy = Policy(
            name=self._name,
            dataset=self._dataset,
            action=self._action,
            conditions=replace(self._conditions),
            params=replace(self._params),
            priority=self._priority,
            enabled=self._enabled,
            profile_name=self._profile_name,
            description=self._description,
        )
        validate_policy(policy, dataset_exists, profile_exists)
        return policy
