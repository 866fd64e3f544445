"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Exception hierarchy shared by the planner, classifier, policy
engine, execution engine and merge scheduler.

- Validation errors are raised synchronously at write time
- Planning errors abort a plan entirely (no partial layout)
- Action errors carry a registry code and a retryable flag
- Merge errors never propagate into the triggering action

============================================================
EXCEPTION HIERARCHY
============================================================
LifecycleException (base)
├── ConfigurationError
├── ValidationError
│   ├── ThresholdProfileError
│   ├── TemplateValidationError
│   └── PolicyValidationError
├── PlanningError
├── ActionError
├── MergeError
└── BusyPartitionError

============================================================
"""

from dataclasses import dataclass
from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    """Informational."""

    MEDIUM = "medium"
    """Needs attention."""

    HIGH = "high"
    """Blocks a unit of work."""

    CRITICAL = "critical"
    """Stops a loop; operator must act."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Handled locally, work continues."""

    TRANSIENT = "transient"
    """Retry on the next pass may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Requires operator correction."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class LifecycleException(Exception):
    """
    Base exception for all lifecycle engine errors.

    All exceptions carry:
    - severity: for alerting
    - classification: for retry decisions
    - context: identifiers of the policy/partition involved
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.classification in (
            ErrorClassification.RECOVERABLE,
            ErrorClassification.TRANSIENT,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(LifecycleException):
    """
    Systemic error: the engine cannot read its own configuration
    (policy table unavailable, unknown default profile, ...).

    Stops the affected loop iteration and is alerted.
    """

    default_severity = Severity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, context=context, **kwargs)


# ============================================================
# VALIDATION ERRORS
# ============================================================

@dataclass
class ValidationIssue:
    """A single defect found while validating a definition."""

    code: str
    """Specific error code, e.g. TIER_HOT_CODEC_MISSING."""

    message: str
    """Actionable message for the operator."""

    field: Optional[str] = None
    """Offending field, when there is one."""


class ValidationError(LifecycleException):
    """
    A definition was rejected at write time.

    The first issue becomes the exception message; all issues are
    available in `errors` so an operator can fix them in one go.
    """

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, issues: List[ValidationIssue], subject: str = ""):
        if not issues:
            raise ValueError("ValidationError requires at least one issue")
        self.errors = list(issues)
        self.error_code = issues[0].code
        self.subject = subject
        message = issues[0].message
        if len(issues) > 1:
            message = f"{message} (+{len(issues) - 1} more)"
        super().__init__(
            message,
            context={
                "subject": subject,
                "codes": [issue.code for issue in issues],
            },
        )

    @property
    def codes(self) -> List[str]:
        """All error codes, in discovery order."""
        return [issue.code for issue in self.errors]


class ThresholdProfileError(ValidationError):
    """Threshold profile is not strictly ascending or otherwise invalid."""


class TemplateValidationError(ValidationError):
    """Tier template is incomplete or inconsistent."""


class PolicyValidationError(ValidationError):
    """Policy definition is incomplete or inconsistent."""


# ============================================================
# PLANNING ERRORS
# ============================================================

class PlanningError(LifecycleException):
    """Boundary planning failed; no layout is produced."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, message: str, dataset: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if dataset:
            context["dataset"] = dataset
        super().__init__(message, context=context, **kwargs)


# ============================================================
# EXECUTION ERRORS
# ============================================================

class ActionError(LifecycleException):
    """
    A tiering action failed against the storage engine.

    `error_code` is a key of execution_engine.errors.ERROR_CODES;
    the registry decides whether the failure is retryable.
    """

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        error_code: str = "STORAGE_ERROR",
        partition_id: Optional[int] = None,
        policy_id: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        context["error_code"] = error_code
        if partition_id is not None:
            context["partition_id"] = partition_id
        if policy_id is not None:
            context["policy_id"] = policy_id
        super().__init__(message, context=context, **kwargs)
        self.error_code = error_code


class MergeError(LifecycleException):
    """Partition consolidation failed; the triggering move stands."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT


class BusyPartitionError(LifecycleException):
    """The partition already has an in-flight operation."""

    default_severity = Severity.LOW
    default_classification = ErrorClassification.TRANSIENT

    def __init__(self, partition_id: int, holder: Optional[str] = None):
        super().__init__(
            f"Partition {partition_id} is busy",
            context={"partition_id": partition_id, "holder": holder},
        )
        self.partition_id = partition_id
