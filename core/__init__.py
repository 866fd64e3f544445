"""
Core Module Package.

Infrastructure and vocabulary every lifecycle component depends on.

Components:
- clock: Injectable time source
- exceptions: Exception hierarchy
- constants: Priority bounds, built-in profiles, retention defaults
- types: Temperatures, granularities, actions, domain records
"""

from .clock import ClockProtocol, SystemClock, MockClock
from .exceptions import (
    LifecycleException,
    ConfigurationError,
    ValidationIssue,
    ValidationError,
    ThresholdProfileError,
    TemplateValidationError,
    PolicyValidationError,
    PlanningError,
    ActionError,
    MergeError,
    BusyPartitionError,
)
from .types import (
    Temperature,
    TemperatureSource,
    AccessKind,
    Granularity,
    ActionType,
    SizeComparison,
    QueueStatus,
    ExecutionStatus,
    ThresholdProfile,
    TierDefinition,
    TierTemplate,
    Dataset,
    Partition,
    PartitionMetrics,
    AccessRecency,
    PolicyConditions,
    ActionParameters,
    Policy,
)


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "LifecycleException",
    "ConfigurationError",
    "ValidationIssue",
    "ValidationError",
    "ThresholdProfileError",
    "TemplateValidationError",
    "PolicyValidationError",
    "PlanningError",
    "ActionError",
    "MergeError",
    "BusyPartitionError",
    "Temperature",
    "TemperatureSource",
    "AccessKind",
    "Granularity",
    "ActionType",
    "SizeComparison",
    "QueueStatus",
    "ExecutionStatus",
    "ThresholdProfile",
    "TierDefinition",
    "TierTemplate",
    "Dataset",
    "Partition",
    "PartitionMetrics",
    "AccessRecency",
    "PolicyConditions",
    "ActionParameters",
    "Policy",
]
