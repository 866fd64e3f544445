"""
Execution Engine Package.

============================================================
PURPOSE
============================================================
Runs queued tiering actions against the storage engine.

CRITICAL PRINCIPLE:
    "The Execution Engine is REACTIVE, not decision-making."
    "It executes only entries the evaluator queued as PENDING."

AUTHORITY BOUNDARIES:
    CAN:
        - Recompress, relocate, seal, drop, truncate partitions
        - Run registered custom actions
        - Block a policy/partition pair after a terminal failure

    MUST NOT:
        - Decide eligibility
        - Retry within the same pass
        - Run two operations on one partition at once

============================================================
MODULES
============================================================
- types: Action results, outcomes, pass summaries
- config: Engine configuration (window, pool, timeouts, loops)
- errors: Error code registry
- state_machine: Queue entry lifecycle
- adapters: Storage engine / metadata provider interfaces
- actions: Action dispatch and custom actions
- execution_service: Worker pool over the evaluation queue
- alerting: Telegram alerts and failure-rate monitor

============================================================
"""

from .actions import ActionDispatcher, CustomActionRegistry
from .adapters import (
    InMemoryEngineConfig,
    InMemoryStorageEngine,
    MetadataProvider,
    StorageEngine,
)
from .alerting import (
    Alert,
    AlertSeverity,
    AlertType,
    FailureRateMonitor,
    TelegramAlerter,
    TelegramAlerterConfig,
)
from .config import (
    AlertingConfig,
    EngineConfig,
    EvaluationConfig,
    ExecutionConfig,
    ExecutionWindow,
    MergeConfig,
    SchedulerConfig,
    TimeoutConfig,
)
from .errors import (
    ERROR_CODES,
    RETRYABLE_ERROR_CODES,
    TERMINAL_ERROR_CODES,
    ErrorCodeInfo,
    classify_exception,
    get_error_info,
    is_retryable,
)
from .execution_service import ExecutionService
from .state_machine import (
    VALID_TRANSITIONS,
    QueueStateMachine,
    StateTransitionEvent,
    TransitionGuard,
)
from .types import ActionOutcome, ActionResult, ExecutionPassResult, OutcomeStatus


__all__ = [
    "ActionDispatcher",
    "CustomActionRegistry",
    "InMemoryEngineConfig",
    "InMemoryStorageEngine",
    "MetadataProvider",
    "StorageEngine",
    "Alert",
    "AlertSeverity",
    "AlertType",
    "FailureRateMonitor",
    "TelegramAlerter",
    "TelegramAlerterConfig",
    "AlertingConfig",
    "EngineConfig",
    "EvaluationConfig",
    "ExecutionConfig",
    "ExecutionWindow",
    "MergeConfig",
    "SchedulerConfig",
    "TimeoutConfig",
    "ERROR_CODES",
    "RETRYABLE_ERROR_CODES",
    "TERMINAL_ERROR_CODES",
    "ErrorCodeInfo",
    "classify_exception",
    "get_error_info",
    "is_retryable",
    "ExecutionService",
    "VALID_TRANSITIONS",
    "QueueStateMachine",
    "StateTransitionEvent",
    "TransitionGuard",
    "ActionOutcome",
    "ActionResult",
    "ExecutionPassResult",
    "OutcomeStatus",
]
