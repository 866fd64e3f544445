"""
Execution Engine - Types.

============================================================
PURPOSE
============================================================
Type definitions shared by the execution service, the action
dispatcher and the storage adapters.

CRITICAL PRINCIPLE:
    "The Execution Engine is REACTIVE, not decision-making."
    "It executes only entries the evaluator queued as PENDING."

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# ACTION RESULT
# ============================================================

@dataclass
class ActionResult:
    """
    Partition state reported by the storage engine after an action.

    None means the attribute did not change.
    """

    location: Optional[str] = None
    """Storage location after the action."""

    codec: Optional[str] = None
    """Compression codec after the action."""

    byte_size: Optional[int] = None
    """Size after the action."""

    row_count: Optional[int] = None
    """Row count after the action."""

    read_only: Optional[bool] = None
    """Read-only flag after the action."""

    removed: bool = False
    """The partition no longer exists (DROP)."""

    details: Dict[str, Any] = field(default_factory=dict)
    """Engine-specific details, logged only."""


# ============================================================
# OUTCOMES
# ============================================================

class OutcomeStatus(Enum):
    """What happened to one queue entry during a pass."""

    SUCCEEDED = "SUCCEEDED"
    """Action completed; entry is SUCCESS."""

    FAILED = "FAILED"
    """Action failed; entry is FAILED."""

    TIMED_OUT = "TIMED_OUT"
    """Action overran its timeout; entry is FAILED/TIMEOUT."""

    SKIPPED = "SKIPPED"
    """Entry moved to SKIPPED before any action (policy gone, blocked...)."""

    BUSY = "BUSY"
    """Partition was locked by another operation; entry stays PENDING."""

    NOT_CLAIMED = "NOT_CLAIMED"
    """Another worker claimed the entry first."""

    DEFERRED = "DEFERRED"
    """Not started: window closed or stop requested; entry stays PENDING."""


@dataclass
class ActionOutcome:
    """Result of processing one queue entry."""

    entry_id: int
    policy_id: int
    partition_id: int
    status: OutcomeStatus
    execution_id: Optional[int] = None
    error_code: Optional[str] = None
    message: str = ""
    duration_seconds: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "policy_id": self.policy_id,
            "partition_id": self.partition_id,
            "status": self.status.value,
            "execution_id": self.execution_id,
            "error_code": self.error_code,
            "message": self.message,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class ExecutionPassResult:
    """Summary of one execution pass."""

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    outside_window: bool = False
    """The pass did not start because the window was closed."""

    stopped: bool = False
    """The pass did not start because the service is stopping."""

    outcomes: List[ActionOutcome] = field(default_factory=list)

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def succeeded(self) -> int:
        return self.count(OutcomeStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self.count(OutcomeStatus.FAILED) + self.count(OutcomeStatus.TIMED_OUT)

    @property
    def started(self) -> int:
        """Actions actually dispatched to the storage engine."""
        return self.succeeded + self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "outside_window": self.outside_window,
            "stopped": self.stopped,
            "started": self.started,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "counts": {status.value: self.count(status) for status in OutcomeStatus},
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }
