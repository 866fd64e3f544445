"""
Execution Engine - Queue Entry State Machine.

============================================================
PURPOSE
============================================================
Lifecycle of evaluation queue entries with strict transitions.

STATE MACHINE:

    (evaluation) ──► PENDING ──────► SKIPPED
                        │  ▲            │
                        │  └────────────┘  (eligible again)
                        ▼
                     RUNNING
                        │
               ┌────────┴────────┐
               ▼                 ▼
            SUCCESS            FAILED ──► SKIPPED (blocked or no longer eligible)
               │                 │
               └──► PENDING ◄────┘
           (re-evaluation after the minimum interval)

INVARIANTS:
- Only evaluation moves an entry into PENDING
- Only a worker's compare-and-set claim moves PENDING -> RUNNING
- RUNNING is left only by the worker that claimed the entry
- All transitions are logged

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from core.types import QueueStatus
from storage.repositories.execution import EvaluationQueueRepository


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

VALID_TRANSITIONS: Dict[QueueStatus, Set[QueueStatus]] = {
    QueueStatus.PENDING: {
        QueueStatus.RUNNING,
        QueueStatus.SKIPPED,
    },
    QueueStatus.RUNNING: {
        QueueStatus.SUCCESS,
        QueueStatus.FAILED,
    },
    QueueStatus.FAILED: {
        QueueStatus.PENDING,
        QueueStatus.SKIPPED,
    },
    QueueStatus.SKIPPED: {
        QueueStatus.PENDING,
    },
    # Requeue opens a new cycle; the executed cycle stays in the log
    QueueStatus.SUCCESS: {
        QueueStatus.PENDING,
    },
}


# ============================================================
# STATE TRANSITION EVENT
# ============================================================

@dataclass
class StateTransitionEvent:
    """Event representing a queue entry transition."""

    entry_id: int
    from_state: QueueStatus
    to_state: QueueStatus
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reason: str = ""
    details: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """Decides whether a transition is allowed, with a reason."""

    @staticmethod
    def can_transition(from_state: QueueStatus, to_state: QueueStatus) -> Tuple[bool, str]:
        if from_state == to_state:
            return True, "Same state"
        if to_state in VALID_TRANSITIONS.get(from_state, set()):
            return True, "Valid transition"
        return False, f"Invalid transition: {from_state.value} -> {to_state.value}"


# ============================================================
# QUEUE STATE MACHINE
# ============================================================

class QueueStateMachine:
    """
    Transitions of persisted queue entries.

    Every transition is a compare-and-set on the entry's current
    status, so a lost race returns False instead of overwriting
    another worker's state.
    """

    def __init__(self, queue_repo: EvaluationQueueRepository):
        self._queue = queue_repo
        self._listeners: List[Callable[[StateTransitionEvent], None]] = []
        self._history: List[StateTransitionEvent] = []
        self._history_limit = 1000

    @property
    def history(self) -> List[StateTransitionEvent]:
        return list(self._history)

    def add_listener(self, listener: Callable[[StateTransitionEvent], None]) -> None:
        self._listeners.append(listener)

    def claim(self, entry_id: int) -> bool:
        """PENDING -> RUNNING. False if another worker got there first."""
        claimed = self._queue.claim(entry_id)
        if claimed:
            self._emit(StateTransitionEvent(
                entry_id, QueueStatus.PENDING, QueueStatus.RUNNING, reason="Claimed by worker",
            ))
        else:
            logger.debug(f"Queue entry {entry_id} was not PENDING at claim")
        return claimed

    def transition(
        self,
        entry_id: int,
        from_state: QueueStatus,
        to_state: QueueStatus,
        reason: str = "",
        execution_id: Optional[int] = None,
        executed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Apply a guarded transition.

        Raises:
            ValueError: If the transition is not allowed
        """
        allowed, guard_reason = TransitionGuard.can_transition(from_state, to_state)
        if not allowed:
            raise ValueError(f"Cannot transition queue entry {entry_id}: {guard_reason}")

        changed = self._queue.transition(
            entry_id,
            from_state,
            to_state,
            reason=reason or None,
            execution_id=execution_id,
            executed_at=executed_at,
        )
        if not changed:
            logger.warning(
                f"Queue entry {entry_id} was not {from_state.value} "
                f"when moving to {to_state.value}"
            )
            return False

        self._emit(StateTransitionEvent(
            entry_id,
            from_state,
            to_state,
            reason=reason,
            details={"execution_id": execution_id} if execution_id else {},
        ))
        return True

    def mark_success(self, entry_id: int, execution_id: int, executed_at: datetime) -> bool:
        return self.transition(
            entry_id,
            QueueStatus.RUNNING,
            QueueStatus.SUCCESS,
            reason="Action completed",
            execution_id=execution_id,
            executed_at=executed_at,
        )

    def mark_failed(
        self,
        entry_id: int,
        reason: str,
        execution_id: Optional[int],
        executed_at: datetime,
    ) -> bool:
        return self.transition(
            entry_id,
            QueueStatus.RUNNING,
            QueueStatus.FAILED,
            reason=reason,
            execution_id=execution_id,
            executed_at=executed_at,
        )

    def _emit(self, event: StateTransitionEvent) -> None:
        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"State listener error: {e}")
        logger.info(
            f"Queue entry {event.entry_id}: "
            f"{event.from_state.value} -> {event.to_state.value} ({event.reason})"
        )
