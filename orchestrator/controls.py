"""
Orchestrator - Operational Controls.

============================================================
RESPONSIBILITY
============================================================
Operator-facing switches for a running engine.

- Enable/disable automatic execution
- Change the daily and per-weekday execution windows and the pool size
- Pause/resume policies and clear failure blocks
- Evaluate or execute now for one policy or dataset
- Report engine status

Changes are applied to the shared EngineConfig and take effect
at the start of the next pass. Execute-now bypasses the schedule
but still honors the window and the pool size.

============================================================
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from core.exceptions import ConfigurationError
from execution_engine.config import ExecutionWindow
from execution_engine.types import ExecutionPassResult
from orchestrator.registry import LifecycleComponents
from policy_engine.evaluator import EvaluationSummary


logger = logging.getLogger(__name__)


class OperationalControls:
    """Runtime controls over the lifecycle components."""

    def __init__(self, components: LifecycleComponents, orchestrator=None):
        self._components = components
        self._config = components.config
        self._orchestrator = orchestrator

    # --------------------------------------------------------
    # EXECUTION SETTINGS
    # --------------------------------------------------------

    def set_auto_execution(self, enabled: bool) -> None:
        self._config.execution.auto_execution = enabled
        logger.info(f"Automatic execution {'enabled' if enabled else 'disabled'}")

    def set_execution_window(self, start: str, end: str) -> ExecutionWindow:
        """
        Replace the execution window.

        Args:
            start: "HH:MM"
            end: "HH:MM"; may be earlier than start for overnight windows

        Raises:
            ConfigurationError: If either time cannot be parsed
        """
        window = ExecutionWindow.parse(start, end)
        self._config.execution.window = window
        logger.info(f"Execution window set to {window.describe()}")
        return window

    def set_weekday_window(
        self,
        day: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> Optional[ExecutionWindow]:
        """
        Override the window of one weekday.

        Without start and end the day is closed: no new actions
        start on it.

        Raises:
            ConfigurationError: If the day or a time cannot be parsed
        """
        window = None
        if start is not None or end is not None:
            if start is None or end is None:
                raise ConfigurationError(
                    "start and end must be given together", config_key="weekly_windows",
                )
            window = ExecutionWindow.parse(start, end)
        self._config.execution.set_weekday_window(day, window)
        logger.info(
            f"Execution window for {day.lower()} set to "
            f"{window.describe() if window else 'closed'}"
        )
        return window

    def clear_weekday_windows(self) -> None:
        """Every weekday follows the daily window again."""
        self._config.execution.weekly_windows.clear()
        logger.info("Weekday window overrides cleared")

    def set_max_concurrent_operations(self, value: int) -> None:
        if value < 1:
            raise ConfigurationError(
                f"max_concurrent_operations must be at least 1, got {value}",
                config_key="max_concurrent_operations",
            )
        self._config.execution.max_concurrent_operations = value
        logger.info(f"Worker pool size set to {value}")

    # --------------------------------------------------------
    # POLICIES
    # --------------------------------------------------------

    def pause_policy(self, policy_id: int) -> None:
        self._components.policy_service.pause_policy(policy_id)

    def resume_policy(self, policy_id: int) -> None:
        self._components.policy_service.resume_policy(policy_id)

    def clear_block(self, policy_id: int, partition_id: Optional[int] = None) -> int:
        """Lift terminal-failure blocks. Returns the number lifted."""
        cleared = self._components.policy_service.clear_block(policy_id, partition_id)
        scope = f"partition {partition_id}" if partition_id is not None else "all partitions"
        logger.info(f"Cleared {cleared} block(s) for policy {policy_id} on {scope}")
        return cleared

    # --------------------------------------------------------
    # ON DEMAND
    # --------------------------------------------------------

    def evaluate_now(
        self,
        policy_id: Optional[int] = None,
        dataset: Optional[str] = None,
    ) -> EvaluationSummary:
        """
        Evaluate outside the schedule.

        Raises:
            RecordNotFoundError: If policy_id does not exist
        """
        evaluator = self._components.evaluator
        if policy_id is not None:
            policy = self._components.repositories.policies.get_or_raise(policy_id)
            return evaluator.evaluate_policy(policy)
        if dataset is not None:
            return evaluator.evaluate_dataset(dataset)
        return evaluator.evaluate_all()

    async def execute_now(
        self,
        policy_id: Optional[int] = None,
        dataset: Optional[str] = None,
        max_operations: Optional[int] = None,
    ) -> ExecutionPassResult:
        """Run one execution pass outside the schedule."""
        return await self._components.execution_service.run_pass(
            policy_id=policy_id,
            dataset=dataset,
            max_operations=max_operations,
        )

    # --------------------------------------------------------
    # STATUS
    # --------------------------------------------------------

    def engine_status(self) -> Dict[str, Any]:
        """Stats, queue counts, staleness and current settings."""
        if self._orchestrator is not None:
            status = self._orchestrator.get_status()
        else:
            status = self._standalone_status()

        repos = self._components.repositories
        window_seconds = self._config.alerting.failure_window_seconds
        since: datetime = self._components.clock.now() - timedelta(seconds=window_seconds)
        status["recent_failures"] = repos.logs.count_failures_since(since)
        status["busy_partitions"] = [p.partition_id for p in repos.partitions.list_busy()]
        status["active_blocks"] = len(repos.blocks.list_blocks())
        status["deferred_merges"] = len(repos.merges.list_retryable(self._config.merge.max_attempts))
        return status

    def _standalone_status(self) -> Dict[str, Any]:
        clock = self._components.clock
        execution = self._config.execution
        staleness = self._components.refresher.staleness()
        return {
            "running": False,
            "current_time": clock.now().isoformat(),
            "auto_execution": execution.auto_execution,
            "execution_window": execution.window.describe(),
            "window_open": execution.is_open(clock.now()),
            "weekly_schedule": execution.weekly_schedule(),
            "max_concurrent_operations": execution.max_concurrent_operations,
            "execution": self._components.execution_service.get_statistics(),
            "queue": self._components.repositories.queue.count_by_status(),
            "temperatures": {
                "last_refresh_at": staleness.last_refresh_at.isoformat() if staleness.last_refresh_at else None,
                "seconds_since_refresh": staleness.seconds_since_refresh,
                "bound_seconds": staleness.bound_seconds,
                "stale": staleness.is_stale,
            },
        }
