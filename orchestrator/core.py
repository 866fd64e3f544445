"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Runs the lifecycle engine as a long-lived process.

- Owns the periodic loops (refresh, evaluation, merge retry,
  log cleanup) and starts the execution service loop
- Controls startup and shutdown order
- Handles signals (SIGINT, SIGTERM)
- Escalates configuration errors as CRITICAL alerts

============================================================
ARCHITECTURAL POSITION
============================================================
- This orchestrator has NO lifecycle logic of its own
- It does NOT decide eligibility or run actions
- It ONLY schedules the components and reports on them

Every loop re-reads EngineConfig at each iteration, so operator
changes to intervals take effect after the current sleep.

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import ConfigurationError
from execution_engine.alerting import (
    Alert,
    create_configuration_alert,
    create_stale_temperatures_alert,
)
from orchestrator.registry import LifecycleComponents


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
) -> logging.Logger:
    """
    Set up structured logging on the root logger.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        The orchestrator logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


# ============================================================
# LOOP STATE
# ============================================================

@dataclass
class LoopState:
    """Bookkeeping for one periodic loop."""

    name: str
    runs: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "runs": self.runs,
            "failures": self.failures,
            "consecutive_failures": self.consecutive_failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }


# ============================================================
# ORCHESTRATOR
# ============================================================

class LifecycleOrchestrator:
    """
    Schedules the lifecycle components.

    Loops:
        refresh       -> TemperatureRefresher.refresh()
        evaluation    -> PolicyEvaluator.evaluate_all()
        merge_retry   -> MergeScheduler.retry_deferred()
        log_cleanup   -> ExecutionLogRepository.cleanup()
    Execution runs in ExecutionService's own loop.
    """

    UNHEALTHY_AFTER_FAILURES = 3

    def __init__(self, components: LifecycleComponents):
        self._components = components
        self._config = components.config
        self._clock = components.clock
        self._logger = logging.getLogger("orchestrator")

        self._running = False
        self._stopping = False
        self._shutdown_requested = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._tasks: Dict[str, asyncio.Task] = {}
        self._loops: Dict[str, LoopState] = {
            name: LoopState(name)
            for name in ("refresh", "evaluation", "merge_retry", "log_cleanup")
        }
        self._signals_installed = False

    @property
    def components(self) -> LifecycleComponents:
        return self._components

    @property
    def is_running(self) -> bool:
        return self._running

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic loops and the execution service."""
        if self._running:
            return
        self._logger.info("=== LIFECYCLE ENGINE STARTING ===")
        self._shutdown_requested = False
        self._shutdown_event = asyncio.Event()

        scheduler = self._config.scheduler
        jobs = {
            "refresh": (self.run_refresh, lambda: scheduler.refresh_interval_seconds),
            "evaluation": (self.run_evaluation, lambda: scheduler.evaluation_interval_seconds),
            "merge_retry": (self.run_merge_retry, lambda: scheduler.merge_retry_interval_seconds),
            "log_cleanup": (self.run_log_cleanup, lambda: scheduler.log_cleanup_interval_seconds),
        }
        for name, (job, interval) in jobs.items():
            self._tasks[name] = asyncio.create_task(self._run_loop(name, job, interval))

        await self._components.execution_service.start()
        self._running = True
        self._logger.info(
            f"=== LIFECYCLE ENGINE STARTED === auto_execution={self._config.execution.auto_execution} "
            f"window={self._config.execution.window.describe()} "
            f"pool={self._config.execution.max_concurrent_operations}"
        )

    async def stop(self) -> None:
        """
        Stop the loops and the execution service.

        In-flight actions finish; nothing new starts.
        """
        if not self._running or self._stopping:
            return
        self._stopping = True
        self._logger.info("=== LIFECYCLE ENGINE STOPPING ===")
        self._shutdown_requested = True
        self._shutdown_event.set()

        await self._components.execution_service.stop()
        for name, task in self._tasks.items():
            await task
            self._logger.debug(f"Loop {name} stopped")
        self._tasks.clear()

        self._restore_signal_handlers()
        await self._components.alerter.close()
        self._running = False
        self._stopping = False
        self._logger.info("=== LIFECYCLE ENGINE STOPPED ===")

    async def run_forever(self) -> None:
        """Start, then block until a signal or stop() ends the run."""
        if not self._running:
            await self.start()
        self._install_signal_handlers()
        await self._shutdown_event.wait()
        await self.stop()

    # --------------------------------------------------------
    # Jobs
    # --------------------------------------------------------

    async def run_refresh(self):
        result = await self._components.refresher.refresh()
        for error in result.errors:
            self._logger.warning(f"Refresh error: {error}")
        return result

    async def run_evaluation(self):
        await self.check_staleness()
        return self._components.evaluator.evaluate_all()

    async def run_merge_retry(self):
        if not self._config.merge.enabled:
            return {}
        return await self._components.merge_scheduler.retry_deferred()

    async def run_log_cleanup(self) -> int:
        retention = timedelta(days=self._config.scheduler.log_retention_days)
        return self._components.repositories.logs.cleanup(self._clock.now() - retention)

    async def check_staleness(self) -> bool:
        """Alert when access-based temperatures are older than the bound."""
        staleness = self._components.refresher.staleness()
        if staleness.is_stale:
            self._logger.warning(
                f"Temperatures are stale: last refresh {staleness.last_refresh_at}, "
                f"bound {staleness.bound_seconds}s"
            )
            await self._send_alert(create_stale_temperatures_alert(
                staleness.seconds_since_refresh, staleness.bound_seconds,
            ))
        return staleness.is_stale

    # --------------------------------------------------------
    # Loop runner
    # --------------------------------------------------------

    async def _run_loop(
        self,
        name: str,
        job: Callable[[], Awaitable[Any]],
        interval: Callable[[], float],
    ) -> None:
        state = self._loops[name]
        while not self._shutdown_requested:
            await self._run_iteration(state, job)
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval())
            except asyncio.TimeoutError:
                pass

    async def _run_iteration(self, state: LoopState, job: Callable[[], Awaitable[Any]]) -> None:
        state.last_run_at = self._clock.now()
        state.runs += 1
        try:
            await job()
            state.consecutive_failures = 0
            state.last_error = None
        except ConfigurationError as e:
            self._record_failure(state, e)
            self._logger.critical(f"Configuration error in {state.name} loop: {e}")
            await self._send_alert(create_configuration_alert(str(e), component=state.name))
        except Exception as e:
            self._record_failure(state, e)
            self._logger.error(f"Error in {state.name} loop: {e}", exc_info=True)

    @staticmethod
    def _record_failure(state: LoopState, error: Exception) -> None:
        state.failures += 1
        state.consecutive_failures += 1
        state.last_error = str(error)

    # --------------------------------------------------------
    # Signal Handling
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._request_shutdown, sig)
        self._signals_installed = True

    def _restore_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows)."""
        self._request_shutdown(signal.Signals(signum))

    def _request_shutdown(self, sig: signal.Signals) -> None:
        self._logger.info(f"Received signal {sig.name}")
        self._shutdown_requested = True
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    # --------------------------------------------------------
    # Alerts
    # --------------------------------------------------------

    async def _send_alert(self, alert: Alert) -> None:
        """Send an alert; delivery failures are logged only."""
        try:
            await self._components.alerter.send_alert(alert)
        except Exception as e:
            self._logger.error(f"Failed to send alert: {e}")

    # --------------------------------------------------------
    # Health & Status
    # --------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Get engine status."""
        staleness = self._components.refresher.staleness()
        execution = self._config.execution
        return {
            "running": self._running,
            "shutdown_requested": self._shutdown_requested,
            "current_time": self._clock.now().isoformat(),
            "auto_execution": execution.auto_execution,
            "execution_window": execution.window.describe(),
            "window_open": execution.is_open(self._clock.now()),
            "weekly_schedule": execution.weekly_schedule(),
            "max_concurrent_operations": execution.max_concurrent_operations,
            "loops": {name: state.to_dict() for name, state in self._loops.items()},
            "execution": self._components.execution_service.get_statistics(),
            "queue": self._components.repositories.queue.count_by_status(),
            "temperatures": {
                "last_refresh_at": staleness.last_refresh_at.isoformat() if staleness.last_refresh_at else None,
                "seconds_since_refresh": staleness.seconds_since_refresh,
                "bound_seconds": staleness.bound_seconds,
                "stale": staleness.is_stale,
            },
        }

    async def health_check(self) -> Dict[str, Any]:
        """Check the metadata store and the loops."""
        database_ok = True
        try:
            self._components.repositories.partitions.session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            self._logger.error(f"Metadata store health check failed: {e}")
            database_ok = False

        failing = [
            name for name, state in self._loops.items()
            if state.consecutive_failures >= self.UNHEALTHY_AFTER_FAILURES
        ]
        dead = [
            name for name, task in self._tasks.items()
            if task.done() and not self._shutdown_requested
        ]
        stale = self._components.refresher.staleness().is_stale

        return {
            "healthy": database_ok and not failing and not dead,
            "running": self._running,
            "database": database_ok,
            "failing_loops": failing,
            "dead_loops": dead,
            "temperatures_stale": stale,
        }


# ============================================================
# ORCHESTRATOR FACTORY
# ============================================================

def create_orchestrator(components: LifecycleComponents) -> LifecycleOrchestrator:
    """
    Factory function to create an orchestrator.

    Args:
        components: Wired components (see orchestrator.registry.build_components)

    Returns:
        Configured LifecycleOrchestrator instance
    """
    return LifecycleOrchestrator(components)


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "setup_logging",
    "LoopState",
    "LifecycleOrchestrator",
    "create_orchestrator",
]
