"""
Execution Engine - Execution Service.

============================================================
PURPOSE
============================================================
Drains the evaluation queue: runs each PENDING action against
the storage engine under a bounded worker pool, and records the
outcome in the audit log.

============================================================
DESIGN PRINCIPLES
============================================================
- REACTIVE: Only executes entries the evaluator queued
- EXCLUSIVE: At most one in-flight operation per partition
- BOUNDED: Worker pool sized by max_concurrent_operations
- AUDITABLE: Every dispatched action has a log row
- COOPERATIVE: Stop prevents new work; in-flight work finishes

============================================================
EXECUTION WORKFLOW (per entry)
============================================================
1. Check execution window and stop flag
2. Re-check policy, partition and block
3. Acquire partition busy lock (compare-and-set)
4. Claim entry PENDING -> RUNNING (compare-and-set)
5. Write RUNNING log row
6. Dispatch action, bounded by its timeout
7. Complete log row SUCCESS/FAILED with before/after metrics
8. Move entry to SUCCESS/FAILED; block the pair on a terminal error
9. Release busy lock (after the log is terminal)
10. Successful MOVE: notify the merge scheduler

A timed-out action is recorded FAILED/TIMEOUT and its worker
is released; the partition stays busy until the storage call
actually returns.

============================================================
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Set

from core.clock import ClockProtocol
from core.exceptions import ActionError
from core.types import ActionType, ExecutionStatus, Partition, Policy, QueueStatus
from storage.repositories.definitions import (
    DatasetRepository,
    PolicyRepository,
    TierTemplateRepository,
)
from storage.repositories.execution import (
    EvaluationQueueRepository,
    ExecutionLogRepository,
    PolicyPartitionBlockRepository,
)
from storage.repositories.partitions import PartitionRepository

from .actions import ActionDispatcher, CustomActionRegistry
from .adapters.base import StorageEngine
from .alerting import (
    FailureRateMonitor,
    TelegramAlerter,
    create_action_failed_alert,
    create_timeout_alert,
)
from .config import EngineConfig
from .errors import classify_exception, get_error_info
from .state_machine import QueueStateMachine
from .types import ActionOutcome, ActionResult, ExecutionPassResult, OutcomeStatus


logger = logging.getLogger(__name__)


# ============================================================
# EXECUTION SERVICE
# ============================================================

class ExecutionService:
    """
    Main execution service.

    AUTHORITY BOUNDARIES:
    - CAN: Run queued actions, block failing pairs, alert
    - MUST NOT: Decide eligibility (the evaluator does)
    - MUST NOT: Retry a failure within the same pass
    - MUST NOT: Interrupt a storage call in progress
    """

    def __init__(
        self,
        storage_engine: StorageEngine,
        policy_repo: PolicyRepository,
        partition_repo: PartitionRepository,
        queue_repo: EvaluationQueueRepository,
        log_repo: ExecutionLogRepository,
        block_repo: PolicyPartitionBlockRepository,
        dataset_repo: DatasetRepository,
        template_repo: TierTemplateRepository,
        clock: ClockProtocol,
        config: EngineConfig,
        alerter: Optional[TelegramAlerter] = None,
        merge_scheduler=None,
        custom_actions: Optional[CustomActionRegistry] = None,
    ):
        self._engine = storage_engine
        self._policies = policy_repo
        self._partitions = partition_repo
        self._queue = queue_repo
        self._logs = log_repo
        self._blocks = block_repo
        self._clock = clock
        self._config = config
        self._alerter = alerter
        self._merge_scheduler = merge_scheduler

        self._dispatcher = ActionDispatcher(
            storage_engine, dataset_repo, template_repo, custom_actions,
        )
        self._state_machine = QueueStateMachine(queue_repo)

        self._failure_monitor: Optional[FailureRateMonitor] = None
        if alerter is not None:
            self._failure_monitor = FailureRateMonitor(
                alerter,
                clock,
                failure_threshold=config.alerting.failure_threshold,
                window_seconds=config.alerting.failure_window_seconds,
                min_alert_interval_seconds=config.alerting.min_alert_interval_seconds,
            )

        # Service state
        self._running = False
        self._stop_requested = False
        self._wake = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._pass_lock = asyncio.Lock()

        # Storage calls still running after their timeout
        self._orphans: Set[asyncio.Task] = set()
        # Merge hooks of MOVEs that completed after their timeout
        self._late_merges: Set[asyncio.Task] = set()

        # Statistics
        self._stats = {
            "passes": 0,
            "dispatched": 0,
            "succeeded": 0,
            "failed": 0,
            "timed_out": 0,
            "blocked": 0,
        }

    @property
    def custom_actions(self) -> CustomActionRegistry:
        return self._dispatcher.custom_actions

    @property
    def state_machine(self) -> QueueStateMachine:
        return self._state_machine

    @property
    def is_running(self) -> bool:
        return self._running

    def set_merge_scheduler(self, merge_scheduler) -> None:
        self._merge_scheduler = merge_scheduler

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """Start the background execution loop."""
        if self._running:
            return
        logger.info("Starting Execution Service...")
        self._stop_requested = False
        self._wake = asyncio.Event()
        self._running = True
        self._loop_task = asyncio.create_task(self._execution_loop())
        logger.info("Execution Service started")

    async def stop(self) -> None:
        """
        Stop accepting new work.

        Waits for the current pass: actions already dispatched
        finish, entries not yet started stay PENDING. A service that
        was never started only ends a manual pass in progress and
        keeps accepting manual passes afterwards.
        """
        if not self._running:
            if self._pass_lock.locked():
                self._stop_requested = True
                async with self._pass_lock:
                    self._stop_requested = False
            await self._wait_for_late_merges()
            return
        logger.info("Stopping Execution Service...")
        self._stop_requested = True
        self._running = False
        self._wake.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        await self._wait_for_late_merges()
        if self._orphans:
            logger.warning(
                f"{len(self._orphans)} timed-out storage call(s) still running; "
                f"their partitions stay busy until they return"
            )
        logger.info("Execution Service stopped")

    async def _execution_loop(self) -> None:
        """
        Background loop: one batch per execution interval.

        When a batch fills up and work remains, the next batch
        follows after the batch cooldown instead of a full interval.
        """
        while self._running:
            delay = self._config.scheduler.execution_interval_seconds
            try:
                if self._config.execution.auto_execution:
                    batch_size = self._config.scheduler.execution_max_operations
                    result = await self.run_pass(max_operations=batch_size)
                    if result.started >= batch_size and self.pending_count() > 0:
                        delay = self._config.execution.batch_cooldown_seconds
                        logger.info(f"Batch of {batch_size} done; next batch in {delay:.0f}s")
                else:
                    logger.debug("Auto execution disabled; execution loop idle")
            except Exception as e:
                logger.error(f"Execution loop error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    # --------------------------------------------------------
    # PASS
    # --------------------------------------------------------

    async def run_pass(
        self,
        policy_id: Optional[int] = None,
        dataset: Optional[str] = None,
        max_operations: Optional[int] = None,
    ) -> ExecutionPassResult:
        """
        Execute PENDING entries, optionally for one policy or dataset.

        Concurrency and window are read from the injected config at
        the start of the pass.
        """
        result = ExecutionPassResult(started_at=self._clock.now())

        if self._stop_requested:
            result.stopped = True
            result.completed_at = self._clock.now()
            logger.info("Execution pass not started: service is stopping")
            return result

        execution = self._config.execution
        now = self._clock.now()
        if not execution.is_open(now):
            result.outside_window = True
            result.completed_at = now
            logger.info(
                f"Execution pass not started: outside window {execution.describe_window(now.weekday())}"
            )
            return result

        async with self._pass_lock:
            entries = self._queue.fetch_pending(policy_id, dataset, max_operations)
            pool_size = max(1, self._config.execution.max_concurrent_operations)
            semaphore = asyncio.Semaphore(pool_size)
            logger.info(
                f"Execution pass: {len(entries)} pending entries, pool size {pool_size}"
            )

            workers = [
                asyncio.create_task(
                    self._worker(entry.entry_id, entry.policy_id, entry.partition_id, semaphore)
                )
                for entry in entries
            ]
            outcomes = await asyncio.gather(*workers)

        result.outcomes = list(outcomes)
        result.completed_at = self._clock.now()
        self._stats["passes"] += 1
        logger.info(
            f"Execution pass complete: {result.started} started, "
            f"{result.succeeded} succeeded, {result.failed} failed, "
            f"{result.count(OutcomeStatus.DEFERRED)} deferred"
        )
        return result

    async def _worker(
        self,
        entry_id: int,
        policy_id: int,
        partition_id: int,
        semaphore: asyncio.Semaphore,
    ) -> ActionOutcome:
        async with semaphore:
            if self._stop_requested:
                return ActionOutcome(
                    entry_id, policy_id, partition_id, OutcomeStatus.DEFERRED,
                    message="Stop requested",
                )
            execution = self._config.execution
            now = self._clock.now()
            if not execution.is_open(now):
                return ActionOutcome(
                    entry_id, policy_id, partition_id, OutcomeStatus.DEFERRED,
                    message=f"Execution window {execution.describe_window(now.weekday())} closed",
                )
            try:
                return await self._execute_entry(entry_id, policy_id, partition_id)
            except Exception as e:
                logger.error(f"Queue entry {entry_id} could not be executed: {e}", exc_info=True)
                return ActionOutcome(
                    entry_id, policy_id, partition_id, OutcomeStatus.FAILED,
                    error_code="INTERNAL_ERROR", message=str(e),
                )

    # --------------------------------------------------------
    # ENTRY
    # --------------------------------------------------------

    async def _execute_entry(
        self,
        entry_id: int,
        policy_id: int,
        partition_id: int,
    ) -> ActionOutcome:
        policy = self._policies.get(policy_id)
        if policy is None or not policy.enabled:
            reason = "Policy no longer exists" if policy is None else "Policy is disabled"
            return self._skip(entry_id, policy_id, partition_id, reason)

        partition = self._partitions.get(partition_id)
        if partition is None:
            return self._skip(entry_id, policy_id, partition_id, "Partition no longer exists")

        block = self._blocks.active_block(policy_id, partition_id, policy.version)
        if block is not None:
            return self._skip(
                entry_id, policy_id, partition_id,
                f"Blocked after {block.error_code}: {block.reason}",
            )

        token = f"{self._config.execution.busy_token_prefix}-{uuid.uuid4().hex[:12]}"
        if not self._partitions.try_acquire(partition_id, token, self._clock.now()):
            logger.info(
                f"Partition {partition.dataset}.{partition.name} busy; "
                f"entry {entry_id} stays pending"
            )
            return ActionOutcome(
                entry_id, policy_id, partition_id, OutcomeStatus.BUSY,
                message="Partition busy",
            )

        release_lock = True
        outcome: Optional[ActionOutcome] = None
        try:
            # The pair may have been blocked, or the partition changed,
            # between fetch and lock.
            partition = self._partitions.get(partition_id) or partition
            block = self._blocks.active_block(policy_id, partition_id, policy.version)
            if block is not None:
                outcome = self._skip(
                    entry_id, policy_id, partition_id,
                    f"Blocked after {block.error_code}: {block.reason}",
                )
                return outcome

            if not self._state_machine.claim(entry_id):
                outcome = ActionOutcome(
                    entry_id, policy_id, partition_id, OutcomeStatus.NOT_CLAIMED,
                    message="Entry claimed by another worker",
                )
                return outcome

            outcome, release_lock = await self._run_action(entry_id, policy, partition, token)
        finally:
            if release_lock:
                self._partitions.release(partition_id, token)

        if policy.action == ActionType.MOVE and outcome.status == OutcomeStatus.SUCCEEDED:
            await self._after_move(partition_id)
        return outcome

    async def _run_action(
        self,
        entry_id: int,
        policy: Policy,
        partition: Partition,
        token: str,
    ):
        """Returns (outcome, release_lock)."""
        log = self._logs.start(policy, partition, self._clock.now())
        execution_id = log.execution_id
        self._stats["dispatched"] += 1
        timeout = self._config.timeout.for_action(policy.action)

        task = asyncio.ensure_future(self._dispatcher.dispatch(policy, partition))
        try:
            action_result: ActionResult = await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            await self._on_timeout(entry_id, policy, partition, token, task, execution_id, timeout)
            return ActionOutcome(
                entry_id, policy.policy_id, partition.partition_id, OutcomeStatus.TIMED_OUT,
                execution_id=execution_id, error_code="TIMEOUT",
                message=f"Timed out after {timeout:.0f}s",
            ), False
        except Exception as e:
            outcome = await self._on_failure(entry_id, policy, partition, execution_id, e)
            return outcome, True

        outcome = self._on_success(entry_id, policy, partition, execution_id, action_result)
        return outcome, not action_result.removed

    # --------------------------------------------------------
    # OUTCOMES
    # --------------------------------------------------------

    def _on_success(
        self,
        entry_id: int,
        policy: Policy,
        partition: Partition,
        execution_id: int,
        action_result: ActionResult,
    ) -> ActionOutcome:
        ended_at = self._clock.now()
        location_after = action_result.location or partition.location
        codec_after = action_result.codec or partition.codec
        size_after = action_result.byte_size if action_result.byte_size is not None else partition.byte_size

        completed = self._logs.complete(
            execution_id,
            ExecutionStatus.SUCCESS,
            ended_at,
            size_after=size_after,
            location_after=None if action_result.removed else location_after,
            codec_after=None if action_result.removed else codec_after,
        )
        self._state_machine.mark_success(entry_id, execution_id, ended_at)

        if action_result.removed:
            self._partitions.delete(partition.partition_id)
            self._queue.remove_for_partition(partition.partition_id)
        else:
            self._apply_result(partition.partition_id, action_result)

        self._stats["succeeded"] += 1
        logger.info(
            f"{policy.action.value} on {partition.dataset}.{partition.name} succeeded "
            f"(policy {policy.name}, execution {execution_id}, "
            f"{completed.duration_seconds}s)"
        )
        return ActionOutcome(
            entry_id, policy.policy_id, partition.partition_id, OutcomeStatus.SUCCEEDED,
            execution_id=execution_id,
            message="Action completed",
            duration_seconds=completed.duration_seconds,
        )

    async def _on_failure(
        self,
        entry_id: int,
        policy: Policy,
        partition: Partition,
        execution_id: int,
        error: Exception,
    ) -> ActionOutcome:
        code = classify_exception(error)
        info = get_error_info(code)
        message = error.message if isinstance(error, ActionError) else str(error)
        ended_at = self._clock.now()

        completed = self._logs.complete(
            execution_id,
            ExecutionStatus.FAILED,
            ended_at,
            error_code=code,
            error_message=message,
            retryable=info.is_retryable,
        )
        self._state_machine.mark_failed(entry_id, f"{code}: {message}", execution_id, ended_at)
        self._stats["failed"] += 1

        if info.is_retryable:
            logger.warning(
                f"{policy.action.value} on {partition.dataset}.{partition.name} failed "
                f"with retryable {code}: {message}"
            )
        else:
            self._blocks.block(
                policy.policy_id,
                partition.partition_id,
                policy.version,
                code,
                message,
                ended_at,
                execution_id=execution_id,
            )
            self._stats["blocked"] += 1
            logger.error(
                f"{policy.action.value} on {partition.dataset}.{partition.name} failed "
                f"terminally with {code}: {message}; pair blocked until policy v{policy.version} "
                f"is corrected"
            )
            if self._alerter is not None and self._config.alerting.alert_on_terminal_failure:
                await self._alerter.send_alert(create_action_failed_alert(
                    partition.dataset, partition.name, policy.name, code, message,
                ))

        await self._record_failure(code)
        return ActionOutcome(
            entry_id, policy.policy_id, partition.partition_id, OutcomeStatus.FAILED,
            execution_id=execution_id,
            error_code=code,
            message=message,
            duration_seconds=completed.duration_seconds,
        )

    async def _on_timeout(
        self,
        entry_id: int,
        policy: Policy,
        partition: Partition,
        token: str,
        task: asyncio.Future,
        execution_id: int,
        timeout: float,
    ) -> None:
        ended_at = self._clock.now()
        message = f"{policy.action.value} exceeded its {timeout:.0f}s timeout"
        self._logs.complete(
            execution_id,
            ExecutionStatus.FAILED,
            ended_at,
            error_code="TIMEOUT",
            error_message=message,
            retryable=True,
        )
        self._state_machine.mark_failed(entry_id, f"TIMEOUT: {message}", execution_id, ended_at)
        self._stats["timed_out"] += 1
        logger.error(
            f"{message} on {partition.dataset}.{partition.name}; "
            f"partition stays busy until the storage call returns"
        )

        self._orphans.add(task)
        task.add_done_callback(
            lambda done: self._on_orphan_done(done, policy, partition, token)
        )

        if self._alerter is not None and self._config.alerting.alert_on_timeout:
            await self._alerter.send_alert(create_timeout_alert(
                partition.dataset, partition.name, policy.name, policy.action.value, timeout,
            ))
        await self._record_failure("TIMEOUT")

    def _on_orphan_done(
        self,
        task: asyncio.Future,
        policy: Policy,
        partition: Partition,
        token: str,
    ) -> None:
        """
        A timed-out storage call finally returned: sync metadata and
        free the partition. A late MOVE still goes through the merge hook.
        """
        self._orphans.discard(task)
        if task.cancelled():
            logger.warning(f"Timed-out action on {partition.dataset}.{partition.name} was cancelled")
        elif task.exception() is not None:
            logger.warning(
                f"Timed-out action on {partition.dataset}.{partition.name} "
                f"finished with error: {task.exception()}"
            )
        else:
            result: ActionResult = task.result()
            logger.info(
                f"Timed-out action on {partition.dataset}.{partition.name} finished late"
            )
            if result.removed:
                self._partitions.delete(partition.partition_id)
                self._queue.remove_for_partition(partition.partition_id)
                return
            self._apply_result(partition.partition_id, result)
            self._partitions.release(partition.partition_id, token)
            if policy.action == ActionType.MOVE:
                merge = asyncio.ensure_future(self._after_move(partition.partition_id))
                self._late_merges.add(merge)
                merge.add_done_callback(self._late_merges.discard)
            return
        self._partitions.release(partition.partition_id, token)

    async def _wait_for_late_merges(self) -> None:
        if self._late_merges:
            await asyncio.gather(*list(self._late_merges))

    async def _after_move(self, partition_id: int) -> None:
        """Post-action hook; never changes the MOVE outcome."""
        if self._merge_scheduler is None or not self._config.merge.enabled:
            return
        try:
            await self._merge_scheduler.on_move_completed(partition_id)
        except Exception as e:
            logger.error(f"Merge hook failed for partition {partition_id}: {e}", exc_info=True)

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    def _skip(self, entry_id: int, policy_id: int, partition_id: int, reason: str) -> ActionOutcome:
        self._state_machine.transition(entry_id, QueueStatus.PENDING, QueueStatus.SKIPPED, reason)
        return ActionOutcome(
            entry_id, policy_id, partition_id, OutcomeStatus.SKIPPED, message=reason,
        )

    def _apply_result(self, partition_id: int, result: ActionResult) -> None:
        self._partitions.apply_action_result(
            partition_id,
            location=result.location,
            codec=result.codec,
            byte_size=result.byte_size,
            row_count=result.row_count,
            read_only=result.read_only,
        )

    async def _record_failure(self, code: str) -> None:
        if self._failure_monitor is not None:
            await self._failure_monitor.record_failure(code)

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    def get_statistics(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self._stats)
        stats["orphaned_actions"] = len(self._orphans)
        stats["running"] = self._running
        return stats

    def pending_count(self) -> int:
        return len(self._queue.fetch_pending())
