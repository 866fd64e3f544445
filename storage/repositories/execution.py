"""
Execution Repositories.

============================================================
PURPOSE
============================================================
Persistence for the evaluation queue, the execution audit log
and terminal-failure blocks.

RESPONSIBILITIES:
- One queue row per (policy, partition), upserted by evaluation
- Atomic queue claims (PENDING -> RUNNING compare-and-set)
- Priority-ordered pending fetch
- Append-only audit rows, completed exactly once
- Block bookkeeping for terminal failures

============================================================
"""

from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.types import ExecutionStatus, Partition, Policy, QueueStatus
from storage.models import (
    EvaluationQueueModel,
    ExecutionLogModel,
    PartitionModel,
    PolicyModel,
    PolicyPartitionBlockModel,
)
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import ImmutableRecordError


# ============================================================
# EVALUATION QUEUE
# ============================================================

class EvaluationQueueRepository(BaseRepository[EvaluationQueueModel]):
    """
    Evaluation queue.

    Status changes go through compare-and-set statements so two
    workers can never both move the same entry out of PENDING.
    """

    def __init__(self, session: Session):
        super().__init__(session, EvaluationQueueModel, "EvaluationQueueRepository")

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    def get(self, policy_id: int, partition_id: int) -> Optional[EvaluationQueueModel]:
        stmt = select(EvaluationQueueModel).where(
            EvaluationQueueModel.policy_id == policy_id,
            EvaluationQueueModel.partition_id == partition_id,
        )
        return self._execute_scalar(stmt)

    def get_entry(self, entry_id: int) -> Optional[EvaluationQueueModel]:
        return self._get_by_id(entry_id)

    def fetch_pending(
        self,
        policy_id: Optional[int] = None,
        dataset: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[EvaluationQueueModel]:
        """
        Eligible PENDING entries in execution order.

        Order: policy priority ascending, then partition age
        descending (oldest lower boundary first; unparseable
        boundaries count as oldest), then entry id.
        """
        stmt = (
            select(EvaluationQueueModel)
            .join(PolicyModel, PolicyModel.policy_id == EvaluationQueueModel.policy_id)
            .join(PartitionModel, PartitionModel.partition_id == EvaluationQueueModel.partition_id)
            .where(
                EvaluationQueueModel.status == QueueStatus.PENDING.value,
                EvaluationQueueModel.eligible.is_(True),
            )
            .order_by(
                PolicyModel.priority.asc(),
                PartitionModel.lower_bound.asc().nulls_first(),
                EvaluationQueueModel.entry_id.asc(),
            )
        )
        if policy_id is not None:
            stmt = stmt.where(EvaluationQueueModel.policy_id == policy_id)
        if dataset is not None:
            stmt = stmt.where(PartitionModel.dataset == dataset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._execute_query(stmt)

    def list_entries(
        self,
        status: Optional[QueueStatus] = None,
        policy_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[EvaluationQueueModel]:
        stmt = select(EvaluationQueueModel).order_by(EvaluationQueueModel.evaluated_at.desc())
        if status is not None:
            stmt = stmt.where(EvaluationQueueModel.status == status.value)
        if policy_id is not None:
            stmt = stmt.where(EvaluationQueueModel.policy_id == policy_id)
        return self._execute_query(stmt.limit(limit))

    def count_by_status(self) -> Dict[str, int]:
        stmt = select(EvaluationQueueModel.status, func.count()).group_by(
            EvaluationQueueModel.status
        )
        try:
            rows = self._session.execute(stmt).all()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count_by_status")
            raise
        return {status: count for status, count in rows}

    # --------------------------------------------------------
    # WRITES
    # --------------------------------------------------------

    def record(
        self,
        policy_id: int,
        partition_id: int,
        eligible: bool,
        reason: str,
        status: QueueStatus,
        evaluated_at: datetime,
    ) -> EvaluationQueueModel:
        """
        Upsert the evaluation result for a pair.

        A RUNNING entry belongs to a worker and is returned as is.
        """
        model = self.get(policy_id, partition_id)
        if model is None:
            model = EvaluationQueueModel(
                policy_id=policy_id,
                partition_id=partition_id,
                attempts=0,
            )
        elif model.status == QueueStatus.RUNNING.value:
            return model
        model.eligible = eligible
        model.reason = reason
        model.status = status.value
        model.evaluated_at = evaluated_at
        return self._save(model, "record")

    def claim(self, entry_id: int) -> bool:
        """PENDING -> RUNNING. Returns False if someone else claimed it."""
        stmt = (
            update(EvaluationQueueModel)
            .where(
                EvaluationQueueModel.entry_id == entry_id,
                EvaluationQueueModel.status == QueueStatus.PENDING.value,
            )
            .values(
                status=QueueStatus.RUNNING.value,
                attempts=EvaluationQueueModel.attempts + 1,
            )
        )
        return self._execute_update(stmt, "claim") == 1

    def transition(
        self,
        entry_id: int,
        from_status: QueueStatus,
        to_status: QueueStatus,
        reason: Optional[str] = None,
        execution_id: Optional[int] = None,
        executed_at: Optional[datetime] = None,
    ) -> bool:
        """Compare-and-set a status change."""
        values = {"status": to_status.value}
        if reason is not None:
            values["reason"] = reason
        if execution_id is not None:
            values["execution_id"] = execution_id
        if executed_at is not None:
            values["last_executed_at"] = executed_at
        stmt = (
            update(EvaluationQueueModel)
            .where(
                EvaluationQueueModel.entry_id == entry_id,
                EvaluationQueueModel.status == from_status.value,
            )
            .values(**values)
        )
        return self._execute_update(stmt, "transition") == 1

    def purge_stale(self, before: datetime) -> int:
        """Delete PENDING entries evaluated before a cutoff."""
        stmt = delete(EvaluationQueueModel).where(
            EvaluationQueueModel.status == QueueStatus.PENDING.value,
            EvaluationQueueModel.evaluated_at < before,
        )
        purged = self._execute_update(stmt, "purge_stale")
        if purged:
            self._logger.info(f"Purged {purged} stale pending queue entries")
        return purged

    def remove_for_partition(self, partition_id: int) -> int:
        """Drop queue rows of a partition that no longer exists."""
        stmt = delete(EvaluationQueueModel).where(
            EvaluationQueueModel.partition_id == partition_id,
            EvaluationQueueModel.status != QueueStatus.RUNNING.value,
        )
        return self._execute_update(stmt, "remove_for_partition")


# ============================================================
# EXECUTION LOG
# ============================================================

class ExecutionLogRepository(BaseRepository[ExecutionLogModel]):
    """
    Append-only execution audit log.

    Rows are inserted RUNNING and completed once; a second
    completion raises ImmutableRecordError.
    """

    def __init__(self, session: Session):
        super().__init__(session, ExecutionLogModel, "ExecutionLogRepository")

    def start(
        self,
        policy: Policy,
        partition: Partition,
        started_at: datetime,
    ) -> ExecutionLogModel:
        model = ExecutionLogModel(
            policy_id=policy.policy_id,
            policy_name=policy.name,
            partition_id=partition.partition_id,
            dataset=partition.dataset,
            partition_name=partition.name,
            action_type=policy.action.value,
            status=ExecutionStatus.RUNNING.value,
            size_before=partition.byte_size,
            location_before=partition.location,
            codec_before=partition.codec,
            started_at=started_at,
        )
        return self._save(model, "start")

    def complete(
        self,
        execution_id: int,
        status: ExecutionStatus,
        ended_at: datetime,
        size_after: Optional[int] = None,
        location_after: Optional[str] = None,
        codec_after: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        retryable: Optional[bool] = None,
    ) -> ExecutionLogModel:
        """
        Move a RUNNING row to SUCCESS or FAILED.

        Raises:
            ImmutableRecordError: If the row is already completed
        """
        model = self._get_by_id_or_raise(execution_id, "execution_id")
        if model.status != ExecutionStatus.RUNNING.value:
            raise ImmutableRecordError(
                repository_name=self._repository_name,
                record_id=execution_id,
                attempted_operation="complete",
            )

        duration = (ended_at - model.started_at).total_seconds()
        values = {
            "status": status.value,
            "ended_at": ended_at,
            "duration_seconds": round(duration, 3),
            "size_after": size_after,
            "location_after": location_after,
            "codec_after": codec_after,
            "error_code": error_code,
            "error_message": error_message,
            "retryable": retryable,
        }
        if size_after is not None and model.size_before is not None:
            values["space_saved"] = model.size_before - size_after
            if size_after > 0:
                values["compression_ratio"] = round(model.size_before / size_after, 2)

        stmt = (
            update(ExecutionLogModel)
            .where(
                ExecutionLogModel.execution_id == execution_id,
                ExecutionLogModel.status == ExecutionStatus.RUNNING.value,
            )
            .values(**values)
        )
        if self._execute_update(stmt, "complete") != 1:
            raise ImmutableRecordError(
                repository_name=self._repository_name,
                record_id=execution_id,
                attempted_operation="complete",
            )
        return self._get_by_id_or_raise(execution_id, "execution_id")

    def get(self, execution_id: int) -> Optional[ExecutionLogModel]:
        return self._get_by_id(execution_id)

    def query(
        self,
        dataset: Optional[str] = None,
        policy_id: Optional[int] = None,
        status: Optional[ExecutionStatus] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[ExecutionLogModel]:
        """Audit rows, newest first."""
        stmt = select(ExecutionLogModel).order_by(
            ExecutionLogModel.started_at.desc(), ExecutionLogModel.execution_id.desc()
        )
        if dataset is not None:
            stmt = stmt.where(ExecutionLogModel.dataset == dataset)
        if policy_id is not None:
            stmt = stmt.where(ExecutionLogModel.policy_id == policy_id)
        if status is not None:
            stmt = stmt.where(ExecutionLogModel.status == status.value)
        if since is not None:
            stmt = stmt.where(ExecutionLogModel.started_at >= since)
        if until is not None:
            stmt = stmt.where(ExecutionLogModel.started_at < until)
        return self._execute_query(stmt.limit(limit))

    def last_for_pair(self, policy_id: int, partition_id: int) -> Optional[ExecutionLogModel]:
        stmt = (
            select(ExecutionLogModel)
            .where(
                ExecutionLogModel.policy_id == policy_id,
                ExecutionLogModel.partition_id == partition_id,
            )
            .order_by(ExecutionLogModel.execution_id.desc())
            .limit(1)
        )
        return self._execute_scalar(stmt)

    def count_failures_since(self, since: datetime) -> int:
        stmt = select(func.count()).select_from(ExecutionLogModel).where(
            ExecutionLogModel.status == ExecutionStatus.FAILED.value,
            ExecutionLogModel.ended_at >= since,
        )
        try:
            return self._session.execute(stmt).scalar() or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count_failures_since")
            raise

    def cleanup(self, before: datetime) -> int:
        """Delete completed rows that ended before a cutoff."""
        stmt = delete(ExecutionLogModel).where(
            ExecutionLogModel.status.in_([
                ExecutionStatus.SUCCESS.value,
                ExecutionStatus.FAILED.value,
            ]),
            ExecutionLogModel.ended_at < before,
        )
        deleted = self._execute_update(stmt, "cleanup")
        self._logger.info(f"Deleted {deleted} execution log rows older than {before.date()}")
        return deleted


# ============================================================
# TERMINAL FAILURE BLOCKS
# ============================================================

class PolicyPartitionBlockRepository(BaseRepository[PolicyPartitionBlockModel]):
    """Blocks recorded after terminal execution failures."""

    def __init__(self, session: Session):
        super().__init__(session, PolicyPartitionBlockModel, "PolicyPartitionBlockRepository")

    def block(
        self,
        policy_id: int,
        partition_id: int,
        policy_version: int,
        error_code: str,
        reason: str,
        blocked_at: datetime,
        execution_id: Optional[int] = None,
    ) -> PolicyPartitionBlockModel:
        model = self._model_for_pair(policy_id, partition_id)
        if model is None:
            model = PolicyPartitionBlockModel(policy_id=policy_id, partition_id=partition_id)
        model.policy_version = policy_version
        model.error_code = error_code
        model.reason = reason
        model.execution_id = execution_id
        model.blocked_at = blocked_at
        self._logger.warning(
            f"Blocked policy {policy_id} (v{policy_version}) on partition {partition_id}: "
            f"{error_code} {reason}"
        )
        return self._save(model, "block")

    def active_block(
        self,
        policy_id: int,
        partition_id: int,
        policy_version: int,
    ) -> Optional[PolicyPartitionBlockModel]:
        """The block for a pair, if it applies to this policy version."""
        model = self._model_for_pair(policy_id, partition_id)
        if model is None or model.policy_version != policy_version:
            return None
        return model

    def clear(self, policy_id: int, partition_id: Optional[int] = None) -> int:
        stmt = delete(PolicyPartitionBlockModel).where(
            PolicyPartitionBlockModel.policy_id == policy_id
        )
        if partition_id is not None:
            stmt = stmt.where(PolicyPartitionBlockModel.partition_id == partition_id)
        cleared = self._execute_update(stmt, "clear")
        if cleared:
            self._logger.info(f"Cleared {cleared} block(s) for policy {policy_id}")
        return cleared

    def list_blocks(self, policy_id: Optional[int] = None) -> List[PolicyPartitionBlockModel]:
        stmt = select(PolicyPartitionBlockModel).order_by(PolicyPartitionBlockModel.blocked_at.desc())
        if policy_id is not None:
            stmt = stmt.where(PolicyPartitionBlockModel.policy_id == policy_id)
        return self._execute_query(stmt)

    def _model_for_pair(self, policy_id: int, partition_id: int) -> Optional[PolicyPartitionBlockModel]:
        stmt = select(PolicyPartitionBlockModel).where(
            PolicyPartitionBlockModel.policy_id == policy_id,
            PolicyPartitionBlockModel.partition_id == partition_id,
        )
        return self._execute_scalar(stmt)
