"""
Merge Candidate Repository.

Fine-grained partitions whose consolidation was deferred or
failed, kept so the merge loop can retry them later.
"""

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from core.types import Granularity
from storage.models import MergeCandidateModel
from storage.repositories.base import BaseRepository


DEFERRED = "DEFERRED"
FAILED = "FAILED"
MERGED = "MERGED"


class MergeCandidateRepository(BaseRepository[MergeCandidateModel]):
    """One row per fine partition awaiting consolidation."""

    def __init__(self, session: Session):
        super().__init__(session, MergeCandidateModel, "MergeCandidateRepository")

    def record_attempt(
        self,
        dataset: str,
        partition_id: int,
        partition_name: str,
        granularity: Granularity,
        period_start: date,
        period_end: date,
        status: str,
        reason: str,
        attempted_at: datetime,
        merged_into: Optional[int] = None,
    ) -> MergeCandidateModel:
        model = self.get(partition_id)
        if model is None:
            model = MergeCandidateModel(
                dataset=dataset,
                partition_id=partition_id,
                attempts=0,
            )
        model.partition_name = partition_name
        model.target_granularity = granularity.value
        model.period_start = period_start
        model.period_end = period_end
        model.status = status
        model.reason = reason
        model.attempts = (model.attempts or 0) + 1
        model.last_attempt_at = attempted_at
        model.merged_into = merged_into
        return self._save(model, "record_attempt")

    def get(self, partition_id: int) -> Optional[MergeCandidateModel]:
        stmt = select(MergeCandidateModel).where(MergeCandidateModel.partition_id == partition_id)
        return self._execute_scalar(stmt)

    def list_retryable(self, max_attempts: int, limit: int = 50) -> List[MergeCandidateModel]:
        """DEFERRED/FAILED candidates that still have attempts left."""
        stmt = (
            select(MergeCandidateModel)
            .where(
                MergeCandidateModel.status.in_([DEFERRED, FAILED]),
                MergeCandidateModel.attempts < max_attempts,
            )
            .order_by(MergeCandidateModel.period_start, MergeCandidateModel.candidate_id)
            .limit(limit)
        )
        return self._execute_query(stmt)

    def list_all(self, status: Optional[str] = None) -> List[MergeCandidateModel]:
        stmt = select(MergeCandidateModel).order_by(MergeCandidateModel.candidate_id)
        if status is not None:
            stmt = stmt.where(MergeCandidateModel.status == status)
        return self._execute_query(stmt)

    def remove(self, partition_id: int) -> int:
        stmt = delete(MergeCandidateModel).where(MergeCandidateModel.partition_id == partition_id)
        return self._execute_update(stmt, "remove")
