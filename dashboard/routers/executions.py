from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from core.types import ExecutionStatus, QueueStatus
from dashboard.dependencies import get_components
from dashboard.schemas import (
    ExecutionListResponse,
    ExecutionRecord,
    QueueEntryRecord,
    QueueResponse,
)
from orchestrator.registry import LifecycleComponents

router = APIRouter(tags=["Executions"])


@router.get("/executions", response_model=ExecutionListResponse)
async def list_executions(
    dataset: Optional[str] = None,
    policy_id: Optional[int] = None,
    status: Optional[ExecutionStatus] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    components: LifecycleComponents = Depends(get_components),
):
    """
    Execution audit log, newest first.
    """
    rows = components.repositories.logs.query(
        dataset=dataset,
        policy_id=policy_id,
        status=status,
        since=since,
        until=until,
        limit=limit,
    )
    return ExecutionListResponse(
        success=True,
        data=[ExecutionRecord.model_validate(row) for row in rows],
    )


@router.get("/queue", response_model=QueueResponse)
async def list_queue(
    status: Optional[QueueStatus] = None,
    policy_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=1000),
    components: LifecycleComponents = Depends(get_components),
):
    """
    Evaluation queue entries with per-status counts.
    """
    queue = components.repositories.queue
    rows = queue.list_entries(status=status, policy_id=policy_id, limit=limit)
    return QueueResponse(
        success=True,
        counts=queue.count_by_status(),
        data=[QueueEntryRecord.model_validate(row) for row in rows],
    )
