from fastapi import APIRouter, Depends

from dashboard.dependencies import get_orchestrator
from dashboard.schemas import HealthDetail, HealthResponse
from orchestrator.core import LifecycleOrchestrator

router = APIRouter(tags=["System Health"])


@router.get("/health", response_model=HealthResponse)
async def get_health(orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)):
    """
    Metadata store reachability, loop health and temperature staleness.
    """
    data = await orchestrator.health_check()
    return HealthResponse(success=data["healthy"], data=HealthDetail(**data))
