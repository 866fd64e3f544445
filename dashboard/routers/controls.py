from fastapi import APIRouter, Depends

from dashboard.dependencies import get_controls
from dashboard.schemas import (
    AutoExecutionRequest,
    BlockClearRequest,
    ConcurrencyRequest,
    ControlResponse,
    ExecuteRequest,
    ScopeRequest,
    WeekdayWindowRequest,
    WindowRequest,
)
from orchestrator.controls import OperationalControls

router = APIRouter(prefix="/controls", tags=["Operational Controls"])


@router.post("/auto-execution", response_model=ControlResponse)
async def set_auto_execution(
    request: AutoExecutionRequest,
    controls: OperationalControls = Depends(get_controls),
):
    controls.set_auto_execution(request.enabled)
    return ControlResponse(
        success=True,
        message=f"Automatic execution {'enabled' if request.enabled else 'disabled'}",
        data={"auto_execution": request.enabled},
    )


@router.post("/window", response_model=ControlResponse)
async def set_window(request: WindowRequest, controls: OperationalControls = Depends(get_controls)):
    """
    Replace the execution window; takes effect on the next pass.
    """
    window = controls.set_execution_window(request.start, request.end)
    return ControlResponse(
        success=True,
        message=f"Execution window set to {window.describe()}",
        data={"window": window.describe()},
    )


@router.post("/window/weekday", response_model=ControlResponse)
async def set_weekday_window(
    request: WeekdayWindowRequest,
    controls: OperationalControls = Depends(get_controls),
):
    """
    Override one weekday's window, or close the day when no times are given.
    """
    window = controls.set_weekday_window(request.day, request.start, request.end)
    described = window.describe() if window else "closed"
    return ControlResponse(
        success=True,
        message=f"Execution window for {request.day.lower()} set to {described}",
        data={"day": request.day.lower(), "window": described},
    )


@router.post("/concurrency", response_model=ControlResponse)
async def set_concurrency(
    request: ConcurrencyRequest,
    controls: OperationalControls = Depends(get_controls),
):
    controls.set_max_concurrent_operations(request.max_concurrent_operations)
    return ControlResponse(
        success=True,
        data={"max_concurrent_operations": request.max_concurrent_operations},
    )


@router.post("/evaluate", response_model=ControlResponse)
async def evaluate_now(request: ScopeRequest, controls: OperationalControls = Depends(get_controls)):
    """
    Evaluate now for one policy, one dataset, or everything.
    """
    summary = controls.evaluate_now(policy_id=request.policy_id, dataset=request.dataset)
    return ControlResponse(success=True, data=summary.to_dict())


@router.post("/execute", response_model=ControlResponse)
async def execute_now(request: ExecuteRequest, controls: OperationalControls = Depends(get_controls)):
    """
    Run one execution pass now. The window and the pool size
    still apply.
    """
    result = await controls.execute_now(
        policy_id=request.policy_id,
        dataset=request.dataset,
        max_operations=request.max_operations,
    )
    message = None
    if result.outside_window:
        message = "Outside the execution window; nothing started"
    return ControlResponse(success=True, message=message, data=result.to_dict())


@router.post("/clear-block", response_model=ControlResponse)
async def clear_block(request: BlockClearRequest, controls: OperationalControls = Depends(get_controls)):
    cleared = controls.clear_block(request.policy_id, request.partition_id)
    return ControlResponse(success=True, data={"cleared": cleared})


@router.get("/status", response_model=ControlResponse)
async def get_status(controls: OperationalControls = Depends(get_controls)):
    """
    Engine settings, loop and execution statistics, queue counts
    and temperature staleness.
    """
    return ControlResponse(success=True, data=controls.engine_status())
