from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from dashboard.dependencies import get_components, get_controls
from dashboard.schemas import (
    BaseResponse,
    PolicyListResponse,
    PolicyRecord,
    PolicyRequest,
    PolicyResponse,
)
from orchestrator.controls import OperationalControls
from orchestrator.registry import LifecycleComponents

router = APIRouter(prefix="/policies", tags=["Policies"])


@router.get("", response_model=PolicyListResponse)
async def list_policies(
    dataset: Optional[str] = None,
    components: LifecycleComponents = Depends(get_components),
):
    """
    All policies in evaluation order, optionally for one dataset.
    """
    policies = components.policy_service.list_policies(dataset)
    return PolicyListResponse(
        success=True,
        data=[PolicyRecord.model_validate(p) for p in policies],
    )


@router.get("/{policy_id}", response_model=PolicyResponse)
async def get_policy(policy_id: int, components: LifecycleComponents = Depends(get_components)):
    policy = components.policy_service.get_policy(policy_id)
    if policy is None:
        raise HTTPException(status_code=404, detail=f"Policy {policy_id} not found")
    return PolicyResponse(success=True, data=PolicyRecord.model_validate(policy))


@router.post("", response_model=PolicyResponse, status_code=201)
async def create_policy(
    request: PolicyRequest,
    components: LifecycleComponents = Depends(get_components),
):
    """
    Validate and create a policy. Every validation defect is
    returned with its own error code.
    """
    created = components.policy_service.create_policy(request.to_policy())
    return PolicyResponse(
        success=True,
        message=f"Policy {created.name} created",
        data=PolicyRecord.model_validate(created),
    )


@router.put("/{policy_id}", response_model=PolicyResponse)
async def update_policy(
    policy_id: int,
    request: PolicyRequest,
    components: LifecycleComponents = Depends(get_components),
):
    """
    Overwrite a policy. The version is bumped and blocks recorded
    under earlier versions are lifted.
    """
    updated = components.policy_service.update_policy(request.to_policy(policy_id))
    return PolicyResponse(
        success=True,
        message=f"Policy {updated.name} updated to v{updated.version}",
        data=PolicyRecord.model_validate(updated),
    )


@router.post("/{policy_id}/pause", response_model=BaseResponse)
async def pause_policy(policy_id: int, controls: OperationalControls = Depends(get_controls)):
    controls.pause_policy(policy_id)
    return BaseResponse(success=True, message=f"Policy {policy_id} paused")


@router.post("/{policy_id}/resume", response_model=BaseResponse)
async def resume_policy(policy_id: int, controls: OperationalControls = Depends(get_controls)):
    controls.resume_policy(policy_id)
    return BaseResponse(success=True, message=f"Policy {policy_id} resumed")
