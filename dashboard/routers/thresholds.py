from typing import Optional

from fastapi import APIRouter, Depends

from dashboard.dependencies import get_components
from dashboard.schemas import (
    EffectiveThresholdRecord,
    EffectiveThresholdResponse,
    ProfileRecord,
    ProfileRequest,
    ProfileResponse,
)
from orchestrator.registry import LifecycleComponents
from temperature.profiles import effective_thresholds

router = APIRouter(tags=["Thresholds"])


@router.get("/thresholds/effective", response_model=EffectiveThresholdResponse)
async def get_effective_thresholds(
    dataset: Optional[str] = None,
    components: LifecycleComponents = Depends(get_components),
):
    """
    The profile each policy actually classifies with, and whether
    it is the policy's own or the global default.
    """
    policies = components.policy_service.list_policies(dataset)
    view = effective_thresholds(
        policies,
        components.repositories.profiles,
        components.config.evaluation.default_profile_name,
    )
    return EffectiveThresholdResponse(
        success=True,
        data=[EffectiveThresholdRecord.model_validate(row) for row in view],
    )


@router.post("/profiles", response_model=ProfileResponse, status_code=201)
async def save_profile(
    request: ProfileRequest,
    components: LifecycleComponents = Depends(get_components),
):
    """
    Create or update a threshold profile. Non-ascending thresholds
    are rejected and nothing is stored.
    """
    profile = components.profile_service.save_profile(
        request.name,
        request.hot_days,
        request.warm_days,
        request.cold_days,
        request.description,
    )
    return ProfileResponse(
        success=True,
        message=f"Profile {profile.name} saved",
        data=ProfileRecord.model_validate(profile),
    )
