"""
Dashboard dependencies.

The app holds one set of wired components (app.state); routes
reach them through these providers.
"""
from fastapi import HTTPException, Request

from orchestrator.controls import OperationalControls
from orchestrator.core import LifecycleOrchestrator
from orchestrator.registry import LifecycleComponents


def get_components(request: Request) -> LifecycleComponents:
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(status_code=503, detail="Lifecycle engine not initialised")
    return components


def get_orchestrator(request: Request) -> LifecycleOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Lifecycle engine not initialised")
    return orchestrator


def get_controls(request: Request) -> OperationalControls:
    controls = getattr(request.app.state, "controls", None)
    if controls is None:
        raise HTTPException(status_code=503, detail="Lifecycle engine not initialised")
    return controls
