"""
Dashboard - FastAPI application.

Policy management, threshold visibility, execution audit and
operational controls over one lifecycle engine.

create_app(components) serves an already wired engine (tests,
embedding). create_app() with no arguments builds the engine
from the environment at startup and runs its loops.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.exceptions import ConfigurationError, ValidationError
from dashboard.routers import controls, executions, health, policies, thresholds
from dashboard.schemas import ErrorResponse, ValidationIssueSchema
from execution_engine.config import EngineConfig
from orchestrator.cli import build_storage_engine
from orchestrator.controls import OperationalControls
from orchestrator.core import LifecycleOrchestrator
from orchestrator.registry import LifecycleComponents, build_components
from storage.database import create_database_engine, create_session_factory, init_database
from storage.repositories.exceptions import DuplicateRecordError, RecordNotFoundError

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, error_code: Optional[str] = None, errors=None) -> JSONResponse:
    body = ErrorResponse(
        success=False,
        message=message,
        error_code=error_code,
        errors=errors or [],
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _install_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError):
        issues = [
            ValidationIssueSchema(code=i.code, message=i.message, field=i.field)
            for i in exc.errors
        ]
        return _error(422, exc.message, exc.error_code, issues)

    @app.exception_handler(RecordNotFoundError)
    async def handle_not_found(request: Request, exc: RecordNotFoundError):
        return _error(404, str(exc), "NOT_FOUND")

    @app.exception_handler(DuplicateRecordError)
    async def handle_duplicate(request: Request, exc: DuplicateRecordError):
        return _error(409, str(exc), "DUPLICATE")

    @app.exception_handler(ConfigurationError)
    async def handle_configuration(request: Request, exc: ConfigurationError):
        return _error(400, exc.message, "CONFIGURATION_ERROR")


def _attach(app: FastAPI, components: LifecycleComponents, orchestrator: LifecycleOrchestrator) -> None:
    app.state.components = components
    app.state.orchestrator = orchestrator
    app.state.controls = OperationalControls(components, orchestrator)


@asynccontextmanager
async def _standalone_lifespan(app: FastAPI):
    """Build the engine from the environment and run it for the app's lifetime."""
    config = EngineConfig.from_env()
    db_engine = create_database_engine(config.database_url)
    init_database(db_engine)
    session = create_session_factory(db_engine)()
    components = build_components(session, build_storage_engine("memory"), config=config)
    orchestrator = LifecycleOrchestrator(components)
    _attach(app, components, orchestrator)

    await orchestrator.start()
    logger.info("Dashboard attached to lifecycle engine")
    try:
        yield
    finally:
        await orchestrator.stop()
        session.close()
        db_engine.dispose()


def create_app(
    components: Optional[LifecycleComponents] = None,
    orchestrator: Optional[LifecycleOrchestrator] = None,
) -> FastAPI:
    app = FastAPI(
        title="Lifecycle Tiering Engine API",
        description="Policies, thresholds, execution audit and operational controls.",
        version="1.0.0",
        lifespan=None if components is not None else _standalone_lifespan,
    )

    # CORS (Allow local frontend development)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if components is not None:
        _attach(app, components, orchestrator or LifecycleOrchestrator(components))

    _install_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(policies.router)
    app.include_router(thresholds.router)
    app.include_router(executions.router)
    app.include_router(controls.router)

    @app.get("/")
    async def root():
        return {"status": "ok", "message": "Lifecycle Tiering Engine API is running"}

    return app


app = create_app()
