"""
Dashboard Package.

HTTP surface of the lifecycle engine.

Modules:
- main: FastAPI application factory (create_app)
- schemas: Pydantic request/response models
- dependencies: Access to the wired engine
- routers/: health, policies, thresholds, executions, controls
"""
