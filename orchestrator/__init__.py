"""
Orchestrator Package - Runtime Coordination Layer.

============================================================
PACKAGE OVERVIEW
============================================================
Runs the lifecycle engine: wires the components, schedules the
periodic loops and exposes operator controls.

============================================================
CORE PRINCIPLES
============================================================
1. The orchestrator has NO lifecycle logic
2. It does NOT decide eligibility or run actions itself
3. Configuration errors are escalated, never swallowed
4. Stop means "no new work"; in-flight actions finish

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |               LifecycleOrchestrator                 |
    |-----------------------------------------------------|
    |  refresh loop      |  TemperatureRefresher          |
    |  evaluation loop   |  PolicyEvaluator               |
    |  execution loop    |  ExecutionService              |
    |  merge retry loop  |  MergeScheduler                |
    |  log cleanup loop  |  ExecutionLogRepository        |
    +-----------------------------------------------------+
    |  OperationalControls | CLI                          |
    +-----------------------------------------------------+

============================================================
USAGE
============================================================

    from orchestrator import build_components, LifecycleOrchestrator

    components = build_components(session, storage_engine, config=config)
    orchestrator = LifecycleOrchestrator(components)
    await orchestrator.run_forever()

============================================================
"""

from .controls import OperationalControls
from .core import LifecycleOrchestrator, LoopState, create_orchestrator, setup_logging
from .registry import LifecycleComponents, Repositories, build_components


__all__ = [
    "OperationalControls",
    "LifecycleOrchestrator",
    "LoopState",
    "create_orchestrator",
    "setup_logging",
    "LifecycleComponents",
    "Repositories",
    "build_components",
]
