"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the lifecycle engine.

- argparse-based CLI
- Long-lived service mode and one-shot modes
- Configuration from environment (LIFECYCLE_*) plus CLI overrides

============================================================
USAGE
============================================================
python -m orchestrator.cli --mode run
python -m orchestrator.cli --mode evaluate --dataset sales
python -m orchestrator.cli --mode execute --policy-id 3 --max-operations 5
python -m orchestrator.cli --mode status

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from core.clock import SystemClock
from core.exceptions import ConfigurationError, LifecycleException
from execution_engine.adapters import InMemoryStorageEngine, StorageEngine
from execution_engine.config import WEEKDAYS, EngineConfig, ExecutionWindow
from orchestrator.controls import OperationalControls
from orchestrator.core import LifecycleOrchestrator, setup_logging
from orchestrator.registry import build_components
from storage.database import (
    create_database_engine,
    create_session_factory,
    init_database,
    verify_database_connection,
)


# ============================================================
# RUN MODES
# ============================================================

class RunMode(Enum):
    """What the process does."""

    RUN = "run"
    REFRESH = "refresh"
    EVALUATE = "evaluate"
    EXECUTE = "execute"
    MERGE = "merge"
    STATUS = "status"


STORAGE_ENGINES = {
    "memory": InMemoryStorageEngine,
}


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="lifecycle-engine",
        description="Partition lifecycle tiering engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Run Modes:
  run       - Long-lived service: periodic refresh, evaluation,
              execution, merge retry and log cleanup
  refresh   - Refresh partition metadata and temperatures once
  evaluate  - Evaluate policies once
  execute   - Run one execution pass (honors the window)
  merge     - Retry deferred merges once
  status    - Print engine status as JSON

Examples:
  %(prog)s --mode run
  %(prog)s --mode evaluate --dataset sales
  %(prog)s --mode execute --window 00:00-23:59 --max-operations 5
""",
    )

    parser.add_argument(
        "--mode",
        type=str,
        choices=[m.value for m in RunMode],
        default=RunMode.RUN.value,
        help="Run mode (default: run)",
    )

    scope_group = parser.add_argument_group("Scope Options")
    scope_group.add_argument("--policy-id", type=int, default=None, help="Limit to one policy")
    scope_group.add_argument("--dataset", type=str, default=None, help="Limit to one dataset")
    scope_group.add_argument(
        "--max-operations",
        type=int,
        default=None,
        help="Maximum actions started by an execute pass",
    )

    execution_group = parser.add_argument_group("Execution Options")
    execution_group.add_argument(
        "--window",
        type=str,
        default=None,
        help="Execution window HH:MM-HH:MM (overrides LIFECYCLE_WINDOW_START/END)",
    )
    execution_group.add_argument(
        "--weekday-window",
        action="append",
        default=[],
        metavar="DAY=HH:MM-HH:MM",
        help="Window for one weekday, or DAY=closed; repeatable",
    )
    execution_group.add_argument(
        "--batch-cooldown",
        type=float,
        default=None,
        help="Seconds between scheduled batches while work remains",
    )
    execution_group.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        help="Worker pool size (overrides LIFECYCLE_MAX_CONCURRENT)",
    )
    execution_group.add_argument(
        "--no-auto-execution",
        action="store_true",
        help="Run mode only: evaluate but never execute automatically",
    )

    system_group = parser.add_argument_group("System Options")
    system_group.add_argument("--env-file", type=str, default=None, help="dotenv file to load")
    system_group.add_argument("--database-url", type=str, default=None, help="Metadata store URL")
    system_group.add_argument(
        "--templates", type=str, default=None, help="YAML file of tier templates to load at startup"
    )
    system_group.add_argument(
        "--engine",
        type=str,
        choices=sorted(STORAGE_ENGINES),
        default="memory",
        help="Storage engine adapter",
    )

    logging_group = parser.add_argument_group("Logging Options")
    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Log level (overrides LIFECYCLE_LOG_LEVEL)",
    )
    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default=None,
        help="Log output format",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def parse_weekday_window(value: str) -> Tuple[str, Optional[ExecutionWindow]]:
    """
    Parse "DAY=HH:MM-HH:MM" or "DAY=closed".

    Raises:
        ConfigurationError: If the value is malformed
    """
    day, sep, hours = value.partition("=")
    day = day.strip().lower()
    if not sep or day not in WEEKDAYS:
        raise ConfigurationError(
            f"{value!r} must look like DAY=HH:MM-HH:MM or DAY=closed", config_key="weekday_window",
        )
    if hours.strip().lower() == "closed":
        return day, None
    return day, ExecutionWindow.parse_range(hours, f"weekday_window.{day}")


def validate_args(args: argparse.Namespace) -> List[str]:
    """Returns a list of validation errors."""
    errors = []
    if args.window is not None:
        parts = args.window.split("-")
        if len(parts) != 2:
            errors.append("--window must look like HH:MM-HH:MM")
        else:
            try:
                ExecutionWindow.parse(parts[0], parts[1])
            except LifecycleException as e:
                errors.append(f"--window: {e}")
    for value in args.weekday_window:
        try:
            parse_weekday_window(value)
        except LifecycleException as e:
            errors.append(f"--weekday-window: {e}")
    if args.batch_cooldown is not None and args.batch_cooldown < 0:
        errors.append("--batch-cooldown must not be negative")
    if args.max_concurrent is not None and args.max_concurrent < 1:
        errors.append("--max-concurrent must be at least 1")
    if args.max_operations is not None and args.max_operations < 1:
        errors.append("--max-operations must be at least 1")
    if args.templates is not None and not Path(args.templates).is_file():
        errors.append(f"--templates file not found: {args.templates}")
    if args.policy_id is not None and args.dataset is not None:
        errors.append("--policy-id and --dataset are mutually exclusive")
    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> EngineConfig:
    """Environment configuration with CLI overrides applied."""
    config = EngineConfig.from_env(args.env_file)
    if args.window is not None:
        start, end = args.window.split("-")
        config.execution.window = ExecutionWindow.parse(start, end)
    for value in args.weekday_window:
        day, window = parse_weekday_window(value)
        config.execution.set_weekday_window(day, window)
    if args.batch_cooldown is not None:
        config.execution.batch_cooldown_seconds = args.batch_cooldown
    if args.max_concurrent is not None:
        config.execution.max_concurrent_operations = args.max_concurrent
    if args.no_auto_execution:
        config.execution.auto_execution = False
    if args.database_url:
        config.database_url = args.database_url
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    return config


def build_storage_engine(name: str) -> StorageEngine:
    return STORAGE_ENGINES[name]()


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace, config: EngineConfig) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    logger = logging.getLogger("orchestrator")
    mode = RunMode(args.mode)

    db_engine = create_database_engine(config.database_url)
    verify_database_connection(db_engine)
    init_database(db_engine)
    session = create_session_factory(db_engine)()

    components = build_components(
        session,
        build_storage_engine(args.engine),
        config=config,
        clock=SystemClock(),
    )
    orchestrator = LifecycleOrchestrator(components)
    controls = OperationalControls(components, orchestrator)

    try:
        if args.templates:
            components.template_service.load_file(args.templates)
        if mode == RunMode.RUN:
            await orchestrator.run_forever()
        elif mode == RunMode.REFRESH:
            result = await components.refresher.refresh(args.dataset)
            return 1 if result.errors else 0
        elif mode == RunMode.EVALUATE:
            summary = controls.evaluate_now(policy_id=args.policy_id, dataset=args.dataset)
            print(json.dumps(summary.to_dict(), indent=2))
        elif mode == RunMode.EXECUTE:
            result = await controls.execute_now(
                policy_id=args.policy_id,
                dataset=args.dataset,
                max_operations=args.max_operations,
            )
            print(json.dumps(result.to_dict(), indent=2, default=str))
            return 1 if result.failed else 0
        elif mode == RunMode.MERGE:
            print(json.dumps(await components.merge_scheduler.retry_deferred(), indent=2))
        elif mode == RunMode.STATUS:
            print(json.dumps(controls.engine_status(), indent=2, default=str))
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except LifecycleException as e:
        logger.error(f"Fatal error: {e}")
        return 1
    finally:
        await orchestrator.stop()
        await components.alerter.close()
        session.close()
        db_engine.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        config = build_config(args)
    except LifecycleException as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format)
    if RunMode(args.mode) == RunMode.RUN:
        print_banner(args, config)

    return asyncio.run(async_main(args, config))


def print_banner(args: argparse.Namespace, config: EngineConfig) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  LIFECYCLE TIERING ENGINE")
    print("=" * 60)
    print(f"  Engine:          {args.engine}")
    print(f"  Auto execution:  {config.execution.auto_execution}")
    print(f"  Window:          {config.execution.window.describe()}")
    print(f"  Pool size:       {config.execution.max_concurrent_operations}")
    print(f"  Log level:       {config.log_level}")
    print("=" * 60)
    print()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
