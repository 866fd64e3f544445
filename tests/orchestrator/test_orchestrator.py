"""
Orchestrator Tests.

============================================================
PURPOSE
============================================================
Periodic loops, operator controls and the CLI.

TEST CATEGORIES:
- Loop tests: Error handling, alerts, start/stop
- Status tests: Status and health reports
- Control tests: Window, pool, policies, on-demand runs
- CLI tests: Argument validation and one-shot modes

============================================================
"""

import asyncio
import json
from datetime import date
from unittest.mock import patch

import pytest

from conftest import DATASET
from core.exceptions import ConfigurationError
from core.types import QueueStatus
from execution_engine import AlertType
from orchestrator import LifecycleOrchestrator, LoopState, OperationalControls
from orchestrator.cli import build_config, create_parser, main, validate_args
from policy_engine import PolicyBuilder
from storage.repositories.exceptions import RecordNotFoundError


@pytest.fixture
def orchestrator(components):
    return LifecycleOrchestrator(components)


@pytest.fixture
def controls(components, orchestrator):
    return OperationalControls(components, orchestrator)


@pytest.fixture
def compress_policy(components):
    return components.policy_service.create_policy(
        PolicyBuilder("compress-old").for_dataset(DATASET).compress("ZSTD").when_age_days(365).build()
    )


# ============================================================
# LOOP TESTS
# ============================================================

class TestLoops:
    """Tests for loop iterations and lifecycle."""

    @pytest.mark.asyncio
    async def test_configuration_error_is_alerted(self, orchestrator, components):
        """Test a configuration error counts as a failure and raises a CRITICAL alert."""
        state = LoopState("evaluation")

        async def broken():
            raise ConfigurationError("default profile missing", config_key="default_profile_name")

        await orchestrator._run_iteration(state, broken)

        assert state.runs == 1
        assert state.failures == 1
        assert state.consecutive_failures == 1
        assert "default profile missing" in state.last_error
        alert = components.alerter.get_history()[-1]
        assert alert.alert_type == AlertType.CONFIGURATION_ERROR

    @pytest.mark.asyncio
    async def test_other_errors_are_logged_and_reset(self, orchestrator, components):
        """Test an ordinary error is counted and cleared by the next success."""
        state = LoopState("refresh")

        async def broken():
            raise RuntimeError("metadata store unreachable")

        async def working():
            return None

        await orchestrator._run_iteration(state, broken)
        assert state.last_error == "metadata store unreachable"
        assert components.alerter.get_history() == []

        await orchestrator._run_iteration(state, working)
        assert state.runs == 2
        assert state.failures == 1
        assert state.consecutive_failures == 0
        assert state.last_error is None

    @pytest.mark.asyncio
    async def test_stale_temperatures_alert(self, orchestrator, components):
        """Test evaluation warns when access temperatures were never refreshed."""
        assert await orchestrator.check_staleness() is True
        assert components.alerter.get_history()[-1].alert_type == AlertType.STALE_TEMPERATURES

        await orchestrator.run_refresh()
        assert await orchestrator.check_staleness() is False

    @pytest.mark.asyncio
    async def test_start_runs_each_loop_then_stops(self, orchestrator, components, add_partition, compress_policy):
        """Test every loop runs once on start and the engine stops cleanly."""
        partition = add_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1))

        await orchestrator.start()
        await asyncio.sleep(0.05)
        assert orchestrator.is_running is True
        await orchestrator.stop()

        assert orchestrator.is_running is False
        status = orchestrator.get_status()
        assert all(loop["runs"] >= 1 for loop in status["loops"].values())
        entry = components.repositories.queue.get(compress_policy.policy_id, partition.partition_id)
        assert entry.status == QueueStatus.PENDING.value
        assert components.execution_service.is_running is False

    @pytest.mark.asyncio
    async def test_merge_retry_skipped_when_disabled(self, orchestrator, config):
        """Test the merge retry job does nothing when merging is off."""
        config.merge.enabled = False

        assert await orchestrator.run_merge_retry() == {}


# ============================================================
# STATUS TESTS
# ============================================================

class TestStatus:
    """Tests for status and health reports."""

    def test_get_status(self, orchestrator):
        """Test the status report carries settings and counters."""
        status = orchestrator.get_status()

        assert status["running"] is False
        assert status["window_open"] is True
        assert status["max_concurrent_operations"] == 2
        assert set(status["loops"]) == {"refresh", "evaluation", "merge_retry", "log_cleanup"}
        assert status["temperatures"]["stale"] is True
        assert status["execution"]["passes"] == 0

    @pytest.mark.asyncio
    async def test_health_check(self, orchestrator):
        """Test repeated loop failures make the engine unhealthy."""
        health = await orchestrator.health_check()
        assert health["healthy"] is True
        assert health["database"] is True

        async def broken():
            raise RuntimeError("boom")

        state = orchestrator._loops["refresh"]
        for _ in range(LifecycleOrchestrator.UNHEALTHY_AFTER_FAILURES):
            await orchestrator._run_iteration(state, broken)

        health = await orchestrator.health_check()
        assert health["healthy"] is False
        assert health["failing_loops"] == ["refresh"]


# ============================================================
# CONTROL TESTS
# ============================================================

class TestOperationalControls:
    """Tests for OperationalControls."""

    def test_execution_window(self, controls, config):
        """Test the window is replaced and invalid times rejected."""
        window = controls.set_execution_window("23:00", "01:00")

        assert config.execution.window is window
        assert window.describe() == "23:00-01:00"
        with pytest.raises(ConfigurationError):
            controls.set_execution_window("noon", "01:00")

    def test_weekday_window(self, controls, config):
        """Test one weekday can be overridden, closed and reset."""
        window = controls.set_weekday_window("friday", "20:00", "23:00")
        assert config.execution.window_for(4) is window

        assert controls.set_weekday_window("monday") is None
        assert controls.engine_status()["window_open"] is False
        with pytest.raises(ConfigurationError):
            controls.set_weekday_window("monday", start="20:00")

        controls.clear_weekday_windows()
        assert config.execution.weekly_windows == {}
        assert controls.engine_status()["window_open"] is True

    def test_max_concurrent_operations(self, controls, config):
        """Test the pool size must be at least one."""
        controls.set_max_concurrent_operations(6)
        assert config.execution.max_concurrent_operations == 6

        with pytest.raises(ConfigurationError):
            controls.set_max_concurrent_operations(0)
        assert config.execution.max_concurrent_operations == 6

    def test_auto_execution_toggle(self, controls, config):
        """Test automatic execution can be switched on and off."""
        controls.set_auto_execution(True)
        assert config.execution.auto_execution is True
        controls.set_auto_execution(False)
        assert config.execution.auto_execution is False

    def test_pause_and_resume(self, controls, components, compress_policy):
        """Test pausing a policy disables it."""
        controls.pause_policy(compress_policy.policy_id)
        assert components.policy_service.get_policy(compress_policy.policy_id).enabled is False

        controls.resume_policy(compress_policy.policy_id)
        assert components.policy_service.get_policy(compress_policy.policy_id).enabled is True

    def test_evaluate_now(self, controls, add_partition, compress_policy):
        """Test on-demand evaluation by policy and by dataset."""
        add_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1))

        by_policy = controls.evaluate_now(policy_id=compress_policy.policy_id)
        by_dataset = controls.evaluate_now(dataset=DATASET)

        assert by_policy.queued == 1
        assert by_dataset.evaluated == 1
        with pytest.raises(RecordNotFoundError):
            controls.evaluate_now(policy_id=999)

    @pytest.mark.asyncio
    async def test_execute_now_and_status(self, controls, storage_engine, add_partition, compress_policy):
        """Test an on-demand pass and the status that follows it."""
        add_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1))
        controls.evaluate_now()

        result = await controls.execute_now(policy_id=compress_policy.policy_id)

        assert result.succeeded == 1
        status = controls.engine_status()
        assert status["queue"] == {QueueStatus.SUCCESS.value: 1}
        assert status["recent_failures"] == 0
        assert status["busy_partitions"] == []
        assert status["active_blocks"] == 0
        assert status["execution"]["succeeded"] == 1

    @pytest.mark.asyncio
    async def test_clear_block(self, controls, components, add_partition):
        """Test a cleared block lets the pair be queued again."""
        partition = add_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1))
        policy = components.policy_service.create_policy(
            PolicyBuilder("bad-move").for_dataset(DATASET).move("TBS_NOWHERE").when_age_days(365).build()
        )
        controls.evaluate_now()
        await controls.execute_now()
        assert controls.engine_status()["active_blocks"] == 1

        assert controls.clear_block(policy.policy_id) == 1

        controls.evaluate_now()
        entry = components.repositories.queue.get(policy.policy_id, partition.partition_id)
        assert entry.status == QueueStatus.PENDING.value

    def test_standalone_status(self, components):
        """Test status without a running orchestrator."""
        status = OperationalControls(components).engine_status()

        assert status["running"] is False
        assert status["deferred_merges"] == 0


# ============================================================
# CLI TESTS
# ============================================================

class TestCli:
    """Tests for the command-line interface."""

    def test_validate_args(self):
        """Test invalid combinations are reported."""
        parser = create_parser()

        assert validate_args(parser.parse_args(["--mode", "execute", "--window", "22:00-06:00"])) == []

        errors = validate_args(parser.parse_args([
            "--window", "22:00", "--max-concurrent", "0", "--policy-id", "1", "--dataset", "sales",
        ]))
        assert "--window must look like HH:MM-HH:MM" in errors
        assert "--max-concurrent must be at least 1" in errors
        assert "--policy-id and --dataset are mutually exclusive" in errors

    def test_invalid_window_time(self):
        """Test an unparseable window time."""
        args = create_parser().parse_args(["--window", "25:00-06:00"])

        errors = validate_args(args)

        assert len(errors) == 1
        assert errors[0].startswith("--window:")

    def test_build_config_overrides(self):
        """Test CLI flags override environment configuration."""
        args = create_parser().parse_args([
            "--window", "01:00-03:00", "--max-concurrent", "3", "--no-auto-execution",
            "--database-url", "sqlite:///:memory:", "--log-format", "text",
        ])

        config = build_config(args)

        assert config.execution.window.describe() == "01:00-03:00"
        assert config.execution.max_concurrent_operations == 3
        assert config.execution.auto_execution is False
        assert config.database_url == "sqlite:///:memory:"
        assert config.log_format == "text"

    def test_main_rejects_invalid_args(self, capsys):
        """Test main exits with 1 on validation errors."""
        assert main(["--max-operations", "0"]) == 1
        assert "--max-operations must be at least 1" in capsys.readouterr().err

    def test_main_status_mode(self, capsys):
        """Test the status mode prints JSON."""
        with patch("orchestrator.cli.setup_logging"):
            code = main(["--mode", "status", "--database-url", "sqlite:///:memory:"])

        assert code == 0
        status = json.loads(capsys.readouterr().out)
        assert status["running"] is False
        assert "queue" in status

    def test_missing_templates_file(self, tmp_path):
        """Test a templates path that does not exist is reported."""
        args = create_parser().parse_args(["--templates", str(tmp_path / "absent.yaml")])

        assert validate_args(args) == [f"--templates file not found: {tmp_path / 'absent.yaml'}"]

    def test_weekday_window_flags(self):
        """Test per-weekday windows and the batch cooldown from the command line."""
        args = create_parser().parse_args([
            "--weekday-window", "saturday=08:00-20:00", "--weekday-window", "Sunday=closed",
            "--batch-cooldown", "30",
        ])

        assert validate_args(args) == []
        config = build_config(args)
        assert config.execution.describe_window(5) == "08:00-20:00"
        assert config.execution.weekly_windows[6] is None
        assert config.execution.batch_cooldown_seconds == 30.0

        bad = create_parser().parse_args(["--weekday-window", "funday=08:00-20:00", "--batch-cooldown", "-1"])
        errors = validate_args(bad)
        assert len(errors) == 2
        assert errors[0].startswith("--weekday-window:")
        assert "--batch-cooldown must not be negative" in errors
