"""
Execution Engine Support Tests.

============================================================
PURPOSE
============================================================
Queue state machine, error registry, alerting and engine
configuration.

TEST CATEGORIES:
- State machine tests: Guard, compare-and-set, history
- Error registry tests: Retryability and classification
- Alerting tests: History, failure-rate monitor
- Config tests: Window, environment overrides

============================================================
"""

import asyncio
from datetime import datetime, time, timezone
from unittest.mock import AsyncMock

import pytest

from conftest import NOW
from core.clock import MockClock
from core.exceptions import ActionError, ConfigurationError
from core.types import QueueStatus
from execution_engine import (
    AlertType,
    EngineConfig,
    ExecutionConfig,
    ExecutionWindow,
    FailureRateMonitor,
    QueueStateMachine,
    TelegramAlerter,
    TransitionGuard,
    classify_exception,
    get_error_info,
    is_retryable,
)
from execution_engine.alerting import TelegramAlerterConfig, create_timeout_alert
from execution_engine.errors import RETRYABLE_ERROR_CODES, TERMINAL_ERROR_CODES


@pytest.fixture
def state_machine(repositories):
    return QueueStateMachine(repositories.queue)


@pytest.fixture
def pending_entry(repositories):
    return repositories.queue.record(1, 1, True, "Eligible", QueueStatus.PENDING, NOW)


# ============================================================
# STATE MACHINE TESTS
# ============================================================

class TestTransitionGuard:
    """Tests for TransitionGuard."""

    def test_valid_transitions(self):
        """Test the allowed edges."""
        assert TransitionGuard.can_transition(QueueStatus.PENDING, QueueStatus.RUNNING)[0]
        assert TransitionGuard.can_transition(QueueStatus.PENDING, QueueStatus.SKIPPED)[0]
        assert TransitionGuard.can_transition(QueueStatus.RUNNING, QueueStatus.SUCCESS)[0]
        assert TransitionGuard.can_transition(QueueStatus.RUNNING, QueueStatus.FAILED)[0]
        assert TransitionGuard.can_transition(QueueStatus.FAILED, QueueStatus.PENDING)[0]
        assert TransitionGuard.can_transition(QueueStatus.FAILED, QueueStatus.SKIPPED)[0]
        assert TransitionGuard.can_transition(QueueStatus.SUCCESS, QueueStatus.PENDING)[0]

    def test_invalid_transitions(self):
        """Test forbidden edges carry a reason."""
        allowed, reason = TransitionGuard.can_transition(QueueStatus.PENDING, QueueStatus.SUCCESS)

        assert allowed is False
        assert reason == "Invalid transition: PENDING -> SUCCESS"
        assert not TransitionGuard.can_transition(QueueStatus.RUNNING, QueueStatus.PENDING)[0]
        assert not TransitionGuard.can_transition(QueueStatus.SUCCESS, QueueStatus.SKIPPED)[0]

    def test_same_state(self):
        """Test staying in a state is allowed."""
        assert TransitionGuard.can_transition(QueueStatus.FAILED, QueueStatus.FAILED) == (True, "Same state")


class TestQueueStateMachine:
    """Tests for QueueStateMachine."""

    def test_claim_only_once(self, state_machine, pending_entry, repositories):
        """Test a second claim loses the race."""
        assert state_machine.claim(pending_entry.entry_id) is True
        assert state_machine.claim(pending_entry.entry_id) is False

        entry = repositories.queue.get_entry(pending_entry.entry_id)
        assert entry.status == QueueStatus.RUNNING.value
        assert entry.attempts == 1

    def test_mark_success_records_execution(self, state_machine, pending_entry, repositories):
        """Test a completed entry keeps its execution id and time."""
        state_machine.claim(pending_entry.entry_id)

        assert state_machine.mark_success(pending_entry.entry_id, 42, NOW) is True

        entry = repositories.queue.get_entry(pending_entry.entry_id)
        assert entry.status == QueueStatus.SUCCESS.value
        assert entry.execution_id == 42
        assert entry.last_executed_at == NOW

    def test_invalid_transition_raises(self, state_machine, pending_entry):
        """Test the guard rejects PENDING -> SUCCESS."""
        with pytest.raises(ValueError):
            state_machine.transition(pending_entry.entry_id, QueueStatus.PENDING, QueueStatus.SUCCESS)

    def test_stale_from_state_is_not_applied(self, state_machine, pending_entry, repositories):
        """Test a transition from the wrong current state changes nothing."""
        changed = state_machine.mark_failed(pending_entry.entry_id, "late", None, NOW)

        assert changed is False
        assert repositories.queue.get_entry(pending_entry.entry_id).status == QueueStatus.PENDING.value

    def test_history_and_listeners(self, state_machine, pending_entry):
        """Test transitions are recorded and published."""
        events = []
        state_machine.add_listener(events.append)

        state_machine.claim(pending_entry.entry_id)
        state_machine.mark_failed(pending_entry.entry_id, "STORAGE_BUSY: busy", 7, NOW)

        assert [(e.from_state, e.to_state) for e in state_machine.history] == [
            (QueueStatus.PENDING, QueueStatus.RUNNING),
            (QueueStatus.RUNNING, QueueStatus.FAILED),
        ]
        assert len(events) == 2
        assert events[1].details == {"execution_id": 7}


# ============================================================
# ERROR REGISTRY TESTS
# ============================================================

class TestErrorRegistry:
    """Tests for error codes."""

    def test_retryable_and_terminal_sets(self):
        """Test every code belongs to exactly one set."""
        assert {"TIMEOUT", "LOCK_CONTENTION", "STORAGE_BUSY", "CONNECTION_ERROR"} <= RETRYABLE_ERROR_CODES
        assert {"INVALID_TARGET_LOCATION", "ACTION_MISMATCH", "PARTITION_NOT_FOUND"} <= TERMINAL_ERROR_CODES
        assert not RETRYABLE_ERROR_CODES & TERMINAL_ERROR_CODES

    def test_unknown_code_is_retryable(self):
        """Test unknown codes fall back to a retryable storage error."""
        info = get_error_info("ORA-99999")

        assert info.code == "ORA-99999"
        assert info.is_retryable is True
        assert is_retryable("ORA-99999") is True

    def test_classify_exception(self):
        """Test exceptions map to codes."""
        assert classify_exception(ActionError("bad", error_code="ACTION_MISMATCH")) == "ACTION_MISMATCH"
        assert classify_exception(asyncio.TimeoutError()) == "TIMEOUT"
        assert classify_exception(ConnectionRefusedError()) == "CONNECTION_ERROR"
        assert classify_exception(RuntimeError("boom")) == "STORAGE_ERROR"


# ============================================================
# ALERTING TESTS
# ============================================================

class TestAlerting:
    """Tests for TelegramAlerter and FailureRateMonitor."""

    @pytest.mark.asyncio
    async def test_disabled_alerter_keeps_history(self):
        """Test alerts are recorded but not delivered when disabled."""
        alerter = TelegramAlerter(TelegramAlerterConfig(enabled=False), clock=MockClock(NOW))

        sent = await alerter.send_alert(create_timeout_alert("sales", "P_2019", "compress-old", "COMPRESS", 60))

        assert sent is False
        history = alerter.get_history()
        assert len(history) == 1
        assert history[0].alert_type == AlertType.ACTION_TIMEOUT
        assert history[0].timestamp == NOW

    @pytest.mark.asyncio
    async def test_failure_rate_threshold(self):
        """Test an alert fires once failures exceed the threshold."""
        clock = MockClock(NOW)
        alerter = AsyncMock()
        monitor = FailureRateMonitor(
            alerter, clock, failure_threshold=2, window_seconds=600, min_alert_interval_seconds=300,
        )

        assert await monitor.record_failure("STORAGE_BUSY") is False
        assert await monitor.record_failure("STORAGE_BUSY") is False
        assert await monitor.record_failure("TIMEOUT") is True

        alert = alerter.send_alert.call_args[0][0]
        assert alert.alert_type == AlertType.FAILURE_RATE
        assert alert.details == {"last_error_code": "TIMEOUT"}

    @pytest.mark.asyncio
    async def test_failure_rate_alerts_are_spaced(self):
        """Test repeat alerts wait for the minimum interval."""
        clock = MockClock(NOW)
        alerter = AsyncMock()
        monitor = FailureRateMonitor(
            alerter, clock, failure_threshold=1, window_seconds=3600, min_alert_interval_seconds=300,
        )

        await monitor.record_failure("STORAGE_BUSY")
        assert await monitor.record_failure("STORAGE_BUSY") is True
        assert await monitor.record_failure("STORAGE_BUSY") is False

        clock.advance(301)
        assert await monitor.record_failure("STORAGE_BUSY") is True
        assert alerter.send_alert.await_count == 2

    @pytest.mark.asyncio
    async def test_failures_age_out_of_window(self):
        """Test old failures stop counting."""
        clock = MockClock(NOW)
        monitor = FailureRateMonitor(AsyncMock(), clock, failure_threshold=5, window_seconds=60)

        await monitor.record_failure("STORAGE_BUSY")
        clock.advance(120)

        assert monitor.failures_in_window == 0


# ============================================================
# CONFIG TESTS
# ============================================================

class TestEngineConfig:
    """Tests for EngineConfig and ExecutionWindow."""

    def test_window_spanning_midnight(self):
        """Test a 22:00-06:00 window."""
        window = ExecutionWindow(start=time(22, 0), end=time(6, 0))

        assert window.contains(time(23, 30))
        assert window.contains(time(5, 59))
        assert not window.contains(time(6, 0))
        assert not window.contains(time(12, 0))
        assert window.describe() == "22:00-06:00"

    def test_window_same_day_and_always_open(self):
        """Test plain and always-open windows."""
        window = ExecutionWindow.parse("09:00", "17:00")

        assert window.contains(time(9, 0))
        assert not window.contains(time(17, 0))
        assert ExecutionWindow.always_open().contains(time(3, 14))

    def test_window_parse_rejects_garbage(self):
        """Test invalid times raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            ExecutionWindow.parse("25:00", "06:00")
        with pytest.raises(ConfigurationError):
            ExecutionWindow.parse("late", "06:00")

    def test_testing_profile(self):
        """Test the testing configuration."""
        config = EngineConfig.for_testing()

        assert config.execution.auto_execution is False
        assert config.execution.max_concurrent_operations == 2
        assert config.execution.window.contains(time(12, 0))
        assert config.evaluation.min_reevaluation_hours == 0

    def test_from_env(self, monkeypatch):
        """Test LIFECYCLE_* variables override production defaults."""
        monkeypatch.setenv("LIFECYCLE_AUTO_EXECUTION", "true")
        monkeypatch.setenv("LIFECYCLE_WINDOW_START", "01:00")
        monkeypatch.setenv("LIFECYCLE_WINDOW_END", "04:30")
        monkeypatch.setenv("LIFECYCLE_MAX_CONCURRENT", "8")
        monkeypatch.setenv("LIFECYCLE_MIN_REEVAL_HOURS", "12")

        config = EngineConfig.from_env()

        assert config.execution.auto_execution is True
        assert config.execution.window.describe() == "01:00-04:30"
        assert config.execution.max_concurrent_operations == 8
        assert config.evaluation.min_reevaluation_hours == 12.0

    def test_from_env_rejects_bad_values(self, monkeypatch):
        """Test unparseable and out-of-range variables."""
        monkeypatch.setenv("LIFECYCLE_MAX_CONCURRENT", "many")
        with pytest.raises(ConfigurationError):
            EngineConfig.from_env()

        monkeypatch.setenv("LIFECYCLE_MAX_CONCURRENT", "0")
        with pytest.raises(ConfigurationError):
            EngineConfig.from_env()

    def test_closed_weekday(self):
        """Test a weekday without a window starts nothing."""
        execution = ExecutionConfig(window=ExecutionWindow.parse("09:00", "17:00"))
        execution.set_weekday_window("Sunday", None)

        monday_noon = datetime(2025, 11, 10, 12, 0, tzinfo=timezone.utc)
        sunday_noon = datetime(2025, 11, 16, 12, 0, tzinfo=timezone.utc)

        assert execution.is_open(monday_noon)
        assert not execution.is_open(sunday_noon)
        assert execution.describe_window(6) == "closed on sunday"
        assert execution.weekly_schedule()["monday"] == "09:00-17:00"

    def test_overnight_window_belongs_to_opening_day(self):
        """Test the hours after midnight follow the previous day's window."""
        execution = ExecutionConfig(window=ExecutionWindow.parse("22:00", "06:00"))
        execution.set_weekday_window("saturday", None)

        friday_night = datetime(2025, 11, 14, 23, 0, tzinfo=timezone.utc)
        saturday_early = datetime(2025, 11, 15, 2, 0, tzinfo=timezone.utc)
        saturday_night = datetime(2025, 11, 15, 23, 0, tzinfo=timezone.utc)
        sunday_early = datetime(2025, 11, 16, 2, 0, tzinfo=timezone.utc)
        sunday_night = datetime(2025, 11, 16, 23, 0, tzinfo=timezone.utc)

        assert execution.is_open(friday_night)
        assert execution.is_open(saturday_early)
        assert not execution.is_open(saturday_night)
        assert not execution.is_open(sunday_early)
        assert execution.is_open(sunday_night)

    def test_unknown_weekday(self):
        """Test weekday names are checked."""
        with pytest.raises(ConfigurationError):
            ExecutionConfig().set_weekday_window("someday", None)

    def test_weekday_windows_from_env(self, monkeypatch):
        """Test LIFECYCLE_WINDOW_<DAY> and the batch cooldown variable."""
        monkeypatch.setenv("LIFECYCLE_WINDOW_SATURDAY", "08:00-20:00")
        monkeypatch.setenv("LIFECYCLE_WINDOW_SUNDAY", "closed")
        monkeypatch.setenv("LIFECYCLE_BATCH_COOLDOWN_SECONDS", "60")

        config = EngineConfig.from_env()

        assert config.execution.weekly_windows[5].describe() == "08:00-20:00"
        assert config.execution.weekly_windows[6] is None
        assert config.execution.batch_cooldown_seconds == 60.0

        monkeypatch.setenv("LIFECYCLE_WINDOW_SUNDAY", "late")
        with pytest.raises(ConfigurationError):
            EngineConfig.from_env()
