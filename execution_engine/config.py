"""
Execution Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the lifecycle engine.

EngineConfig is injected into every loop and re-read at the
start of each pass, so operator controls (window, concurrency,
auto-execution) take effect on the next pass without restart.

CRITICAL CONSTRAINTS:
- No blind retries: failed entries wait for re-evaluation
- No work outside the execution window
- Bounded concurrency

============================================================
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Dict, Optional

from dotenv import load_dotenv

from core.constants import (
    DEFAULT_PROFILE_NAME,
    LOG_RETENTION_DAYS,
    QUEUE_RETENTION_DAYS,
)
from core.exceptions import ConfigurationError
from core.types import ActionType


# ============================================================
# EXECUTION WINDOW
# ============================================================

@dataclass
class ExecutionWindow:
    """
    Daily time-of-day window in which new actions may start.

    A window whose end is earlier than its start spans midnight
    (22:00-06:00). Equal start and end means always open.
    """

    start: time = time(22, 0)
    """Window opens (inclusive)."""

    end: time = time(6, 0)
    """Window closes (exclusive)."""

    def contains(self, moment: time) -> bool:
        if self.start == self.end:
            return True
        if self.start < self.end:
            return self.start <= moment < self.end
        return moment >= self.start or moment < self.end

    @property
    def spans_midnight(self) -> bool:
        return self.end < self.start

    def opens_same_day(self, moment: time) -> bool:
        """The part of the window on the day it opens."""
        if self.spans_midnight:
            return moment >= self.start
        return self.contains(moment)

    def carries_over(self, moment: time) -> bool:
        """The part of an overnight window after midnight."""
        return self.spans_midnight and moment < self.end

    def describe(self) -> str:
        return f"{self.start.strftime('%H:%M')}-{self.end.strftime('%H:%M')}"

    @classmethod
    def parse(cls, start: str, end: str) -> "ExecutionWindow":
        """
        Build a window from "HH:MM" strings.

        Raises:
            ConfigurationError: If either value is not a valid time
        """
        return cls(start=_parse_time(start, "window_start"), end=_parse_time(end, "window_end"))

    @classmethod
    def parse_range(cls, value: str, key: str = "window") -> "ExecutionWindow":
        """
        Build a window from "HH:MM-HH:MM".

        Raises:
            ConfigurationError: If the value is malformed
        """
        parts = value.strip().split("-")
        if len(parts) != 2:
            raise ConfigurationError(f"Invalid window {value!r}, expected HH:MM-HH:MM", config_key=key)
        return cls(start=_parse_time(parts[0], key), end=_parse_time(parts[1], key))

    @classmethod
    def always_open(cls) -> "ExecutionWindow":
        return cls(start=time(0, 0), end=time(0, 0))


def _parse_time(value: str, key: str) -> time:
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except ValueError as e:
        raise ConfigurationError(f"Invalid time {value!r}, expected HH:MM", config_key=key, cause=e)


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """
    Per-action timeouts.

    A timed-out action is recorded FAILED/TIMEOUT; the storage
    call itself is never interrupted.
    """

    default_seconds: float = 3600.0
    """Timeout for actions without an override."""

    per_action: Dict[str, float] = field(default_factory=dict)
    """Overrides keyed by ActionType value."""

    merge_seconds: float = 3600.0
    """Timeout for a partition merge."""

    def for_action(self, action: ActionType) -> float:
        return self.per_action.get(action.value, self.default_seconds)


# ============================================================
# EXECUTION CONFIGURATION
# ============================================================

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass
class ExecutionConfig:
    """Worker pool and window settings."""

    auto_execution: bool = True
    """Whether the background loop executes queued actions."""

    max_concurrent_operations: int = 4
    """Worker pool size."""

    window: ExecutionWindow = field(default_factory=ExecutionWindow)
    """Time-of-day window for starting new actions."""

    weekly_windows: Dict[int, Optional[ExecutionWindow]] = field(default_factory=dict)
    """Per-weekday overrides (0 = Monday); None means no execution that day."""

    batch_cooldown_seconds: float = 0.0
    """Pause between scheduled batches while work remains and the window is open."""

    busy_token_prefix: str = "exec"
    """Prefix of busy-lock tokens written by workers."""

    def window_for(self, weekday: int) -> Optional[ExecutionWindow]:
        if weekday in self.weekly_windows:
            return self.weekly_windows[weekday]
        return self.window

    def is_open(self, moment: datetime) -> bool:
        """
        Whether new actions may start at a moment.

        The hours after midnight of an overnight window belong to
        the day the window opened.
        """
        moment_time = moment.time()
        today = self.window_for(moment.weekday())
        if today is not None and today.opens_same_day(moment_time):
            return True
        yesterday = self.window_for((moment.weekday() - 1) % 7)
        return yesterday is not None and yesterday.carries_over(moment_time)

    def describe_window(self, weekday: int) -> str:
        window = self.window_for(weekday)
        if window is None:
            return f"closed on {WEEKDAYS[weekday]}"
        return window.describe()

    def set_weekday_window(self, day: str, window: Optional[ExecutionWindow]) -> None:
        """
        Override one weekday; None closes it.

        Raises:
            ConfigurationError: If the day is not a weekday name
        """
        name = day.strip().lower()
        if name not in WEEKDAYS:
            raise ConfigurationError(f"Unknown weekday {day!r}", config_key="weekly_windows")
        self.weekly_windows[WEEKDAYS.index(name)] = window

    def weekly_schedule(self) -> Dict[str, str]:
        return {day: self.describe_window(index) for index, day in enumerate(WEEKDAYS)}


# ============================================================
# EVALUATION CONFIGURATION
# ============================================================

@dataclass
class EvaluationConfig:
    """Policy evaluation settings."""

    min_reevaluation_hours: float = 24.0
    """Minimum time after an execution before the pair is requeued."""

    queue_retention_days: int = QUEUE_RETENTION_DAYS
    """Pending entries older than this are purged."""

    default_profile_name: str = DEFAULT_PROFILE_NAME
    """Profile used by policies without their own."""

    use_access_recency: bool = True
    """Prefer access-based temperatures when recency is known."""

    access_staleness_bound_seconds: int = 2 * 86400
    """Access temperatures older than this are reported stale."""


# ============================================================
# MERGE CONFIGURATION
# ============================================================

@dataclass
class MergeConfig:
    """Partition merge settings."""

    enabled: bool = True
    """Whether successful moves trigger merges."""

    max_attempts: int = 5
    """Deferred/failed candidates are dropped from retry after this."""

    retry_batch_size: int = 50
    """Candidates re-attempted per merge loop iteration."""


# ============================================================
# ALERTING CONFIGURATION
# ============================================================

@dataclass
class AlertingConfig:
    """
    Alerting configuration for lifecycle events.
    """

    telegram_enabled: bool = True
    """Whether Telegram alerts are enabled."""

    alert_on_timeout: bool = True
    """Alert when an action times out."""

    alert_on_terminal_failure: bool = True
    """Alert when an action fails terminally and blocks its pair."""

    failure_threshold: int = 5
    """Failures within the window that trigger a failure-rate alert."""

    failure_window_seconds: float = 3600.0
    """Rolling window for the failure-rate monitor."""

    min_alert_interval_seconds: float = 300.0
    """Minimum interval between failure-rate alerts."""


# ============================================================
# SCHEDULER CONFIGURATION
# ============================================================

@dataclass
class SchedulerConfig:
    """Intervals of the periodic loops."""

    refresh_interval_seconds: float = 86400.0
    """Metadata and access refresh."""

    evaluation_interval_seconds: float = 86400.0
    """Policy evaluation."""

    execution_interval_seconds: float = 7200.0
    """Queue execution."""

    execution_max_operations: int = 10
    """Actions started per scheduled execution pass."""

    merge_retry_interval_seconds: float = 3600.0
    """Deferred merge retry."""

    log_cleanup_interval_seconds: float = 7 * 86400.0
    """Execution log cleanup."""

    log_retention_days: int = LOG_RETENTION_DAYS
    """Completed execution log rows older than this are deleted."""


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class EngineConfig:
    """
    Master configuration for the lifecycle engine.
    """

    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    """Worker pool and window."""

    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    """Action timeouts."""

    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)
    """Policy evaluation."""

    merge: MergeConfig = field(default_factory=MergeConfig)
    """Partition merges."""

    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    """Alerting."""

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    """Loop intervals."""

    log_level: str = "INFO"
    """Root log level."""

    log_format: str = "json"
    """json or text."""

    database_url: Optional[str] = None
    """Metadata store URL; None uses storage.database defaults."""

    @classmethod
    def for_testing(cls) -> "EngineConfig":
        """Get configuration for testing."""
        return cls(
            execution=ExecutionConfig(
                auto_execution=False,
                max_concurrent_operations=2,
                window=ExecutionWindow.always_open(),
            ),
            timeout=TimeoutConfig(default_seconds=5.0, merge_seconds=5.0),
            evaluation=EvaluationConfig(min_reevaluation_hours=0.0),
            alerting=AlertingConfig(telegram_enabled=False),
            log_format="text",
            database_url="sqlite:///:memory:",
        )

    @classmethod
    def for_production(cls) -> "EngineConfig":
        """Get configuration for production."""
        return cls(
            execution=ExecutionConfig(
                auto_execution=True,
                max_concurrent_operations=4,
                window=ExecutionWindow(start=time(22, 0), end=time(6, 0)),
                batch_cooldown_seconds=300.0,
            ),
            timeout=TimeoutConfig(default_seconds=4 * 3600.0, merge_seconds=2 * 3600.0),
            alerting=AlertingConfig(telegram_enabled=True),
        )

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "EngineConfig":
        """
        Production defaults overridden by LIFECYCLE_* variables.

        Raises:
            ConfigurationError: If a variable cannot be parsed
        """
        load_dotenv(env_file)
        config = cls.for_production()

        auto = os.getenv("LIFECYCLE_AUTO_EXECUTION")
        if auto is not None:
            config.execution.auto_execution = auto.strip().lower() in ("1", "true", "yes", "on")

        start = os.getenv("LIFECYCLE_WINDOW_START")
        end = os.getenv("LIFECYCLE_WINDOW_END")
        if start or end:
            config.execution.window = ExecutionWindow.parse(
                start or config.execution.window.start.strftime("%H:%M"),
                end or config.execution.window.end.strftime("%H:%M"),
            )

        for day in WEEKDAYS:
            key = f"LIFECYCLE_WINDOW_{day.upper()}"
            raw = os.getenv(key)
            if raw is None or raw.strip() == "":
                continue
            if raw.strip().lower() == "closed":
                config.execution.set_weekday_window(day, None)
            else:
                config.execution.set_weekday_window(day, ExecutionWindow.parse_range(raw, key))

        config.execution.batch_cooldown_seconds = _env_number(
            "LIFECYCLE_BATCH_COOLDOWN_SECONDS", config.execution.batch_cooldown_seconds, float
        )

        config.execution.max_concurrent_operations = _env_number(
            "LIFECYCLE_MAX_CONCURRENT", config.execution.max_concurrent_operations, int
        )
        config.timeout.default_seconds = _env_number(
            "LIFECYCLE_ACTION_TIMEOUT_SECONDS", config.timeout.default_seconds, float
        )
        config.evaluation.min_reevaluation_hours = _env_number(
            "LIFECYCLE_MIN_REEVAL_HOURS", config.evaluation.min_reevaluation_hours, float
        )
        config.log_level = os.getenv("LIFECYCLE_LOG_LEVEL", config.log_level).upper()
        config.database_url = os.getenv("DATABASE_URL", config.database_url)

        if config.execution.max_concurrent_operations < 1:
            raise ConfigurationError(
                "LIFECYCLE_MAX_CONCURRENT must be at least 1",
                config_key="LIFECYCLE_MAX_CONCURRENT",
            )
        if config.execution.batch_cooldown_seconds < 0:
            raise ConfigurationError(
                "LIFECYCLE_BATCH_COOLDOWN_SECONDS must not be negative",
                config_key="LIFECYCLE_BATCH_COOLDOWN_SECONDS",
            )
        return config


def _env_number(key: str, default, cast):
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key}={raw!r} is not a number", config_key=key, cause=e)
