"""
Execution Engine - Alerting.

============================================================
PURPOSE
============================================================
Operator alerts for lifecycle events via Telegram.

ALERT TYPES:
- Action timeouts
- Terminal action failures (pair blocked)
- Failure rate above threshold
- Configuration errors that stop a loop
- Stale access-based temperatures

SAFETY REQUIREMENTS:
- Abnormal events are alerted, never only logged
- Rate limiting to prevent spam
- Delivery failures never affect the engine

============================================================
"""

import logging
import os
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

import aiohttp

from core.clock import ClockProtocol, SystemClock


logger = logging.getLogger(__name__)


# ============================================================
# ALERT TYPES
# ============================================================

class AlertSeverity(Enum):
    """Alert severity levels."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AlertType(Enum):
    """Types of alerts."""

    ACTION_TIMEOUT = "ACTION_TIMEOUT"
    """A tiering action overran its timeout."""

    ACTION_FAILED = "ACTION_FAILED"
    """A tiering action failed terminally."""

    FAILURE_RATE = "FAILURE_RATE"
    """Too many failures in the rolling window."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """A loop could not read its configuration."""

    STALE_TEMPERATURES = "STALE_TEMPERATURES"
    """Access refresh has not run within its bound."""

    SYSTEM_ERROR = "SYSTEM_ERROR"
    """Internal system error."""


_SEVERITY_RANK = {
    AlertSeverity.INFO: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.ERROR: 2,
    AlertSeverity.CRITICAL: 3,
}

_SEVERITY_EMOJI = {
    AlertSeverity.INFO: "ℹ️",
    AlertSeverity.WARNING: "⚠️",
    AlertSeverity.ERROR: "❌",
    AlertSeverity.CRITICAL: "🚨",
}


@dataclass
class Alert:
    """An alert to be sent."""

    alert_type: AlertType
    severity: AlertSeverity
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    dataset: Optional[str] = None
    partition: Optional[str] = None
    policy: Optional[str] = None


# ============================================================
# TELEGRAM ALERTER
# ============================================================

@dataclass
class TelegramAlerterConfig:
    """Configuration for Telegram delivery."""

    enabled: bool = True
    """Whether alerts are delivered (history is kept regardless)."""

    telegram_bot_token_env: str = "TELEGRAM_BOT_TOKEN"
    telegram_chat_id_env: str = "TELEGRAM_CHAT_ID"

    min_interval_seconds: float = 5.0
    """Minimum interval between delivered alerts."""

    max_alerts_per_minute: int = 10

    min_severity: AlertSeverity = AlertSeverity.WARNING
    """Alerts below this severity are only recorded."""


class TelegramAlerter:
    """
    Sends alerts via Telegram.

    Features:
    - Rate limiting
    - Severity filtering
    - In-memory history
    """

    def __init__(
        self,
        config: Optional[TelegramAlerterConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config or TelegramAlerterConfig()
        self._clock = clock or SystemClock()

        self._bot_token = os.environ.get(self._config.telegram_bot_token_env, "")
        self._chat_id = os.environ.get(self._config.telegram_chat_id_env, "")

        self._last_alert_time: Optional[datetime] = None
        self._alerts_this_minute: List[datetime] = []

        self._session: Optional[aiohttp.ClientSession] = None

        self._history: List[Alert] = []
        self._max_history = 100

    @property
    def is_configured(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    async def send_alert(self, alert: Alert) -> bool:
        """
        Record and deliver an alert.

        Returns:
            Whether the alert was delivered
        """
        if alert.timestamp is None:
            alert.timestamp = self._clock.now()

        self._history.append(alert)
        if len(self._history) > self._max_history:
            self._history.pop(0)
        log = logger.error if _SEVERITY_RANK[alert.severity] >= 2 else logger.warning
        log(f"ALERT {alert.alert_type.value} [{alert.severity.value}]: {alert.message}")

        if not self._config.enabled:
            return False
        if _SEVERITY_RANK[alert.severity] < _SEVERITY_RANK[self._config.min_severity]:
            return False
        if not self._can_send():
            logger.warning(f"Alert rate limited: {alert.message}")
            return False
        return await self._send_telegram(alert)

    async def _send_telegram(self, alert: Alert) -> bool:
        if not self.is_configured:
            logger.debug(f"Telegram not configured, alert only logged: {alert.message}")
            return False

        try:
            if self._session is None:
                self._session = aiohttp.ClientSession()
            url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
            payload = {
                "chat_id": self._chat_id,
                "text": self._format_message(alert),
                "parse_mode": "HTML",
            }
            async with self._session.post(url, json=payload) as response:
                if response.status == 200:
                    self._record_sent()
                    logger.info(f"Alert sent: {alert.alert_type.value}")
                    return True
                body = await response.text()
                logger.error(f"Telegram API error {response.status}: {body}")
                return False
        except aiohttp.ClientError as e:
            logger.error(f"Failed to send Telegram alert: {e}")
            return False

    def _format_message(self, alert: Alert) -> str:
        lines = [
            f"{_SEVERITY_EMOJI.get(alert.severity, '📢')} <b>{alert.alert_type.value}</b>",
            f"<b>Severity:</b> {alert.severity.value}",
            f"<b>Time:</b> {alert.timestamp.strftime('%Y-%m-%d %H:%M:%S')} UTC",
            "",
            alert.message,
        ]
        if alert.dataset:
            target = f"{alert.dataset}.{alert.partition}" if alert.partition else alert.dataset
            lines.append(f"\n<b>Partition:</b> <code>{target}</code>")
        if alert.policy:
            lines.append(f"<b>Policy:</b> {alert.policy}")
        if alert.details:
            lines.append("\n<b>Details:</b>")
            for key, value in alert.details.items():
                lines.append(f"  • {key}: {value}")
        return "\n".join(lines)

    def _can_send(self) -> bool:
        now = self._clock.now()
        if self._last_alert_time:
            elapsed = (now - self._last_alert_time).total_seconds()
            if elapsed < self._config.min_interval_seconds:
                return False
        minute_ago = now - timedelta(minutes=1)
        self._alerts_this_minute = [t for t in self._alerts_this_minute if t > minute_ago]
        return len(self._alerts_this_minute) < self._config.max_alerts_per_minute

    def _record_sent(self) -> None:
        now = self._clock.now()
        self._last_alert_time = now
        self._alerts_this_minute.append(now)

    def get_history(self, limit: int = 10) -> List[Alert]:
        return self._history[-limit:]

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None


# ============================================================
# FAILURE RATE MONITOR
# ============================================================

class FailureRateMonitor:
    """
    Alerts when action failures in a rolling window exceed a
    threshold. Repeat alerts are spaced by min_alert_interval.
    """

    def __init__(
        self,
        alerter: TelegramAlerter,
        clock: ClockProtocol,
        failure_threshold: int = 5,
        window_seconds: float = 3600.0,
        min_alert_interval_seconds: float = 300.0,
    ):
        self._alerter = alerter
        self._clock = clock
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.min_alert_interval_seconds = min_alert_interval_seconds
        self._failures: Deque[datetime] = deque()
        self._last_alert_at: Optional[datetime] = None

    def _trim(self, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.window_seconds)
        while self._failures and self._failures[0] < cutoff:
            self._failures.popleft()

    @property
    def failures_in_window(self) -> int:
        self._trim(self._clock.now())
        return len(self._failures)

    async def record_failure(self, error_code: str) -> bool:
        """
        Count a failure; returns whether an alert was raised.
        """
        now = self._clock.now()
        self._failures.append(now)
        self._trim(now)

        if len(self._failures) <= self.failure_threshold:
            return False
        if self._last_alert_at is not None:
            since = (now - self._last_alert_at).total_seconds()
            if since < self.min_alert_interval_seconds:
                return False

        self._last_alert_at = now
        await self._alerter.send_alert(Alert(
            alert_type=AlertType.FAILURE_RATE,
            severity=AlertSeverity.ERROR,
            message=(
                f"{len(self._failures)} action failures in the last "
                f"{int(self.window_seconds)}s (threshold {self.failure_threshold})"
            ),
            details={"last_error_code": error_code},
        ))
        return True


# ============================================================
# ALERT HELPER FUNCTIONS
# ============================================================

def create_timeout_alert(
    dataset: str,
    partition: str,
    policy: str,
    action: str,
    timeout_seconds: float,
) -> Alert:
    return Alert(
        alert_type=AlertType.ACTION_TIMEOUT,
        severity=AlertSeverity.ERROR,
        message=(
            f"{action} did not finish within {timeout_seconds:.0f}s; "
            f"the partition stays busy until the storage call returns"
        ),
        dataset=dataset,
        partition=partition,
        policy=policy,
        details={"timeout_seconds": timeout_seconds},
    )


def create_action_failed_alert(
    dataset: str,
    partition: str,
    policy: str,
    error_code: str,
    error_message: str,
) -> Alert:
    return Alert(
        alert_type=AlertType.ACTION_FAILED,
        severity=AlertSeverity.ERROR,
        message=f"Action failed terminally ({error_code}): {error_message}",
        dataset=dataset,
        partition=partition,
        policy=policy,
        details={"error_code": error_code, "blocked": True},
    )


def create_configuration_alert(error_message: str, component: str) -> Alert:
    return Alert(
        alert_type=AlertType.CONFIGURATION_ERROR,
        severity=AlertSeverity.CRITICAL,
        message=f"Configuration error in {component}: {error_message}",
        details={"component": component},
    )


def create_system_error_alert(error_message: str, component: str = "LifecycleEngine") -> Alert:
    return Alert(
        alert_type=AlertType.SYSTEM_ERROR,
        severity=AlertSeverity.CRITICAL,
        message=f"System error in {component}: {error_message}",
        details={"component": component},
    )


def create_stale_temperatures_alert(seconds_since_refresh: Optional[float], bound_seconds: int) -> Alert:
    since = "never" if seconds_since_refresh is None else f"{seconds_since_refresh / 3600:.1f}h ago"
    return Alert(
        alert_type=AlertType.STALE_TEMPERATURES,
        severity=AlertSeverity.WARNING,
        message=f"Access-based temperatures last refreshed {since} (bound {bound_seconds / 3600:.1f}h)",
    )
