"""
Risk Guard - Alerting.

============================================================
PURPOSE
============================================================
Send immediate alerts for kill switch activity via Telegram.

ALERTS:
- KILL EXECUTED: positions flattened, trading disabled
- KILL NOT RECORDED: trading disabled, ledger write failed
- CREDENTIAL INVALID: broker token rejected (rate limited
  by the scheduler's warning cooldown)

Alert delivery never raises into the caller.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import aiohttp

from .config import AlertingConfig
from .types import KillSwitchResult


logger = logging.getLogger(__name__)


# ============================================================
# ALERT TYPES
# ============================================================

class AlertPriority(Enum):
    """Alert priority levels."""

    LOW = "low"
    """Informational only."""

    MEDIUM = "medium"
    """Warning, requires attention."""

    HIGH = "high"
    """Critical, requires immediate attention."""

    URGENT = "urgent"
    """Emergency, requires immediate action."""


@dataclass
class Alert:
    """Alert to be sent."""

    priority: AlertPriority

    title: str

    message: str

    details: Dict[str, Any] = field(default_factory=dict)

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================
# ALERT FORMATTERS
# ============================================================

def format_kill_executed_alert(result: KillSwitchResult) -> Alert:
    """
    Format a completed kill switch execution as an alert.
    """
    snapshot = result.final_snapshot
    lines = [
        f"**Account:** `{result.account_id}`",
        f"**Time:** {result.completed_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        f"**Orders submitted:** {result.orders_submitted}",
        f"**MTM:** {snapshot.mtm:.2f}",
        f"**Loss:** {snapshot.loss_percent:.2f}% (threshold {snapshot.threshold:.2f}%)",
        f"**Starting balance:** {snapshot.starting_balance:.2f}",
    ]

    return Alert(
        priority=AlertPriority.HIGH,
        title="🛑 KILL SWITCH EXECUTED",
        message="\n".join(lines),
        details={
            "account_id": result.account_id,
            "kill_event_id": result.kill_event.id,
            **snapshot.to_dict(),
        },
        timestamp=result.completed_at,
    )


def format_kill_not_recorded_alert(
    account_id: str,
    trigger_mtm: float,
    trigger_loss_percent: float,
    error: str,
) -> Alert:
    """Trading disabled at the broker, ledger entry missing."""
    lines = [
        f"**Account:** `{account_id}`",
        f"**MTM:** {trigger_mtm:.2f}",
        f"**Loss:** {trigger_loss_percent:.2f}%",
        "",
        "Trading is disabled at the broker but the kill event was not recorded.",
        f"**Error:** {error}",
    ]

    return Alert(
        priority=AlertPriority.URGENT,
        title="🚨 KILL EVENT NOT RECORDED",
        message="\n".join(lines),
        details={
            "account_id": account_id,
            "trigger_mtm": trigger_mtm,
            "trigger_loss_percent": trigger_loss_percent,
            "error": error,
        },
    )


def format_credential_invalid_alert(account_id: str, reason: str) -> Alert:
    return Alert(
        priority=AlertPriority.MEDIUM,
        title="⚠️ BROKER CREDENTIAL INVALID",
        message=f"**Account:** `{account_id}`\n\n{reason}\n\nAccount is NOT protected until fixed.",
        details={"account_id": account_id, "reason": reason},
    )


# ============================================================
# ALERT SENDER INTERFACE
# ============================================================

class AlertSender(ABC):
    """Abstract interface for sending alerts."""

    @abstractmethod
    async def send(self, alert: Alert) -> bool:
        """
        Send an alert.

        Args:
            alert: Alert to send

        Returns:
            True if sent successfully
        """
        pass


# ============================================================
# TELEGRAM ALERT SENDER
# ============================================================

class TelegramAlertSender(AlertSender):
    """
    Sends alerts via Telegram.

    Uses the Telegram Bot API to send messages.
    """

    MAX_MESSAGE_LENGTH = 4096

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        parse_mode: str = "Markdown",
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize Telegram sender.

        Args:
            bot_token: Telegram bot token
            chat_id: Chat ID to send to
            parse_mode: Message parse mode
            session: Shared HTTP session; a short-lived one is used if None
        """
        self._chat_id = chat_id
        self._parse_mode = parse_mode
        self._session = session
        self._api_url = f"https://api.telegram.org/bot{bot_token}/sendMessage"

    def _payload(self, alert: Alert) -> Dict[str, Any]:
        text = f"*{alert.title}*\n\n{alert.message}"
        if len(text) > self.MAX_MESSAGE_LENGTH:
            text = text[:self.MAX_MESSAGE_LENGTH - 3] + "..."
        return {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": self._parse_mode,
        }

    async def _post(self, session: aiohttp.ClientSession, alert: Alert) -> bool:
        async with session.post(self._api_url, json=self._payload(alert)) as response:
            if response.status == 200:
                logger.info(f"Telegram alert sent: {alert.title}")
                return True
            error = await response.text()
            logger.error(f"Telegram send failed: status={response.status} body={error}")
            return False

    async def send(self, alert: Alert) -> bool:
        """Send alert via Telegram."""
        try:
            if self._session is not None:
                return await self._post(self._session, alert)
            async with aiohttp.ClientSession() as session:
                return await self._post(session, alert)
        except aiohttp.ClientError as e:
            logger.error(f"Telegram send error: {e}")
            return False


# ============================================================
# LOGGING ALERT SENDER
# ============================================================

class LoggingAlertSender(AlertSender):
    """
    Writes alerts to the log (development and fallback).
    """

    _LEVELS = {
        AlertPriority.LOW: logging.INFO,
        AlertPriority.MEDIUM: logging.WARNING,
        AlertPriority.HIGH: logging.ERROR,
        AlertPriority.URGENT: logging.CRITICAL,
    }

    async def send(self, alert: Alert) -> bool:
        logger.log(
            self._LEVELS.get(alert.priority, logging.WARNING),
            f"ALERT [{alert.priority.value.upper()}] {alert.title} | {alert.details}",
        )
        return True


# ============================================================
# ALERTING SERVICE
# ============================================================

class AlertingService:
    """
    Alerting service for the risk guard.

    Fans alerts out to every sender. A failing sender is logged
    and never affects the kill switch or the monitor.
    """

    def __init__(
        self,
        config: AlertingConfig,
        senders: Optional[List[AlertSender]] = None,
    ):
        """
        Initialize alerting service.

        Args:
            config: Alerting configuration
            senders: List of alert senders
        """
        self._config = config
        self._senders = senders or []

    @classmethod
    def from_config(
        cls,
        config: AlertingConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "AlertingService":
        """Logging sender always; Telegram when configured."""
        senders: List[AlertSender] = [LoggingAlertSender()]
        if config.telegram_enabled and config.telegram_bot_token and config.telegram_chat_id:
            senders.append(TelegramAlertSender(
                bot_token=config.telegram_bot_token,
                chat_id=config.telegram_chat_id,
                session=session,
            ))
        return cls(config, senders)

    def add_sender(self, sender: AlertSender) -> None:
        """Add an alert sender."""
        self._senders.append(sender)

    async def alert_kill_executed(self, result: KillSwitchResult) -> None:
        await self._send_alert(format_kill_executed_alert(result))

    async def alert_kill_not_recorded(
        self,
        account_id: str,
        trigger_mtm: float,
        trigger_loss_percent: float,
        error: str,
    ) -> None:
        await self._send_alert(format_kill_not_recorded_alert(
            account_id, trigger_mtm, trigger_loss_percent, error,
        ))

    async def alert_credential_invalid(self, account_id: str, reason: str) -> None:
        await self._send_alert(format_credential_invalid_alert(account_id, reason))

    async def _send_alert(self, alert: Alert) -> None:
        """Send alert through all configured senders."""
        if not self._config.enabled:
            return

        for sender in self._senders:
            try:
                await sender.send(alert)
            except Exception as e:
                logger.error(f"Alert sender failed: {type(sender).__name__}: {e}")


__all__ = [
    "AlertPriority",
    "Alert",
    "format_kill_executed_alert",
    "format_kill_not_recorded_alert",
    "format_credential_invalid_alert",
    "AlertSender",
    "TelegramAlertSender",
    "LoggingAlertSender",
    "AlertingService",
]
