"""
Risk Guard - Configuration.

============================================================
PURPOSE
============================================================
Configuration for monitor pacing, kill switch execution,
the balance cache, the broker connection and alerting.

Timing values mirror what the broker tolerates: orders are
paced, the kill flag waits for closures to settle.

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from core.constants import (
    BALANCE_CACHE_PREFIX,
    DEFAULT_RISK_THRESHOLD,
    KILL_LOCK_TTL_SECONDS,
    MIN_BALANCE_CACHE_TTL_SECONDS,
)
from core.exceptions import InvalidConfigError


# ============================================================
# MONITOR TIMING
# ============================================================

@dataclass
class MonitorTimingConfig:
    """
    Pacing of the monitoring loop.
    """

    interval_seconds: float = 0.5
    """Target start-to-start interval between cycles."""

    min_interval_seconds: float = 0.1
    """Minimum delay between cycles when a cycle overruns."""

    max_concurrent_accounts: int = 50
    """Upper bound on accounts evaluated at once within a cycle."""

    auth_warning_cooldown_seconds: float = 300.0
    """At most one invalid-credential warning per account per window."""


# ============================================================
# KILL SWITCH
# ============================================================

@dataclass
class KillSwitchConfig:
    """
    Kill switch execution parameters.
    """

    lock_ttl_seconds: int = KILL_LOCK_TTL_SECONDS
    """Self-healing expiry of the per-account kill lock."""

    order_pacing_seconds: float = 0.5
    """Delay after each position-closing order."""

    settle_delay_seconds: float = 2.0
    """Delay between the last closing order and the kill flag."""


# ============================================================
# BALANCE CACHE
# ============================================================

@dataclass
class BalanceCacheConfig:
    """
    Start-of-day balance cache.
    """

    enabled: bool = True

    key_prefix: str = BALANCE_CACHE_PREFIX

    min_ttl_seconds: int = MIN_BALANCE_CACHE_TTL_SECONDS


# ============================================================
# BROKER
# ============================================================

@dataclass
class BrokerConfig:
    """
    Broker REST connection.
    """

    base_url: str = "https://api.dhan.co"

    api_version: str = "/v2"

    connect_timeout_seconds: float = 5.0

    read_timeout_seconds: float = 15.0


# ============================================================
# ALERTING
# ============================================================

@dataclass
class AlertingConfig:
    """
    Alert delivery for kill executions and credential problems.
    """

    enabled: bool = True

    telegram_enabled: bool = False

    telegram_bot_token: Optional[str] = None

    telegram_chat_id: Optional[str] = None


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class RiskGuardConfig:
    """
    Master configuration for the risk guard.
    """

    timing: MonitorTimingConfig = field(default_factory=MonitorTimingConfig)

    kill_switch: KillSwitchConfig = field(default_factory=KillSwitchConfig)

    cache: BalanceCacheConfig = field(default_factory=BalanceCacheConfig)

    broker: BrokerConfig = field(default_factory=BrokerConfig)

    alerting: AlertingConfig = field(default_factory=AlertingConfig)

    database_url: Optional[str] = None
    """Async SQLAlchemy URL. Falls back to database.engine default."""

    redis_url: str = "redis://localhost:6379"

    encryption_key: Optional[str] = None
    """Key the broker access tokens were encrypted with."""

    default_risk_threshold: float = DEFAULT_RISK_THRESHOLD

    enable_monitoring: bool = False
    """Start the monitoring loop on process start."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging. Secrets are omitted."""
        return {
            "timing": {
                "interval_seconds": self.timing.interval_seconds,
                "min_interval_seconds": self.timing.min_interval_seconds,
                "max_concurrent_accounts": self.timing.max_concurrent_accounts,
            },
            "kill_switch": {
                "lock_ttl_seconds": self.kill_switch.lock_ttl_seconds,
                "order_pacing_seconds": self.kill_switch.order_pacing_seconds,
                "settle_delay_seconds": self.kill_switch.settle_delay_seconds,
            },
            "broker": {
                "base_url": self.broker.base_url,
                "api_version": self.broker.api_version,
            },
            "cache_enabled": self.cache.enabled,
            "alerting_enabled": self.alerting.enabled,
            "enable_monitoring": self.enable_monitoring,
        }


# ============================================================
# PRESET FACTORIES
# ============================================================

def get_default_config() -> RiskGuardConfig:
    """
    Get default configuration.

    Production pacing.
    """
    return RiskGuardConfig()


def get_testing_config() -> RiskGuardConfig:
    """
    Get testing configuration.

    No pacing delays, no alert delivery.
    NOT FOR PRODUCTION.
    """
    config = RiskGuardConfig()

    config.timing.interval_seconds = 0.01
    config.timing.min_interval_seconds = 0.001

    config.kill_switch.order_pacing_seconds = 0.0
    config.kill_switch.settle_delay_seconds = 0.0

    config.alerting.enabled = False

    return config


def load_config_from_dict(data: Dict[str, Any]) -> RiskGuardConfig:
    """
    Load configuration from dictionary.

    Args:
        data: Configuration dictionary

    Returns:
        RiskGuardConfig instance
    """
    config = get_default_config()

    if "timing" in data:
        timing = data["timing"]
        config.timing.interval_seconds = float(timing.get(
            "interval_seconds", config.timing.interval_seconds,
        ))
        config.timing.min_interval_seconds = float(timing.get(
            "min_interval_seconds", config.timing.min_interval_seconds,
        ))
        config.timing.max_concurrent_accounts = int(timing.get(
            "max_concurrent_accounts", config.timing.max_concurrent_accounts,
        ))

    if "kill_switch" in data:
        ks = data["kill_switch"]
        config.kill_switch.lock_ttl_seconds = int(ks.get(
            "lock_ttl_seconds", config.kill_switch.lock_ttl_seconds,
        ))
        config.kill_switch.order_pacing_seconds = float(ks.get(
            "order_pacing_seconds", config.kill_switch.order_pacing_seconds,
        ))
        config.kill_switch.settle_delay_seconds = float(ks.get(
            "settle_delay_seconds", config.kill_switch.settle_delay_seconds,
        ))

    if "broker" in data:
        broker = data["broker"]
        config.broker.base_url = broker.get("base_url", config.broker.base_url)
        config.broker.api_version = broker.get("api_version", config.broker.api_version)

    for key in ("database_url", "redis_url", "encryption_key"):
        if key in data:
            setattr(config, key, data[key])

    if "enable_monitoring" in data:
        config.enable_monitoring = bool(data["enable_monitoring"])

    validate_config(config)
    return config


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def load_config_from_env() -> RiskGuardConfig:
    """
    Build configuration from the process environment (.env honoured).
    """
    load_dotenv()

    config = get_default_config()

    config.database_url = os.getenv("DATABASE_URL") or None
    config.redis_url = os.getenv("REDIS_URL", config.redis_url)
    config.encryption_key = os.getenv("ENCRYPTION_KEY") or None
    config.enable_monitoring = _env_flag("ENABLE_MONITORING")

    config.broker.base_url = os.getenv("DHAN_API_BASE_URL", config.broker.base_url)
    config.broker.api_version = os.getenv("DHAN_API_VERSION", config.broker.api_version)

    interval_ms = os.getenv("MONITOR_INTERVAL_MS")
    if interval_ms:
        try:
            config.timing.interval_seconds = int(interval_ms) / 1000
        except ValueError as e:
            raise InvalidConfigError("MONITOR_INTERVAL_MS", interval_ms, "not an integer") from e

    bot_token = os.getenv("TELEGRAM_BOT_TOKEN")
    chat_id = os.getenv("TELEGRAM_CHAT_ID")
    if bot_token and chat_id:
        config.alerting.telegram_enabled = True
        config.alerting.telegram_bot_token = bot_token
        config.alerting.telegram_chat_id = chat_id

    validate_config(config)
    return config


def validate_config(config: RiskGuardConfig) -> None:
    """
    Reject configurations that would spin or never release locks.

    Raises:
        InvalidConfigError
    """
    if config.timing.interval_seconds < 0:
        raise InvalidConfigError(
            "timing.interval_seconds", config.timing.interval_seconds, "must be >= 0",
        )
    if config.timing.min_interval_seconds < 0:
        raise InvalidConfigError(
            "timing.min_interval_seconds", config.timing.min_interval_seconds, "must be >= 0",
        )
    if config.timing.max_concurrent_accounts < 1:
        raise InvalidConfigError(
            "timing.max_concurrent_accounts", config.timing.max_concurrent_accounts, "must be >= 1",
        )
    if config.kill_switch.lock_ttl_seconds < 1:
        raise InvalidConfigError(
            "kill_switch.lock_ttl_seconds", config.kill_switch.lock_ttl_seconds, "must be >= 1",
        )


__all__ = [
    "MonitorTimingConfig",
    "KillSwitchConfig",
    "BalanceCacheConfig",
    "BrokerConfig",
    "AlertingConfig",
    "RiskGuardConfig",
    "get_default_config",
    "get_testing_config",
    "load_config_from_dict",
    "load_config_from_env",
    "validate_config",
]
