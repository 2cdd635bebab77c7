"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the risk guard.

- Provides clear exception hierarchy
- Enables specific error handling per failure class
- Supports error categorization for alerting
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
TradingException (base)
├── ConfigurationError
│   ├── MissingConfigError
│   ├── InvalidConfigError
│   └── AccountNotConfiguredError
├── AccountNotFoundError
├── BrokerError
│   ├── AuthenticationError
│   ├── RateLimitError
│   └── BrokerUnavailableError
├── KillSwitchError
│   ├── KillSwitchInProgressError
│   └── KillEventPersistenceError
├── DatabaseError
└── StateTransitionError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact operations."""

    CRITICAL = "critical"
    """Critical issue, requires immediate action."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error can be recovered from automatically."""

    TRANSIENT = "transient"
    """Temporary error, the next polling cycle may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class TradingException(Exception):
    """
    Base exception for all risk guard errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - recoverable: for error handling decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_recoverable: bool = True
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.classification in (
            ErrorClassification.RECOVERABLE,
            ErrorClassification.TRANSIENT,
        )

    @property
    def requires_immediate_action(self) -> bool:
        """Check if error requires immediate action."""
        return self.severity in (Severity.HIGH, Severity.CRITICAL)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = (
            f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
            f" | recoverable={self.recoverable}"
        )
        return f"{line} | {ctx_str}" if ctx_str else line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(TradingException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key

        super().__init__(message, context=context, **kwargs)


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    def __init__(self, key: str, source: str = "environment"):
        super().__init__(
            message=f"Missing required configuration: {key}",
            config_key=key,
            context={"source": source},
        )


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            config_key=key,
            context={"actual_value": str(value)[:100], "reason": reason},
        )


class AccountNotConfiguredError(ConfigurationError):
    """
    Account has no usable broker credential.

    Steady state for accounts that never linked a broker; the
    account is skipped until the user fixes its settings.
    """

    default_severity = Severity.LOW

    def __init__(self, account_id: str, reason: str = "broker credential not configured"):
        super().__init__(
            message=f"Account {account_id} not configured: {reason}",
            context={"account_id": account_id, "reason": reason},
        )
        self.account_id = account_id


# ============================================================
# ACCOUNT DIRECTORY ERRORS
# ============================================================

class AccountNotFoundError(TradingException):
    """Account vanished between listing and evaluation."""

    default_severity = Severity.LOW
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, account_id: str):
        super().__init__(
            message=f"Account not found: {account_id}",
            context={"account_id": account_id},
        )
        self.account_id = account_id


# ============================================================
# BROKER ERRORS
# ============================================================

class BrokerError(TradingException):
    """Remote broker call failed."""

    default_severity = Severity.HIGH
    default_recoverable = True
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        category: Optional[str] = None,
        http_status: Optional[int] = None,
        endpoint: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if category:
            context["category"] = category
        if http_status is not None:
            context["http_status"] = http_status
        if endpoint:
            context["endpoint"] = endpoint

        super().__init__(message, context=context, **kwargs)
        self.category = category
        self.http_status = http_status
        self.endpoint = endpoint


class AuthenticationError(BrokerError):
    """Broker rejected the stored credential (invalid or expired)."""

    default_severity = Severity.MEDIUM
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE


class RateLimitError(BrokerError):
    """Broker throttled the request."""


class BrokerUnavailableError(BrokerError):
    """Network failure, timeout or broker-side 5xx."""


class BrokerNotFoundError(BrokerError):
    """Broker has no record of the requested resource (HTTP 404)."""

    default_severity = Severity.LOW
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE


# ============================================================
# KILL SWITCH ERRORS
# ============================================================

class KillSwitchError(TradingException):
    """Base class for kill switch execution errors."""

    default_severity = Severity.HIGH


class KillSwitchInProgressError(KillSwitchError):
    """Another kill switch execution holds the account lock."""

    default_severity = Severity.LOW
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(self, account_id: str):
        super().__init__(
            message="Kill switch already in progress",
            context={"account_id": account_id},
        )
        self.account_id = account_id


class KillSwitchAlreadyExecutedError(KillSwitchError):
    """Today's daily risk state already records a kill for the account."""

    default_severity = Severity.LOW
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(self, account_id: str):
        super().__init__(
            message="Kill switch already executed today",
            context={"account_id": account_id},
        )
        self.account_id = account_id


class KillEventPersistenceError(KillSwitchError):
    """
    Trading was disabled at the broker but the kill event could
    not be recorded.

    Inconsistent but safe: the account is protected, the ledger is
    missing an entry.
    """

    default_severity = Severity.CRITICAL
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        account_id: str,
        trigger_mtm: float,
        trigger_loss_percent: float,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message=(
                f"Kill switch executed for {account_id} but kill event "
                f"was not recorded"
            ),
            context={
                "account_id": account_id,
                "trigger_mtm": trigger_mtm,
                "trigger_loss_percent": trigger_loss_percent,
            },
            cause=cause,
        )
        self.account_id = account_id


# ============================================================
# SYSTEM ERRORS
# ============================================================

class DatabaseError(TradingException):
    """Database operation failed."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if operation:
            context["operation"] = operation
        if table:
            context["table"] = table

        super().__init__(message, context=context, **kwargs)


class StateTransitionError(TradingException):
    """Invalid lifecycle state transition."""

    default_recoverable = False

    def __init__(
        self,
        message: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if from_state:
            context["from_state"] = from_state
        if to_state:
            context["to_state"] = to_state

        super().__init__(message, context=context, **kwargs)


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "Severity",
    "ErrorClassification",
    "TradingException",
    "ConfigurationError",
    "MissingConfigError",
    "InvalidConfigError",
    "AccountNotConfiguredError",
    "AccountNotFoundError",
    "BrokerError",
    "AuthenticationError",
    "RateLimitError",
    "BrokerUnavailableError",
    "BrokerNotFoundError",
    "KillSwitchError",
    "KillSwitchInProgressError",
    "KillSwitchAlreadyExecutedError",
    "KillEventPersistenceError",
    "DatabaseError",
    "StateTransitionError",
]
