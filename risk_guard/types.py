"""
Risk Guard - Type Definitions.

============================================================
PURPOSE
============================================================
Domain types shared by the evaluator, the kill switch executor,
the monitoring scheduler and the persistence layer.

Positions are fetched fresh every cycle and never persisted.
Daily risk state and kill events are persisted.

============================================================
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any

from core.constants import DEFAULT_RISK_THRESHOLD


# ============================================================
# ENUMS
# ============================================================

class RiskVerdict(str, Enum):
    """Outcome of a risk evaluation."""

    SAFE = "SAFE"
    """Loss below threshold, or nothing to measure against."""

    TRIGGER = "TRIGGER"
    """Loss at or above threshold. Kill switch must fire."""


class MonitorState(str, Enum):
    """
    Monitoring scheduler lifecycle.

    IDLE -> RUNNING -> STOPPED -> RUNNING (restart)
    """

    IDLE = "IDLE"
    """Never started."""

    RUNNING = "RUNNING"
    """Cycling."""

    STOPPED = "STOPPED"
    """Explicitly stopped. In-flight cycle finishes, no successor."""


class MonitorOutcome(str, Enum):
    """What happened to one account in one cycle."""

    SKIPPED = "SKIPPED"
    SAFE = "SAFE"
    ALREADY_KILLED = "ALREADY_KILLED"
    KILLED = "KILLED"
    KILL_IN_PROGRESS = "KILL_IN_PROGRESS"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    AUTH_FAILED = "AUTH_FAILED"
    FAILED = "FAILED"


# ============================================================
# ACCOUNT
# ============================================================

@dataclass
class Account:
    """
    A supervised trading account.

    Owned by the account-settings layer; read-only here.
    """

    account_id: str

    broker_client_id: Optional[str] = None
    """Account id at the broker."""

    access_token_encrypted: Optional[str] = None
    """Encrypted broker access token."""

    risk_threshold: float = DEFAULT_RISK_THRESHOLD
    """Loss threshold in percent."""

    kill_switch_enabled: bool = True
    """Whether monitoring is enabled for the account."""

    @property
    def has_credential(self) -> bool:
        return bool(self.access_token_encrypted) and bool(self.broker_client_id)

    @property
    def is_monitorable(self) -> bool:
        return self.has_credential and self.kill_switch_enabled


# ============================================================
# POSITION
# ============================================================

@dataclass
class Position:
    """
    An open position as reported by the broker.

    Numeric fields default to 0 when the broker omits them.
    """

    instrument: str = ""
    """Trading symbol."""

    security_id: str = ""

    exchange_segment: str = ""

    product_type: str = ""
    """Position category (INTRADAY, MARGIN, CNC, ...)."""

    net_qty: int = 0
    """Signed net quantity. Positive is long."""

    cost_price: float = 0.0

    unrealized_profit: float = 0.0

    realized_profit: float = 0.0

    broker_client_id: Optional[str] = None

    drv_expiry_date: Optional[str] = None

    drv_option_type: Optional[str] = None

    drv_strike_price: Optional[float] = None

    @property
    def category(self) -> str:
        return (self.product_type or "").upper()

    @property
    def is_long(self) -> bool:
        return self.net_qty > 0


# ============================================================
# RISK SNAPSHOT
# ============================================================

@dataclass(frozen=True)
class RiskSnapshot:
    """Computed risk figures for one account. Never stored standalone."""

    mtm: float
    """Signed sum of unrealized profit over day-tradeable positions."""

    starting_balance: float

    loss_percent: float

    verdict: RiskVerdict

    threshold: float = DEFAULT_RISK_THRESHOLD

    @property
    def is_trigger(self) -> bool:
        return self.verdict == RiskVerdict.TRIGGER

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "mtm": self.mtm,
            "starting_balance": self.starting_balance,
            "loss_percent": self.loss_percent,
            "verdict": self.verdict.value,
            "threshold": self.threshold,
        }


# ============================================================
# DAILY RISK STATE
# ============================================================

@dataclass
class DailyRiskState:
    """Latest persisted risk sample for (account, trading day)."""

    account_id: str

    trading_date: date

    mtm: float = 0.0

    invested: float = 0.0
    """Starting balance the loss percent was computed against."""

    loss_percent: float = 0.0

    kill_status: bool = False

    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "account_id": self.account_id,
            "trading_date": self.trading_date.isoformat(),
            "mtm": self.mtm,
            "invested": self.invested,
            "loss_percent": self.loss_percent,
            "kill_status": self.kill_status,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ============================================================
# KILL EVENT
# ============================================================

@dataclass(frozen=True)
class KillEvent:
    """Immutable ledger entry for one kill switch execution."""

    id: str

    account_id: str

    trigger_mtm: Optional[float]

    trigger_loss_percent: Optional[float]

    execution_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "trigger_mtm": self.trigger_mtm,
            "trigger_loss_percent": self.trigger_loss_percent,
            "execution_time": self.execution_time.isoformat(),
        }


@dataclass
class KillEventPage:
    """One page of an account's kill events, newest first."""

    events: List[KillEvent]

    total: int

    page: int

    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.page > 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "events": [e.to_dict() for e in self.events],
            "pagination": {
                "total": self.total,
                "total_pages": self.total_pages,
                "current_page": self.page,
                "limit": self.limit,
                "has_next_page": self.has_next_page,
                "has_previous_page": self.has_previous_page,
            },
        }


# ============================================================
# KILL SWITCH RESULT
# ============================================================

@dataclass
class KillSwitchResult:
    """Outcome of a completed kill switch execution."""

    account_id: str

    orders_submitted: int

    final_snapshot: RiskSnapshot

    kill_event: KillEvent

    started_at: datetime

    completed_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


# ============================================================
# CYCLE STATS
# ============================================================

@dataclass
class CycleStats:
    """Summary of one monitoring cycle."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    duration_seconds: float = 0.0

    accounts: int = 0

    outcomes: Dict[MonitorOutcome, int] = field(default_factory=dict)

    listing_failed: bool = False

    def record(self, outcome: MonitorOutcome) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def count(self, outcome: MonitorOutcome) -> int:
        return self.outcomes.get(outcome, 0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "started_at": self.started_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "accounts": self.accounts,
            "outcomes": {k.value: v for k, v in self.outcomes.items()},
            "listing_failed": self.listing_failed,
        }


# ============================================================
# RISK STATUS
# ============================================================

@dataclass
class RiskStatus:
    """Live evaluation of an account, as stored."""

    account_id: str

    snapshot: RiskSnapshot

    state: DailyRiskState

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "account_id": self.account_id,
            **self.snapshot.to_dict(),
            "kill_status": self.state.kill_status,
            "trading_date": self.state.trading_date.isoformat(),
        }
