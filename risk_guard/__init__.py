"""
Risk Guard.

============================================================
PURPOSE
============================================================
Per-account loss kill switch.

Continuously evaluates every supervised account's intraday
mark-to-market against its starting balance. When the loss
reaches the account's threshold, flattens day-tradeable
positions, disables trading at the broker and records the
event.

COMPONENTS:
- evaluator:  pure MTM / loss / verdict computation
- cache:      start-of-day balance cache (redis)
- lock:       per-account kill lock (redis)
- executor:   kill switch execution
- engine:     monitoring scheduler
- repository: daily risk state, kill event ledger, accounts
- service:    facade for the API layer

============================================================
"""

from .types import (
    RiskVerdict,
    MonitorState,
    MonitorOutcome,
    Account,
    Position,
    RiskSnapshot,
    DailyRiskState,
    KillEvent,
    KillEventPage,
    KillSwitchResult,
    CycleStats,
    RiskStatus,
)
from .config import (
    RiskGuardConfig,
    get_default_config,
    get_testing_config,
    load_config_from_dict,
    load_config_from_env,
)
from .evaluator import evaluate
from .cache import BalanceCache
from .lock import KillLock
from .executor import KillSwitchExecutor
from .engine import MonitoringScheduler
from .service import RiskGuardService, create_risk_guard


__all__ = [
    "RiskVerdict",
    "MonitorState",
    "MonitorOutcome",
    "Account",
    "Position",
    "RiskSnapshot",
    "DailyRiskState",
    "KillEvent",
    "KillEventPage",
    "KillSwitchResult",
    "CycleStats",
    "RiskStatus",
    "RiskGuardConfig",
    "get_default_config",
    "get_testing_config",
    "load_config_from_dict",
    "load_config_from_env",
    "evaluate",
    "BalanceCache",
    "KillLock",
    "KillSwitchExecutor",
    "MonitoringScheduler",
    "RiskGuardService",
    "create_risk_guard",
]
