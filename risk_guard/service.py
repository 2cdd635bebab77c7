"""
Risk Guard - Service Facade.

============================================================
PURPOSE
============================================================
Single entry point for the API / settings layer:

- trigger_kill_switch       manual kill, same path as the monitor
- get_latest_risk_snapshot  today's stored daily risk state
- get_risk_status           live evaluation (stored like a sample)
- list_kill_events          paginated ledger, newest first
- get_risk_history          daily states, oldest first
- reset_daily_state         clear today's figures and kill flag
- start_monitoring / stop_monitoring

============================================================
"""

import logging
from datetime import timedelta
from typing import List, Optional

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.clock import ClockProtocol, SystemClock
from core.exceptions import AccountNotFoundError, MissingConfigError

from .adapters.base import SnapshotSourceFactory
from .adapters.dhan import DhanSourceFactory
from .alerting import AlertingService
from .cache import BalanceCache
from .config import RiskGuardConfig, get_default_config
from .cooldown import WarningCooldown
from .engine import MonitoringScheduler
from .evaluator import evaluate
from .executor import KillSwitchExecutor
from .lock import KillLock
from .repository import AccountDirectory, DailyRiskStateRepository, KillEventLedger
from .types import (
    DailyRiskState,
    KillEventPage,
    KillSwitchResult,
    MonitorState,
    RiskStatus,
)


logger = logging.getLogger(__name__)


DEFAULT_EVENTS_LIMIT = 10
MAX_EVENTS_LIMIT = 100
DEFAULT_HISTORY_DAYS = 30
MAX_HISTORY_DAYS = 90


class RiskGuardService:
    """
    Facade over the monitor, the kill switch and the stores.
    """

    def __init__(
        self,
        accounts: AccountDirectory,
        sources: SnapshotSourceFactory,
        states: DailyRiskStateRepository,
        ledger: KillEventLedger,
        executor: KillSwitchExecutor,
        scheduler: MonitoringScheduler,
        clock: Optional[ClockProtocol] = None,
    ):
        self._accounts = accounts
        self._sources = sources
        self._states = states
        self._ledger = ledger
        self._executor = executor
        self._scheduler = scheduler
        self._clock = clock or SystemClock()

    @property
    def scheduler(self) -> MonitoringScheduler:
        return self._scheduler

    @property
    def monitor_state(self) -> MonitorState:
        return self._scheduler.state

    # --------------------------------------------------------
    # KILL SWITCH
    # --------------------------------------------------------

    async def trigger_kill_switch(self, account_id: str) -> KillSwitchResult:
        """
        Manually execute the kill switch.

        Raises:
            KillSwitchInProgressError: An execution is already running
        """
        logger.warning(f"Manual kill switch requested: account={account_id}")
        return await self._executor.execute(account_id)

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    async def get_latest_risk_snapshot(self, account_id: str) -> Optional[DailyRiskState]:
        """Today's stored state, or None before the first sample."""
        return await self._states.get(account_id, self._clock.trading_date())

    async def get_risk_status(self, account_id: str) -> RiskStatus:
        """
        Evaluate the account now against a fresh broker balance.

        The result is stored like a monitoring sample; it never
        clears kill_status.

        Raises:
            AccountNotFoundError
            AccountNotConfiguredError
            BrokerError
        """
        account = await self._accounts.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)

        source = self._sources.create(account)
        positions = await source.get_positions()
        starting_balance = await source.fetch_starting_balance()

        snapshot = evaluate(positions, starting_balance, account.risk_threshold)
        state = await self._states.upsert_sample(
            account_id, self._clock.trading_date(), snapshot,
        )
        return RiskStatus(account_id=account_id, snapshot=snapshot, state=state)

    async def list_kill_events(
        self,
        account_id: str,
        limit: int = DEFAULT_EVENTS_LIMIT,
        page: int = 1,
    ) -> KillEventPage:
        """Kill events, newest first. Limit is capped at 100."""
        limit = min(max(int(limit), 1), MAX_EVENTS_LIMIT)
        page = max(int(page), 1)
        return await self._ledger.list_page(account_id, limit=limit, page=page)

    async def get_risk_history(
        self,
        account_id: str,
        days: int = DEFAULT_HISTORY_DAYS,
    ) -> List[DailyRiskState]:
        """Daily states for the last N days, oldest first. Capped at 90."""
        days = min(max(int(days), 1), MAX_HISTORY_DAYS)
        since = self._clock.trading_date() - timedelta(days=days)
        return await self._states.history(account_id, since)

    # --------------------------------------------------------
    # MUTATIONS
    # --------------------------------------------------------

    async def reset_daily_state(self, account_id: str) -> DailyRiskState:
        """Zero today's figures and clear the kill flag."""
        return await self._states.reset(account_id, self._clock.trading_date())

    # --------------------------------------------------------
    # MONITOR LIFECYCLE
    # --------------------------------------------------------

    async def start_monitoring(self) -> None:
        await self._scheduler.start()

    async def stop_monitoring(self) -> None:
        await self._scheduler.stop()

    async def close(self) -> None:
        """Stop monitoring and release broker sessions."""
        await self._scheduler.stop()
        await self._sources.close()


# ============================================================
# FACTORY
# ============================================================

def create_risk_guard(
    session_factory: async_sessionmaker,
    redis_client: Redis,
    config: Optional[RiskGuardConfig] = None,
    sources: Optional[SnapshotSourceFactory] = None,
    alerting: Optional[AlertingService] = None,
    clock: Optional[ClockProtocol] = None,
) -> RiskGuardService:
    """
    Wire the risk guard.

    Args:
        session_factory: Async SQLAlchemy session factory
        redis_client: Shared redis client (lock and balance cache)
        config: Configuration (defaults if None)
        sources: Snapshot source factory (Dhan if None; needs encryption_key)
        alerting: Alerting service (built from config if None)
        clock: Clock (system clock if None)

    Raises:
        MissingConfigError: Dhan sources without an encryption key
    """
    config = config or get_default_config()
    clock = clock or SystemClock()

    cache = BalanceCache(redis_client, config.cache, clock=clock)
    lock = KillLock(redis_client, ttl_seconds=config.kill_switch.lock_ttl_seconds)

    if sources is None:
        if not config.encryption_key:
            raise MissingConfigError("ENCRYPTION_KEY")
        sources = DhanSourceFactory(
            config=config.broker,
            encryption_key=config.encryption_key,
            balance_cache=cache,
        )
    if alerting is None:
        alerting = AlertingService.from_config(config.alerting)

    accounts = AccountDirectory(session_factory)
    states = DailyRiskStateRepository(session_factory)
    ledger = KillEventLedger(session_factory)

    executor = KillSwitchExecutor(
        lock=lock,
        accounts=accounts,
        sources=sources,
        states=states,
        ledger=ledger,
        config=config.kill_switch,
        alerting=alerting,
        clock=clock,
    )
    scheduler = MonitoringScheduler(
        accounts=accounts,
        sources=sources,
        states=states,
        executor=executor,
        config=config.timing,
        cooldown=WarningCooldown(config.timing.auth_warning_cooldown_seconds, clock=clock),
        alerting=alerting,
        clock=clock,
    )

    return RiskGuardService(
        accounts=accounts,
        sources=sources,
        states=states,
        ledger=ledger,
        executor=executor,
        scheduler=scheduler,
        clock=clock,
    )


__all__ = [
    "RiskGuardService",
    "create_risk_guard",
]
