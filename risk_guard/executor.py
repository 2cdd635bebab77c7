"""
Risk Guard - Kill Switch Executor.

============================================================
PURPOSE
============================================================
Flatten an account's day-tradeable positions, disable further
trading at the broker, and record the outcome.

SEQUENCE (under the per-account kill lock):
1. Acquire lock, or fail fast with KillSwitchInProgressError
   With skip_if_killed, re-read today's daily risk state and stop
   with KillSwitchAlreadyExecutedError if it is already killed
2. Fetch open positions
3. Submit one opposing MARKET order per closeable position,
   sequentially, pausing between orders
4. Wait for closures to settle
5. Activate the broker kill flag
6. Re-fetch positions and starting balance, recompute figures
7. Mark today's daily risk state killed with final figures
8. Append a kill event
9. Release the lock, always

Broker failures in 2-6 propagate. Nothing is retried here; the
next monitoring cycle is the retry.

A persistence failure in 7-8 happens after trading is already
disabled. It is raised as KillEventPersistenceError, logged at
CRITICAL and alerted.

============================================================
"""

import asyncio
import logging
from typing import Optional

from core.clock import ClockProtocol, SystemClock
from core.exceptions import (
    AccountNotFoundError,
    DatabaseError,
    KillEventPersistenceError,
    KillSwitchAlreadyExecutedError,
)

from .adapters.base import ClosePositionOrder, SnapshotSourceFactory
from .alerting import AlertingService
from .config import KillSwitchConfig
from .evaluator import closeable_positions, evaluate
from .lock import KillLock
from .repository import AccountDirectory, DailyRiskStateRepository, KillEventLedger
from .types import KillSwitchResult


logger = logging.getLogger(__name__)


class KillSwitchExecutor:
    """
    Executes the kill switch for one account at a time.

    Usage:
        executor = KillSwitchExecutor(lock, accounts, sources, states, ledger)
        result = await executor.execute(account_id)
    """

    def __init__(
        self,
        lock: KillLock,
        accounts: AccountDirectory,
        sources: SnapshotSourceFactory,
        states: DailyRiskStateRepository,
        ledger: KillEventLedger,
        config: Optional[KillSwitchConfig] = None,
        alerting: Optional[AlertingService] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._lock = lock
        self._accounts = accounts
        self._sources = sources
        self._states = states
        self._ledger = ledger
        self._config = config or KillSwitchConfig()
        self._alerting = alerting
        self._clock = clock or SystemClock()

    async def execute(self, account_id: str, skip_if_killed: bool = False) -> KillSwitchResult:
        """
        Run the kill switch for an account.

        Args:
            account_id: Account to kill
            skip_if_killed: Refuse if today's state is already killed.
                The monitor sets this; manual triggers do not.

        Raises:
            KillSwitchInProgressError: Another execution holds the lock
            KillSwitchAlreadyExecutedError: skip_if_killed and already killed
            AccountNotFoundError: Account missing
            AccountNotConfiguredError: No usable credential
            BrokerError: Remote failure before figures were final
            KillEventPersistenceError: Trading disabled, not recorded
        """
        async with self._lock.hold(account_id, self._config.lock_ttl_seconds):
            if skip_if_killed:
                state = await self._states.get(account_id, self._clock.trading_date())
                if state is not None and state.kill_status:
                    raise KillSwitchAlreadyExecutedError(account_id)
            logger.warning(f"Kill switch started: account={account_id}")
            result = await self._execute_locked(account_id)

        logger.warning(
            f"Kill switch completed: account={account_id} "
            f"orders={result.orders_submitted} mtm={result.final_snapshot.mtm:.2f} "
            f"loss_percent={result.final_snapshot.loss_percent:.2f} "
            f"duration={result.duration_seconds:.2f}s"
        )

        if self._alerting is not None:
            await self._alerting.alert_kill_executed(result)

        return result

    async def _execute_locked(self, account_id: str) -> KillSwitchResult:
        started_at = self._clock.now()

        account = await self._accounts.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)

        source = self._sources.create(account)

        # Flatten
        positions = await source.get_positions()
        orders = [
            ClosePositionOrder.flatten(p, source.broker_client_id)
            for p in closeable_positions(positions)
        ]
        for order in orders:
            await source.close_position(order)
            await asyncio.sleep(self._config.order_pacing_seconds)

        await asyncio.sleep(self._config.settle_delay_seconds)

        # Disable trading
        await source.activate_kill_switch()

        # Final figures
        final_positions, starting_balance = await asyncio.gather(
            source.get_positions(),
            source.get_starting_balance(),
        )
        snapshot = evaluate(final_positions, starting_balance, account.risk_threshold)

        # Record
        try:
            await self._states.mark_killed(account_id, self._clock.trading_date(), snapshot)
            event = await self._ledger.append(
                account_id,
                trigger_mtm=snapshot.mtm,
                trigger_loss_percent=snapshot.loss_percent,
                execution_time=self._clock.now(),
            )
        except DatabaseError as e:
            logger.critical(
                f"KILL SWITCH EXECUTED BUT NOT RECORDED: account={account_id} "
                f"mtm={snapshot.mtm:.2f} loss_percent={snapshot.loss_percent:.2f} error={e}"
            )
            if self._alerting is not None:
                await self._alerting.alert_kill_not_recorded(
                    account_id, snapshot.mtm, snapshot.loss_percent, str(e),
                )
            raise KillEventPersistenceError(
                account_id,
                trigger_mtm=snapshot.mtm,
                trigger_loss_percent=snapshot.loss_percent,
                cause=e,
            ) from e

        return KillSwitchResult(
            account_id=account_id,
            orders_submitted=len(orders),
            final_snapshot=snapshot,
            kill_event=event,
            started_at=started_at,
            completed_at=self._clock.now(),
        )


__all__ = ["KillSwitchExecutor"]
