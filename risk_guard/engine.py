"""
Risk Guard - Monitoring Scheduler.

============================================================
PURPOSE
============================================================
Top-level monitoring loop.

Each cycle:
1. List accounts with monitoring enabled and a stored credential
2. Evaluate every account concurrently (bounded fan-out)
3. Record the latest sample in today's daily risk state
4. Fire the kill switch on TRIGGER unless already killed today

PACING:
- Target interval is measured start to start
- Next delay = max(target - elapsed, floor)
- Cycles never overlap

ISOLATION:
One account's failure never affects its siblings or the loop.

LIFECYCLE:
IDLE → RUNNING → STOPPED → RUNNING (restart)
stop() lets the in-flight cycle finish and schedules no successor.

============================================================
"""

import asyncio
import logging
from typing import Optional

from core.clock import ClockProtocol, SystemClock
from core.exceptions import (
    AccountNotFoundError,
    AuthenticationError,
    BrokerNotFoundError,
    ConfigurationError,
    KillEventPersistenceError,
    KillSwitchAlreadyExecutedError,
    KillSwitchInProgressError,
    MissingConfigError,
)

from .adapters.base import SnapshotSourceFactory
from .alerting import AlertingService
from .config import MonitorTimingConfig
from .cooldown import WarningCooldown
from .evaluator import evaluate
from .executor import KillSwitchExecutor
from .repository import AccountDirectory, DailyRiskStateRepository
from .state_machine import MonitorStateMachine
from .types import CycleStats, MonitorOutcome, MonitorState


logger = logging.getLogger(__name__)


def compute_next_delay(elapsed: float, target: float, floor: float) -> float:
    """Delay before the next cycle start."""
    return max(target - elapsed, floor)


class MonitoringScheduler:
    """
    Self-pacing per-account risk monitor.

    Usage:
        scheduler = MonitoringScheduler(accounts, sources, states, executor)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        accounts: AccountDirectory,
        sources: SnapshotSourceFactory,
        states: DailyRiskStateRepository,
        executor: KillSwitchExecutor,
        config: Optional[MonitorTimingConfig] = None,
        cooldown: Optional[WarningCooldown] = None,
        alerting: Optional[AlertingService] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._accounts = accounts
        self._sources = sources
        self._states = states
        self._executor = executor
        self._config = config or MonitorTimingConfig()
        self._clock = clock or SystemClock()
        self._cooldown = cooldown or WarningCooldown(
            self._config.auth_warning_cooldown_seconds,
            clock=self._clock,
        )
        self._alerting = alerting

        self._machine = MonitorStateMachine()
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._last_cycle: Optional[CycleStats] = None
        self._cycles_completed = 0

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def state(self) -> MonitorState:
        return self._machine.current_state

    @property
    def is_running(self) -> bool:
        return self._machine.is_running

    @property
    def last_cycle(self) -> Optional[CycleStats]:
        """Stats of the most recently completed cycle."""
        return self._last_cycle

    @property
    def cycles_completed(self) -> int:
        return self._cycles_completed

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """
        Start cycling. The first cycle begins immediately.

        No-op if already running. After stop(), waits for the
        previous loop to finish its cycle before restarting.
        """
        if self._machine.is_running:
            return

        if self._task is not None and not self._task.done():
            await self._task

        if self._machine.start() is None:
            return

        self._wake.clear()
        self._task = asyncio.create_task(self._run_loop(self._machine.generation))
        logger.info(
            f"Monitoring scheduler STARTED "
            f"(interval={self._config.interval_seconds}s, "
            f"max_concurrent={self._config.max_concurrent_accounts})"
        )

    async def stop(self, wait: bool = True) -> None:
        """
        Stop cycling.

        Args:
            wait: Block until the in-flight cycle (if any) completes
        """
        if self._machine.stop() is None:
            return

        self._wake.set()
        if wait and self._task is not None:
            await self._task
        logger.info("Monitoring scheduler STOPPED")

    def _is_current(self, generation: int) -> bool:
        return self._machine.is_running and self._machine.generation == generation

    async def _run_loop(self, generation: int) -> None:
        """Background monitoring loop."""
        while self._is_current(generation):
            started = self._clock.monotonic()

            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(f"Monitor loop error: {e}", exc_info=True)

            if not self._is_current(generation):
                break

            delay = compute_next_delay(
                self._clock.monotonic() - started,
                self._config.interval_seconds,
                self._config.min_interval_seconds,
            )
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    # --------------------------------------------------------
    # CYCLE
    # --------------------------------------------------------

    async def run_cycle(self) -> CycleStats:
        """
        Evaluate every monitorable account once.

        Returns:
            Stats for the cycle
        """
        stats = CycleStats(started_at=self._clock.now())
        started = self._clock.monotonic()

        try:
            account_ids = await self._accounts.list_monitorable_accounts()
        except Exception as e:
            logger.error(f"Failed to list monitorable accounts: {e}")
            stats.listing_failed = True
            account_ids = []

        stats.accounts = len(account_ids)
        semaphore = asyncio.Semaphore(self._config.max_concurrent_accounts)

        async def monitor_bounded(account_id: str) -> MonitorOutcome:
            async with semaphore:
                return await self.monitor_account(account_id)

        results = await asyncio.gather(
            *(monitor_bounded(a) for a in account_ids),
            return_exceptions=True,
        )

        for account_id, result in zip(account_ids, results):
            if isinstance(result, MonitorOutcome):
                stats.record(result)
            else:
                logger.error(f"Unhandled monitor error for account {account_id}: {result}")
                stats.record(MonitorOutcome.FAILED)

        stats.duration_seconds = self._clock.monotonic() - started
        self._last_cycle = stats
        self._cycles_completed += 1

        logger.debug(f"Monitor cycle complete: {stats.to_dict()}")
        return stats

    async def monitor_account(self, account_id: str) -> MonitorOutcome:
        """
        Evaluate one account and act on the verdict.

        Never raises; every failure is classified and logged.
        """
        try:
            return await self._monitor_account(account_id)

        except AccountNotFoundError:
            logger.debug(f"Account {account_id} vanished mid-cycle, skipping")
            return MonitorOutcome.SKIPPED

        except MissingConfigError as e:
            logger.error(f"Cannot monitor account {account_id}: {e.message}")
            return MonitorOutcome.FAILED

        except ConfigurationError as e:
            logger.debug(f"Account {account_id} not configured, skipping: {e.message}")
            return MonitorOutcome.NOT_CONFIGURED

        except AuthenticationError as e:
            if self._cooldown.should_fire(account_id):
                logger.warning(
                    f"Broker credential invalid for account {account_id}: {e.message}"
                )
                if self._alerting is not None:
                    await self._alerting.alert_credential_invalid(account_id, e.message)
            return MonitorOutcome.AUTH_FAILED

        except KillSwitchInProgressError:
            logger.info(f"Kill switch already in progress for account {account_id}")
            return MonitorOutcome.KILL_IN_PROGRESS

        except KillSwitchAlreadyExecutedError:
            logger.info(f"Account {account_id} killed by another execution, not re-triggering")
            return MonitorOutcome.ALREADY_KILLED

        except KillEventPersistenceError as e:
            logger.error(f"Account {account_id} killed without ledger entry: {e.to_log_format()}")
            return MonitorOutcome.FAILED

        except Exception as e:
            logger.error(f"Monitor failed for account {account_id}: {type(e).__name__}: {e}")
            return MonitorOutcome.FAILED

    async def _monitor_account(self, account_id: str) -> MonitorOutcome:
        account = await self._accounts.get_account(account_id)
        if account is None or not account.is_monitorable:
            return MonitorOutcome.SKIPPED

        source = self._sources.create(account)

        try:
            positions, starting_balance = await asyncio.gather(
                source.get_positions(),
                source.get_starting_balance(),
            )
        except BrokerNotFoundError as e:
            logger.debug(f"Broker has no record for account {account_id}, skipping: {e.message}")
            return MonitorOutcome.SKIPPED
        snapshot = evaluate(positions, starting_balance, account.risk_threshold)

        state = await self._states.upsert_sample(
            account_id,
            self._clock.trading_date(),
            snapshot,
        )

        if not snapshot.is_trigger:
            return MonitorOutcome.SAFE

        if state.kill_status:
            logger.debug(f"Account {account_id} already killed today, not re-triggering")
            return MonitorOutcome.ALREADY_KILLED

        logger.warning(
            f"Risk threshold breached: account={account_id} mtm={snapshot.mtm:.2f} "
            f"loss_percent={snapshot.loss_percent:.2f} threshold={snapshot.threshold:.2f}"
        )
        await self._executor.execute(account_id, skip_if_killed=True)
        return MonitorOutcome.KILLED


__all__ = [
    "compute_next_delay",
    "MonitoringScheduler",
]
