"""
Broker Adapter - Mock Snapshot Source.

============================================================
PURPOSE
============================================================
In-memory snapshot source for testing the monitor and the
kill switch executor.

FEATURES:
- Configurable positions and starting balance
- Per-operation error injection
- Optional latency simulation
- Full call tracking (orders, kill activations, fetches)
- Closing orders flatten the matching position

============================================================
"""

import asyncio
import logging
from dataclasses import replace
from typing import Dict, List, Optional

from core.exceptions import AccountNotConfiguredError

from ..cache import BalanceCache
from ..types import Account, Position
from .base import AccountSnapshotSource, ClosePositionOrder, SnapshotSourceFactory


logger = logging.getLogger(__name__)


class MockSnapshotSource(AccountSnapshotSource):
    """
    Mock implementation of AccountSnapshotSource.

    Errors are injected by operation name: "get_positions",
    "fetch_starting_balance", "close_position",
    "activate_kill_switch".
    """

    def __init__(
        self,
        broker_client_id: str = "MOCK-CLIENT",
        positions: Optional[List[Position]] = None,
        starting_balance: float = 0.0,
        balance_cache: Optional[BalanceCache] = None,
        latency_seconds: float = 0.0,
        flatten_on_close: bool = True,
    ):
        super().__init__(broker_client_id, balance_cache)
        self.positions: List[Position] = list(positions or [])
        self.starting_balance = starting_balance
        self.latency_seconds = latency_seconds
        self.flatten_on_close = flatten_on_close

        self.errors: Dict[str, Exception] = {}
        self.submitted_orders: List[ClosePositionOrder] = []
        self.kill_switch_activations = 0
        self.position_fetches = 0
        self.balance_fetches = 0

    def set_error(self, operation: str, error: Optional[Exception]) -> None:
        """Inject (or clear with None) an error for an operation."""
        if error is None:
            self.errors.pop(operation, None)
        else:
            self.errors[operation] = error

    @property
    def kill_switch_active(self) -> bool:
        return self.kill_switch_activations > 0

    async def _simulate(self, operation: str) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        error = self.errors.get(operation)
        if error is not None:
            raise error

    async def get_positions(self) -> List[Position]:
        await self._simulate("get_positions")
        self.position_fetches += 1
        return [replace(p) for p in self.positions]

    async def fetch_starting_balance(self) -> float:
        await self._simulate("fetch_starting_balance")
        self.balance_fetches += 1
        return self.starting_balance

    async def close_position(self, order: ClosePositionOrder) -> None:
        await self._simulate("close_position")
        self.submitted_orders.append(order)

        if not self.flatten_on_close:
            return
        for position in self.positions:
            if position.security_id == order.security_id and position.net_qty != 0:
                position.net_qty = 0
                position.realized_profit += position.unrealized_profit
                position.unrealized_profit = 0.0
                break

    async def activate_kill_switch(self) -> None:
        await self._simulate("activate_kill_switch")
        self.kill_switch_activations += 1
        logger.info(f"[MOCK] Kill switch activated for {self.broker_client_id}")


class MockSourceFactory(SnapshotSourceFactory):
    """
    Hands out pre-registered mock sources by account id.

    Accounts without a registered source are treated as not
    configured.
    """

    def __init__(self, sources: Optional[Dict[str, MockSnapshotSource]] = None):
        self.sources: Dict[str, MockSnapshotSource] = dict(sources or {})
        self.created: List[str] = []

    def register(self, account_id: str, source: MockSnapshotSource) -> MockSnapshotSource:
        self.sources[account_id] = source
        return source

    def create(self, account: Account) -> MockSnapshotSource:
        if not account.has_credential:
            raise AccountNotConfiguredError(account.account_id)
        source = self.sources.get(account.account_id)
        if source is None:
            raise AccountNotConfiguredError(account.account_id, "no mock source registered")
        self.created.append(account.account_id)
        return source


__all__ = [
    "MockSnapshotSource",
    "MockSourceFactory",
]
