"""
Broker Adapter - Account Snapshot Source Base.

============================================================
PURPOSE
============================================================
Abstract interface for the remote venue an account trades on.

A source is bound to one account: it supplies the account's
open positions and start-of-day balance, submits the orders
that flatten positions, and raises the venue's kill flag.

DESIGN PRINCIPLES:
- Broker-agnostic interface
- Clean separation from risk evaluation and kill logic
- Fully testable with the mock source

ERRORS (core.exceptions):
- AuthenticationError      credential invalid or expired
- AccountNotFoundError     account unknown
- RateLimitError           throttled
- BrokerUnavailableError   network, timeout, 5xx
- BrokerError              anything else

============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from core.constants import EMPTY_EXPIRY_DATE, EMPTY_OPTION_TYPE

from ..cache import BalanceCache
from ..types import Account, Position


logger = logging.getLogger(__name__)


# ============================================================
# ORDER TYPES
# ============================================================

class OrderSide(str, Enum):
    """Transaction side."""

    BUY = "BUY"
    SELL = "SELL"


@dataclass
class ClosePositionOrder:
    """
    Market order that flattens one position.

    Derivative fields are only set when the broker reported a real
    value for them.
    """

    broker_client_id: str
    transaction_type: OrderSide
    exchange_segment: str
    product_type: str
    trading_symbol: str
    security_id: str
    quantity: int

    order_type: str = "MARKET"
    validity: str = "DAY"

    drv_expiry_date: Optional[str] = None
    drv_option_type: Optional[str] = None
    drv_strike_price: Optional[float] = None

    @classmethod
    def flatten(cls, position: Position, default_client_id: str) -> "ClosePositionOrder":
        """
        Build the opposing order for a position.

        Args:
            position: Open position with non-zero net quantity
            default_client_id: Used when the position carries none

        Returns:
            ClosePositionOrder sized to |net_qty|
        """
        net_qty = int(position.net_qty or 0)
        side = OrderSide.SELL if net_qty > 0 else OrderSide.BUY

        order = cls(
            broker_client_id=position.broker_client_id or default_client_id,
            transaction_type=side,
            exchange_segment=position.exchange_segment,
            product_type=position.product_type,
            trading_symbol=position.instrument,
            security_id=position.security_id,
            quantity=abs(net_qty),
        )

        if position.drv_expiry_date and position.drv_expiry_date != EMPTY_EXPIRY_DATE:
            order.drv_expiry_date = position.drv_expiry_date

        if position.drv_option_type and position.drv_option_type != EMPTY_OPTION_TYPE:
            order.drv_option_type = position.drv_option_type
            order.drv_strike_price = position.drv_strike_price or 0.0

        return order


# ============================================================
# ABSTRACT SNAPSHOT SOURCE
# ============================================================

class AccountSnapshotSource(ABC):
    """
    Abstract interface to one account at its broker.

    Implementations:
    - DhanSnapshotSource: Dhan REST API
    - MockSnapshotSource: For testing
    """

    def __init__(
        self,
        broker_client_id: str,
        balance_cache: Optional[BalanceCache] = None,
    ):
        self._broker_client_id = broker_client_id
        self._balance_cache = balance_cache

    @property
    def broker_client_id(self) -> str:
        """Account id at the broker."""
        return self._broker_client_id

    # --------------------------------------------------------
    # ACCOUNT OPERATIONS
    # --------------------------------------------------------

    @abstractmethod
    async def get_positions(self) -> List[Position]:
        """
        Get all positions currently reported by the broker.

        Raises:
            BrokerError: If query fails
        """
        pass

    @abstractmethod
    async def fetch_starting_balance(self) -> float:
        """
        Get start-of-day balance from the broker, bypassing the cache.

        Raises:
            BrokerError: If query fails
        """
        pass

    async def get_starting_balance(self) -> float:
        """
        Start-of-day balance, read through the balance cache.

        A cached value is trusted only when positive. A fresh value
        is cached only when positive.
        """
        if self._balance_cache is not None:
            cached = await self._balance_cache.get(self._broker_client_id)
            if cached is not None and cached > 0:
                return cached

        balance = await self.fetch_starting_balance()

        if self._balance_cache is not None and balance > 0:
            await self._balance_cache.set(self._broker_client_id, balance)

        return balance

    # --------------------------------------------------------
    # KILL OPERATIONS
    # --------------------------------------------------------

    @abstractmethod
    async def close_position(self, order: ClosePositionOrder) -> None:
        """
        Submit one position-closing order.

        Raises:
            BrokerError: If submission fails
        """
        pass

    @abstractmethod
    async def activate_kill_switch(self) -> None:
        """
        Disable further trading on the account at the broker.

        Raises:
            BrokerError: If activation fails
        """
        pass


# ============================================================
# SOURCE FACTORY
# ============================================================

class SnapshotSourceFactory(ABC):
    """Maps an account to a snapshot source bound to it."""

    @abstractmethod
    def create(self, account: Account) -> AccountSnapshotSource:
        """
        Build a source for the account.

        Raises:
            AccountNotConfiguredError: No usable credential
            MissingConfigError: Process lacks the decryption key
        """
        pass

    async def close(self) -> None:
        """Release shared resources."""
        return None


__all__ = [
    "OrderSide",
    "ClosePositionOrder",
    "AccountSnapshotSource",
    "SnapshotSourceFactory",
]
