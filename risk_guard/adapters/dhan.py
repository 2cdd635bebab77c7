"""
Broker Adapter - Dhan.

============================================================
PURPOSE
============================================================
Account snapshot source backed by the Dhan REST API (v2).

ENDPOINTS:
- GET  /positions                               open positions
- GET  /fundlimit                               balances (sodLimit)
- POST /orders                                  closing orders
- POST /killswitch?killSwitchStatus=ACTIVATE    hard trading disable

Requests authenticate with the decrypted "access-token" header.
One aiohttp session is shared by every source the factory hands
out.

============================================================
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from core.exceptions import AccountNotConfiguredError, MissingConfigError

from ..cache import BalanceCache
from ..config import BrokerConfig
from ..credentials import CredentialDecryptionError, decrypt_credential
from ..types import Account, Position
from .base import AccountSnapshotSource, ClosePositionOrder, SnapshotSourceFactory
from .errors import create_network_error, create_timeout_error, map_dhan_error


logger = logging.getLogger(__name__)


# ============================================================
# RESPONSE PARSING
# ============================================================

@dataclass
class FundLimit:
    """Subset of the /fundlimit response."""

    sod_limit: float = 0.0
    """Start-of-day limit, used as starting balance."""

    available_balance: float = 0.0

    utilized_amount: float = 0.0

    withdrawable_balance: float = 0.0


def _float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def parse_position(data: Dict[str, Any]) -> Position:
    """Convert one /positions entry."""
    strike = data.get("drvStrikePrice")
    return Position(
        instrument=data.get("tradingSymbol") or "",
        security_id=str(data.get("securityId") or ""),
        exchange_segment=data.get("exchangeSegment") or "",
        product_type=data.get("productType") or "",
        net_qty=int(_float(data.get("netQty"))),
        cost_price=_float(data.get("costPrice")),
        unrealized_profit=_float(data.get("unrealizedProfit")),
        realized_profit=_float(data.get("realizedProfit")),
        broker_client_id=data.get("dhanClientId"),
        drv_expiry_date=data.get("drvExpiryDate"),
        drv_option_type=data.get("drvOptionType"),
        drv_strike_price=_float(strike) if strike is not None else None,
    )


def parse_fund_limit(data: Dict[str, Any]) -> FundLimit:
    """Convert the /fundlimit response. The API spells it 'availabelBalance'."""
    return FundLimit(
        sod_limit=_float(data.get("sodLimit")),
        available_balance=_float(data.get("availabelBalance")),
        utilized_amount=_float(data.get("utilizedAmount")),
        withdrawable_balance=_float(data.get("withdrawableBalance")),
    )


def order_payload(order: ClosePositionOrder) -> Dict[str, Any]:
    """Serialize a closing order to the /orders body."""
    payload: Dict[str, Any] = {
        "dhanClientId": order.broker_client_id,
        "transactionType": order.transaction_type.value,
        "exchangeSegment": order.exchange_segment,
        "productType": order.product_type,
        "orderType": order.order_type,
        "validity": order.validity,
        "tradingSymbol": order.trading_symbol,
        "securityId": order.security_id,
        "quantity": order.quantity,
    }
    if order.drv_expiry_date:
        payload["drvExpiryDate"] = order.drv_expiry_date
    if order.drv_option_type:
        payload["drvOptionType"] = order.drv_option_type
        payload["drvStrikePrice"] = order.drv_strike_price or 0
    return payload


# ============================================================
# DHAN SNAPSHOT SOURCE
# ============================================================

class DhanSnapshotSource(AccountSnapshotSource):
    """
    Dhan REST implementation of AccountSnapshotSource.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        access_token: str,
        broker_client_id: str,
        config: Optional[BrokerConfig] = None,
        balance_cache: Optional[BalanceCache] = None,
    ):
        super().__init__(broker_client_id, balance_cache)
        self._session = session
        self._access_token = access_token
        self._config = config or BrokerConfig()

    # --------------------------------------------------------
    # ACCOUNT OPERATIONS
    # --------------------------------------------------------

    async def get_positions(self) -> List[Position]:
        data = await self._request("GET", "/positions")
        if not isinstance(data, list):
            return []
        return [parse_position(item) for item in data if isinstance(item, dict)]

    async def get_fund_limit(self) -> FundLimit:
        data = await self._request("GET", "/fundlimit")
        return parse_fund_limit(data if isinstance(data, dict) else {})

    async def fetch_starting_balance(self) -> float:
        fund_limit = await self.get_fund_limit()
        return fund_limit.sod_limit

    # --------------------------------------------------------
    # KILL OPERATIONS
    # --------------------------------------------------------

    async def close_position(self, order: ClosePositionOrder) -> None:
        await self._request("POST", "/orders", payload=order_payload(order))
        logger.info(
            f"Closing order submitted: client={order.broker_client_id} "
            f"symbol={order.trading_symbol} side={order.transaction_type.value} "
            f"qty={order.quantity}"
        )

    async def activate_kill_switch(self) -> None:
        await self._request(
            "POST",
            "/killswitch",
            params={"killSwitchStatus": "ACTIVATE"},
        )
        logger.warning(f"Kill switch activated at broker for client={self.broker_client_id}")

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make API request."""
        url = f"{self._config.base_url}{self._config.api_version}{path}"
        headers = {
            "access-token": self._access_token,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

        try:
            async with self._session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=headers,
            ) as response:
                text = await response.text()
                data = _decode(text)

                if response.status >= 400:
                    body = data if isinstance(data, dict) else {}
                    error = map_dhan_error(
                        response.status,
                        code=body.get("errorCode"),
                        message=body.get("errorMessage") or body.get("message"),
                        endpoint=path,
                    )
                    logger.debug(f"Broker request failed: {error}")
                    raise error.to_exception()

                return data

        except aiohttp.ClientError as e:
            raise create_network_error(e, path).to_exception() from e
        except asyncio.TimeoutError as e:
            raise create_timeout_error(path).to_exception() from e


def _decode(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


# ============================================================
# FACTORY
# ============================================================

class DhanSourceFactory(SnapshotSourceFactory):
    """
    Creates Dhan sources from stored account credentials.

    Usage:
        factory = DhanSourceFactory(config.broker, config.encryption_key, cache)
        source = factory.create(account)
        positions = await source.get_positions()
        await factory.close()
    """

    def __init__(
        self,
        config: Optional[BrokerConfig] = None,
        encryption_key: Optional[str] = None,
        balance_cache: Optional[BalanceCache] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._config = config or BrokerConfig()
        self._encryption_key = encryption_key
        self._balance_cache = balance_cache
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                connect=self._config.connect_timeout_seconds,
                total=self._config.read_timeout_seconds,
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    def create(self, account: Account) -> DhanSnapshotSource:
        if not account.access_token_encrypted or not account.broker_client_id:
            raise AccountNotConfiguredError(
                account.account_id,
                "Dhan token not configured. Please add your Dhan token in settings.",
            )

        if not self._encryption_key:
            raise MissingConfigError("ENCRYPTION_KEY")

        try:
            access_token = decrypt_credential(account.access_token_encrypted, self._encryption_key)
        except CredentialDecryptionError as e:
            raise AccountNotConfiguredError(account.account_id, e.message) from e

        return DhanSnapshotSource(
            session=self._get_session(),
            access_token=access_token,
            broker_client_id=account.broker_client_id,
            config=self._config,
            balance_cache=self._balance_cache,
        )

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None


__all__ = [
    "FundLimit",
    "parse_position",
    "parse_fund_limit",
    "order_payload",
    "DhanSnapshotSource",
    "DhanSourceFactory",
]
