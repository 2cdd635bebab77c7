"""
Test doubles shared by the risk guard tests.

- FakeRedis: in-memory stand-in for redis.asyncio.Redis
  (GET / SET NX EX / DELETE / lock release EVAL, expiry on a mock clock)
- File-backed SQLite database helpers
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from core.clock import MockClock
from database.engine import create_all_tables, create_session_factory
from database.models import AccountModel
from risk_guard.types import Position


# Tuesday 2024-01-16 10:30 IST
MARKET_HOURS = datetime(2024, 1, 16, 5, 0, tzinfo=timezone.utc)


class FakeRedis:
    """Subset of redis.asyncio.Redis used by the cache and the lock."""

    def __init__(self, clock: Optional[MockClock] = None):
        self._clock = clock or MockClock(MARKET_HOURS)
        self._data: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self.fail_with: Optional[Exception] = None
        self.set_calls = []

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _live(self, key: str) -> Optional[Tuple[bytes, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock.monotonic() >= expires_at:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[bytes]:
        self._check()
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value, ex: Optional[int] = None, nx: bool = False):
        self._check()
        self.set_calls.append({"key": key, "value": value, "ex": ex, "nx": nx})
        if nx and self._live(key) is not None:
            return None
        expires_at = self._clock.monotonic() + ex if ex else None
        self._data[key] = (str(value).encode(), expires_at)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def eval(self, script: str, numkeys: int, *args):
        """Runs the kill lock's compare-and-delete release script only."""
        self._check()
        key, token = args[0], args[numkeys]
        entry = self._live(key)
        if entry is None or entry[0] != str(token).encode():
            return 0
        del self._data[key]
        return 1

    def ttl(self, key: str) -> Optional[float]:
        entry = self._live(key)
        if entry is None or entry[1] is None:
            return None
        return entry[1] - self._clock.monotonic()

    def raw_set(self, key: str, value: bytes) -> None:
        self._data[key] = (value, None)


async def create_test_database(directory: Path) -> Tuple[AsyncEngine, async_sessionmaker]:
    """
    Fresh SQLite schema in a file under directory.

    Every session gets its own connection, so concurrent sessions commit
    and roll back independently as they do against PostgreSQL.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{directory / 'risk_guard.db'}",
        poolclass=NullPool,
    )
    await create_all_tables(engine)
    return engine, create_session_factory(engine)


async def add_account(
    session_factory: async_sessionmaker,
    account_id: str = "acct-1",
    broker_client_id: Optional[str] = "1100000001",
    access_token_encrypted: Optional[str] = "encrypted-token",
    risk_threshold: float = 2.0,
    kill_switch_enabled: bool = True,
) -> str:
    async with session_factory() as session:
        session.add(AccountModel(
            account_id=account_id,
            email=f"{account_id}@example.com",
            broker_client_id=broker_client_id,
            access_token_encrypted=access_token_encrypted,
            risk_threshold=risk_threshold,
            kill_switch_enabled=kill_switch_enabled,
        ))
        await session.commit()
    return account_id


def intraday(
    security_id: str = "1333",
    net_qty: int = 10,
    unrealized_profit: float = 0.0,
    product_type: str = "INTRADAY",
    **kwargs,
) -> Position:
    return Position(
        instrument=kwargs.pop("instrument", f"SYM{security_id}"),
        security_id=security_id,
        exchange_segment=kwargs.pop("exchange_segment", "NSE_EQ"),
        product_type=product_type,
        net_qty=net_qty,
        unrealized_profit=unrealized_profit,
        **kwargs,
    )
