"""
Risk Guard - Balance Cache.

============================================================
PURPOSE
============================================================
Short-lived store of each account's start-of-day balance so
the monitor does not hit the broker's fund-limit endpoint on
every cycle.

- Keyed by the broker account id
- Entries expire at the next 09:15 market open (floor 1 hour)
- Connectivity failures degrade to "absent" / no-op

The cache is a latency optimization. Correctness never depends
on it: a miss forces a fresh remote fetch.

============================================================
"""

import logging
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from core.clock import ClockProtocol, SystemClock, seconds_until_next_market_open

from .config import BalanceCacheConfig


logger = logging.getLogger(__name__)


class BalanceCache:
    """
    Redis-backed start-of-day balance cache.

    Usage:
        cache = BalanceCache(redis_client)
        balance = await cache.get("1100012345")
        if balance is None:
            balance = await fetch_remote()
            await cache.set("1100012345", balance)
    """

    def __init__(
        self,
        client: Redis,
        config: Optional[BalanceCacheConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._client = client
        self._config = config or BalanceCacheConfig()
        self._clock = clock or SystemClock()

    def _key(self, broker_client_id: str) -> str:
        return f"{self._config.key_prefix}{broker_client_id}"

    def ttl_seconds(self) -> int:
        """Seconds until the next market open, floored."""
        return seconds_until_next_market_open(
            self._clock.now(),
            minimum_seconds=self._config.min_ttl_seconds,
        )

    async def get(self, broker_client_id: str) -> Optional[float]:
        """
        Cached balance, or None on miss, disabled cache or backend error.
        """
        if not self._config.enabled:
            return None
        try:
            cached = await self._client.get(self._key(broker_client_id))
        except RedisError as e:
            logger.debug(f"Balance cache read failed for {broker_client_id}: {e}")
            return None

        if cached is None:
            return None

        if isinstance(cached, bytes):
            cached = cached.decode()
        try:
            return float(cached)
        except ValueError:
            logger.debug(f"Discarding malformed cached balance for {broker_client_id}: {cached!r}")
            return None

    async def set(self, broker_client_id: str, balance: float) -> None:
        """Store a balance until the next market open. Best effort."""
        if not self._config.enabled:
            return
        try:
            await self._client.set(
                self._key(broker_client_id),
                str(balance),
                ex=self.ttl_seconds(),
            )
        except RedisError as e:
            logger.debug(f"Balance cache write failed for {broker_client_id}: {e}")

    async def invalidate(self, broker_client_id: str) -> None:
        """Drop a cached balance. Best effort."""
        try:
            await self._client.delete(self._key(broker_client_id))
        except RedisError as e:
            logger.debug(f"Balance cache invalidate failed for {broker_client_id}: {e}")


__all__ = ["BalanceCache"]
