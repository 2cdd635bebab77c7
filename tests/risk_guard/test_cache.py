"""
Balance Cache Tests.

============================================================
PURPOSE
============================================================
Tests for the start-of-day balance cache and the read-through
used by snapshot sources.

TEST CATEGORIES:
- Keying and TTL
- Expiry at market open
- Degradation on backend failure
- Read-through population rules

============================================================
"""

from datetime import datetime, timedelta, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from core.clock import MockClock
from risk_guard.adapters.mock import MockSnapshotSource
from risk_guard.cache import BalanceCache
from risk_guard.config import BalanceCacheConfig

from tests.risk_guard.fakes import FakeRedis, MARKET_HOURS


@pytest.fixture
def clock():
    return MockClock(MARKET_HOURS)


@pytest.fixture
def redis_client(clock):
    return FakeRedis(clock)


@pytest.fixture
def cache(redis_client, clock):
    return BalanceCache(redis_client, clock=clock)


# ============================================================
# BASIC OPERATIONS
# ============================================================

class TestBalanceCache:
    """Get / set / invalidate."""

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, cache):
        assert await cache.get("1100000001") is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, cache, redis_client):
        await cache.set("1100000001", 250000.5)

        assert await cache.get("1100000001") == 250000.5
        assert redis_client.set_calls[0]["key"] == "sod_balance:1100000001"

    @pytest.mark.asyncio
    async def test_ttl_runs_to_next_market_open(self, cache, redis_client):
        # 10:30 IST -> next open 22h45m later
        await cache.set("1100000001", 1000.0)

        assert redis_client.set_calls[0]["ex"] == 22 * 3600 + 45 * 60

    @pytest.mark.asyncio
    async def test_ttl_floor_near_open(self, redis_client):
        clock = MockClock(datetime(2024, 1, 16, 3, 40, tzinfo=timezone.utc))  # 09:10 IST
        cache = BalanceCache(redis_client, clock=clock)

        await cache.set("1100000001", 1000.0)

        assert redis_client.set_calls[0]["ex"] == 3600

    @pytest.mark.asyncio
    async def test_entry_expires_at_market_open(self, cache, clock):
        await cache.set("1100000001", 1000.0)

        clock.advance(timedelta(hours=22, minutes=44).total_seconds())
        assert await cache.get("1100000001") == 1000.0

        clock.advance(minutes=1)
        assert await cache.get("1100000001") is None

    @pytest.mark.asyncio
    async def test_invalidate(self, cache):
        await cache.set("1100000001", 1000.0)

        await cache.invalidate("1100000001")

        assert await cache.get("1100000001") is None

    @pytest.mark.asyncio
    async def test_malformed_value_is_a_miss(self, cache, redis_client):
        redis_client.raw_set("sod_balance:1100000001", b"not-a-number")

        assert await cache.get("1100000001") is None

    @pytest.mark.asyncio
    async def test_disabled_cache_is_noop(self, redis_client, clock):
        cache = BalanceCache(redis_client, BalanceCacheConfig(enabled=False), clock=clock)

        await cache.set("1100000001", 1000.0)

        assert redis_client.set_calls == []
        assert await cache.get("1100000001") is None


# ============================================================
# DEGRADATION TESTS
# ============================================================

class TestBalanceCacheDegradation:
    """Backend failures never surface."""

    @pytest.mark.asyncio
    async def test_get_failure_is_a_miss(self, cache, redis_client):
        redis_client.fail_with = RedisConnectionError("down")

        assert await cache.get("1100000001") is None

    @pytest.mark.asyncio
    async def test_set_failure_is_swallowed(self, cache, redis_client):
        redis_client.fail_with = RedisConnectionError("down")

        await cache.set("1100000001", 1000.0)

    @pytest.mark.asyncio
    async def test_invalidate_failure_is_swallowed(self, cache, redis_client):
        redis_client.fail_with = RedisConnectionError("down")

        await cache.invalidate("1100000001")


# ============================================================
# READ-THROUGH TESTS
# ============================================================

class TestStartingBalanceReadThrough:
    """AccountSnapshotSource.get_starting_balance with a cache."""

    @pytest.mark.asyncio
    async def test_miss_fetches_and_populates(self, cache):
        source = MockSnapshotSource("1100000001", starting_balance=100000.0, balance_cache=cache)

        assert await source.get_starting_balance() == 100000.0
        assert await source.get_starting_balance() == 100000.0

        assert source.balance_fetches == 1

    @pytest.mark.asyncio
    async def test_non_positive_fresh_value_not_cached(self, cache):
        source = MockSnapshotSource("1100000001", starting_balance=0.0, balance_cache=cache)

        assert await source.get_starting_balance() == 0.0
        assert await cache.get("1100000001") is None

    @pytest.mark.asyncio
    async def test_non_positive_cached_value_ignored(self, cache):
        await cache.set("1100000001", 0.0)
        source = MockSnapshotSource("1100000001", starting_balance=5000.0, balance_cache=cache)

        assert await source.get_starting_balance() == 5000.0
        assert source.balance_fetches == 1

    @pytest.mark.asyncio
    async def test_read_after_expiry_fetches_fresh(self, cache, clock):
        source = MockSnapshotSource("1100000001", starting_balance=100000.0, balance_cache=cache)
        await source.get_starting_balance()

        # Next session: broker reports a new start-of-day balance
        clock.advance(hours=23)
        source.starting_balance = 97000.0

        assert await source.get_starting_balance() == 97000.0
        assert source.balance_fetches == 2

    @pytest.mark.asyncio
    async def test_backend_down_falls_back_to_remote(self, cache, redis_client):
        redis_client.fail_with = RedisConnectionError("down")
        source = MockSnapshotSource("1100000001", starting_balance=100000.0, balance_cache=cache)

        assert await source.get_starting_balance() == 100000.0
        assert await source.get_starting_balance() == 100000.0
        assert source.balance_fetches == 2
