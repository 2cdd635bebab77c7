"""
Kill Lock Tests.

============================================================
PURPOSE
============================================================
Tests for the per-account kill lock.

TEST CATEGORIES:
- Acquire / release semantics
- Guaranteed release from hold()
- TTL self-healing
- Backend failure behaviour

============================================================
"""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from core.clock import MockClock
from core.exceptions import KillSwitchInProgressError
from risk_guard.lock import KillLock

from tests.risk_guard.fakes import FakeRedis, MARKET_HOURS


@pytest.fixture
def clock():
    return MockClock(MARKET_HOURS)


@pytest.fixture
def redis_client(clock):
    return FakeRedis(clock)


@pytest.fixture
def lock(redis_client):
    return KillLock(redis_client)


# ============================================================
# ACQUIRE / RELEASE
# ============================================================

class TestKillLock:
    """Basic lock semantics."""

    def test_key_format(self):
        assert KillLock.key("acct-1") == "acct-1:kill_lock"

    @pytest.mark.asyncio
    async def test_acquire_uses_set_nx_ex(self, lock, redis_client):
        assert await lock.acquire("acct-1") is True

        call = redis_client.set_calls[0]
        assert call["key"] == "acct-1:kill_lock"
        assert call["nx"] is True
        assert call["ex"] == 30

    @pytest.mark.asyncio
    async def test_second_acquire_fails(self, lock):
        assert await lock.acquire("acct-1") is True
        assert await lock.acquire("acct-1") is False

    @pytest.mark.asyncio
    async def test_accounts_are_independent(self, lock):
        assert await lock.acquire("acct-1") is True
        assert await lock.acquire("acct-2") is True

    @pytest.mark.asyncio
    async def test_release_allows_reacquire(self, lock):
        await lock.acquire("acct-1")

        await lock.release("acct-1")

        assert await lock.acquire("acct-1") is True

    @pytest.mark.asyncio
    async def test_custom_ttl(self, lock, redis_client):
        await lock.acquire("acct-1", ttl_seconds=5)

        assert redis_client.set_calls[0]["ex"] == 5

    @pytest.mark.asyncio
    async def test_ttl_expiry_self_heals(self, lock, clock):
        await lock.acquire("acct-1")

        clock.advance(seconds=30)

        assert await lock.acquire("acct-1") is True

    @pytest.mark.asyncio
    async def test_acquire_stores_unique_token(self, lock, redis_client):
        await lock.acquire("acct-1")
        await lock.acquire("acct-2")

        first, second = (call["value"] for call in redis_client.set_calls)
        assert first != second

    @pytest.mark.asyncio
    async def test_release_without_acquire_leaves_key(self, lock, redis_client, caplog):
        other = KillLock(redis_client)
        await other.acquire("acct-1")

        await lock.release("acct-1")

        assert "not held here" in caplog.text
        assert await lock.acquire("acct-1") is False

    @pytest.mark.asyncio
    async def test_expired_holder_does_not_release_new_holder(self, redis_client, clock, caplog):
        first = KillLock(redis_client)
        second = KillLock(redis_client)
        assert await first.acquire("acct-1") is True

        clock.advance(seconds=31)
        assert await second.acquire("acct-1") is True

        await first.release("acct-1")

        assert "expired before release" in caplog.text
        assert await first.acquire("acct-1") is False


# ============================================================
# HOLD
# ============================================================

class TestKillLockHold:
    """Context manager guarantees."""

    @pytest.mark.asyncio
    async def test_hold_releases_on_success(self, lock):
        async with lock.hold("acct-1"):
            assert await lock.acquire("acct-1") is False

        assert await lock.acquire("acct-1") is True

    @pytest.mark.asyncio
    async def test_hold_releases_on_error(self, lock):
        with pytest.raises(ValueError):
            async with lock.hold("acct-1"):
                raise ValueError("boom")

        assert await lock.acquire("acct-1") is True

    @pytest.mark.asyncio
    async def test_hold_contention_raises(self, lock):
        await lock.acquire("acct-1")

        with pytest.raises(KillSwitchInProgressError) as exc_info:
            async with lock.hold("acct-1"):
                pytest.fail("entered a held lock")

        assert exc_info.value.account_id == "acct-1"
        assert exc_info.value.message == "Kill switch already in progress"

    @pytest.mark.asyncio
    async def test_contention_does_not_release_holder(self, lock):
        await lock.acquire("acct-1")

        with pytest.raises(KillSwitchInProgressError):
            async with lock.hold("acct-1"):
                pass

        assert await lock.acquire("acct-1") is False

    @pytest.mark.asyncio
    async def test_concurrent_holders_exclusive(self, lock):
        entered = []

        async def attempt(name):
            async with lock.hold("acct-1"):
                entered.append(name)
                await asyncio.sleep(0.01)

        results = await asyncio.gather(attempt("a"), attempt("b"), return_exceptions=True)

        assert len(entered) == 1
        assert sum(isinstance(r, KillSwitchInProgressError) for r in results) == 1

    @pytest.mark.asyncio
    async def test_overrun_hold_keeps_successor_lock(self, redis_client, clock, caplog):
        lock = KillLock(redis_client, ttl_seconds=30)

        async with lock.hold("acct-1"):
            clock.advance(seconds=31)
            async with lock.hold("acct-1"):
                pass
            assert await lock.acquire("acct-1") is True

        assert "expired before release" in caplog.text
        assert await KillLock(redis_client).acquire("acct-1") is False


# ============================================================
# BACKEND FAILURES
# ============================================================

class TestKillLockFailures:
    """Backend failures."""

    @pytest.mark.asyncio
    async def test_acquire_failure_propagates(self, lock, redis_client):
        redis_client.fail_with = RedisConnectionError("down")

        with pytest.raises(RedisConnectionError):
            await lock.acquire("acct-1")

    @pytest.mark.asyncio
    async def test_release_failure_is_logged(self, lock, redis_client, caplog):
        await lock.acquire("acct-1")
        redis_client.fail_with = RedisConnectionError("down")

        await lock.release("acct-1")

        assert "Failed to release kill lock for acct-1" in caplog.text
