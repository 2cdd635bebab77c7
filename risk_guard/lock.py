"""
Risk Guard - Kill Lock.

============================================================
PURPOSE
============================================================
Per-account, time-boxed mutual exclusion guaranteeing at most
one kill switch execution in flight for an account, across
processes.

- Atomic SET NX EX on "{account_id}:kill_lock" with a per-acquire token
- Release deletes the key only while it still holds our token
- Contention is not an error: acquire() returns False
- A crashed holder self-heals when the TTL expires

============================================================
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from core.constants import KILL_LOCK_SUFFIX, KILL_LOCK_TTL_SECONDS
from core.exceptions import KillSwitchInProgressError


logger = logging.getLogger(__name__)


# Compare-and-delete: a holder whose TTL lapsed must not remove
# the lock a later execution acquired.
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class KillLock:
    """
    Redis-backed per-account kill lock.

    Usage:
        async with lock.hold(account_id):
            ...  # exclusive for this account
    """

    def __init__(self, client: Redis, ttl_seconds: int = KILL_LOCK_TTL_SECONDS):
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._tokens: Dict[str, str] = {}

    @staticmethod
    def key(account_id: str) -> str:
        return f"{account_id}:{KILL_LOCK_SUFFIX}"

    async def acquire(self, account_id: str, ttl_seconds: Optional[int] = None) -> bool:
        """
        Try to take the lock.

        Returns:
            True if acquired, False if already held

        Raises:
            RedisError: backend unreachable. A lock that cannot be
            taken is never assumed held.
        """
        token = await self._set_token(account_id, ttl_seconds)
        if token is None:
            return False
        self._tokens[account_id] = token
        return True

    async def release(self, account_id: str) -> None:
        """
        Release a lock this instance acquired.

        Failures are logged; the TTL expires the key anyway.
        """
        token = self._tokens.pop(account_id, None)
        if token is None:
            logger.warning(f"Kill lock for {account_id} not held here, not releasing")
            return

        await self._release_token(account_id, token)

    async def _set_token(self, account_id: str, ttl_seconds: Optional[int]) -> Optional[str]:
        token = uuid.uuid4().hex
        result = await self._client.set(
            self.key(account_id),
            token,
            ex=ttl_seconds or self._ttl_seconds,
            nx=True,
        )
        return token if result else None

    async def _release_token(self, account_id: str, token: str) -> None:
        try:
            released = await self._client.eval(RELEASE_SCRIPT, 1, self.key(account_id), token)
        except RedisError as e:
            logger.warning(f"Failed to release kill lock for {account_id}: {e}")
            return

        if not released:
            logger.warning(
                f"Kill lock for {account_id} expired before release; "
                f"execution outlasted the lock TTL"
            )

    @asynccontextmanager
    async def hold(
        self,
        account_id: str,
        ttl_seconds: Optional[int] = None,
    ) -> AsyncIterator[None]:
        """
        Hold the lock for the duration of the block.

        Raises:
            KillSwitchInProgressError: lock held elsewhere
        """
        token = await self._set_token(account_id, ttl_seconds)
        if token is None:
            raise KillSwitchInProgressError(account_id)
        try:
            yield
        finally:
            await self._release_token(account_id, token)


__all__ = [
    "RELEASE_SCRIPT",
    "KillLock",
]
