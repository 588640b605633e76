"""Distributed lock implementation using Redis.

Reservation mutations are serialized on ``reservation:{id}`` and every
check-then-insert against a vehicle calendar on ``vehicle:{id}``.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import redis.asyncio as redis

from rental_engine.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class DistributedLockError(Exception):
    """Exception raised when lock acquisition fails."""

    pass


def reservation_lock_key(reservation_id: str) -> str:
    """Lock key serializing writers of one reservation."""
    return f"reservation:{reservation_id}"


def vehicle_lock_key(vehicle_id: str) -> str:
    """Lock key serializing calendar writes for one vehicle."""
    return f"vehicle:{vehicle_id}"


class DistributedLock:
    """
    Redis-based distributed lock.

    Uses SET NX EX for atomic acquisition with expiration and a Lua script
    for release so a holder never deletes a lock it no longer owns.
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        key: str,
        timeout_seconds: int | None = None,
        retry_delay_ms: int | None = None,
        max_retries: int | None = None,
    ):
        """
        Initialize distributed lock.

        Args:
            redis_client: Redis client instance
            key: Lock key name
            timeout_seconds: Lock expiration time in seconds
            retry_delay_ms: Delay between retry attempts in milliseconds
            max_retries: Maximum number of retry attempts
        """
        self.redis = redis_client
        self.key = f"lock:{key}"
        self.timeout_seconds = timeout_seconds or settings.LOCK_TIMEOUT_SECONDS
        self.retry_delay_ms = retry_delay_ms or settings.LOCK_RETRY_DELAY_MS
        self.max_retries = (
            max_retries if max_retries is not None else settings.LOCK_MAX_RETRIES
        )
        self.token: str | None = None
        self._release_script = self.redis.register_script(self.RELEASE_SCRIPT)

    async def acquire(self, blocking: bool = True) -> bool:
        """
        Acquire the lock.

        Args:
            blocking: If True, retry until lock is acquired or max retries reached.
                     If False, try once and return immediately.

        Returns:
            True if lock was acquired, False otherwise.
        """
        self.token = str(uuid.uuid4())
        retries = 0

        while True:
            acquired = await self.redis.set(
                self.key,
                self.token,
                nx=True,
                ex=self.timeout_seconds,
            )

            if acquired:
                return True

            if not blocking or retries >= self.max_retries:
                if blocking:
                    logger.warning(f"Gave up on {self.key} after {retries} retries")
                self.token = None
                return False

            retries += 1
            await asyncio.sleep(self.retry_delay_ms / 1000)

    async def release(self) -> bool:
        """
        Release the lock.

        Returns:
            True if lock was released, False if we didn't own the lock.
        """
        if self.token is None:
            return False

        result = await self._release_script(keys=[self.key], args=[self.token])
        self.token = None
        return bool(result)


class MultiLock:
    """
    Acquire several locks as a unit.

    Keys are de-duplicated and taken in sorted order to prevent deadlocks
    between, e.g., a vehicle switch and an extension on the same vehicle.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        keys: list[str],
        timeout_seconds: int | None = None,
    ):
        self.redis = redis_client
        self.timeout_seconds = timeout_seconds or settings.LOCK_TIMEOUT_SECONDS
        self.sorted_keys = sorted(set(keys))
        self.locks: list[DistributedLock] = []

    async def acquire(self, blocking: bool = True) -> bool:
        """Acquire all locks in sorted order, releasing everything on failure."""
        for key in self.sorted_keys:
            lock = DistributedLock(self.redis, key, self.timeout_seconds)
            if await lock.acquire(blocking=blocking):
                self.locks.append(lock)
            else:
                await self.release()
                return False
        return True

    async def release(self) -> None:
        """Release all locks in reverse order."""
        for lock in reversed(self.locks):
            await lock.release()
        self.locks.clear()


@asynccontextmanager
async def multi_lock(
    redis_client: redis.Redis,
    keys: list[str],
    timeout_seconds: int | None = None,
    blocking: bool = True,
) -> AsyncGenerator[MultiLock, None]:
    """
    Context manager for acquiring one or more locks.

    Usage:
        async with multi_lock(redis, [reservation_lock_key(rid), vehicle_lock_key(vid)]):
            # Critical section
            ...

    Raises:
        DistributedLockError: If locks cannot be acquired
    """
    mlock = MultiLock(redis_client, keys, timeout_seconds)
    acquired = await mlock.acquire(blocking=blocking)

    if not acquired:
        raise DistributedLockError(f"Failed to acquire locks for keys: {keys}")

    try:
        yield mlock
    finally:
        await mlock.release()
