"""
Per-user locks.

Everything from the MVD exit/activate check to the pending-nudge write for
one user is a single read-modify-write. Two runs for the same user are
serialized here; different users never contend.
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Protocol

from wellness_os.errors import StateConflictError
from wellness_os.infrastructure.observability.logging import get_logger
from wellness_os.services.infrastructure.redis_client import RedisClient

logger = get_logger(__name__)

LOCK_POLL_INTERVAL_SECONDS = 0.2


class UserLockManager(Protocol):
    def hold(self, user_id: str): ...


class RedisUserLock:
    """Cross-process lock: SET NX with TTL, released with compare-and-delete."""

    KEY_PREFIX = "wellness:user_lock:"

    def __init__(self, redis_client: RedisClient, ttl_s: int = 120, wait_s: float = 10.0):
        self.redis = redis_client
        self.ttl_s = ttl_s
        self.wait_s = wait_s

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncGenerator[None, None]:
        """
        Hold the user's lock for the body of the block.

        Raises:
            StateConflictError: another run kept the lock past the wait timeout
        """
        key = f"{self.KEY_PREFIX}{user_id}"
        token = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_s

        while not await self.redis.acquire_lock(key, token, self.ttl_s):
            if loop.time() >= deadline:
                raise StateConflictError(
                    "User is locked by another run", user_id=user_id, operation="acquire_lock"
                )
            await asyncio.sleep(LOCK_POLL_INTERVAL_SECONDS)

        try:
            yield
        finally:
            # Runs on cancellation too, so no lock outlives the task
            released = await self.redis.release_lock(key, token)
            if not released:
                logger.warning("User lock expired before release", user_id=user_id)


class LocalUserLock:
    """In-process lock map for single-worker runs and tests."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncGenerator[None, None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            yield
