import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from wellness_os.config import Settings
from wellness_os.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Delete the key only when it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisClient:
    """Pooled Redis client used for per-user run locks."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        self.settings.require("REDIS_URL")

        try:
            self.pool = ConnectionPool.from_url(
                self.settings.REDIS_URL,
                max_connections=20,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Redis client initialized successfully", max_connections=20)

        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def ping(self) -> bool:
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def acquire_lock(self, key: str, token: str, ttl_s: int) -> bool:
        """
        SET key token NX EX ttl.

        Unlike the read helpers this raises on connection errors: a lock that
        cannot be confirmed must not be treated as held.
        """
        await self._ensure_initialized()
        result = await self.client.set(key, token, nx=True, ex=ttl_s)
        return bool(result)

    async def release_lock(self, key: str, token: str) -> bool:
        """Compare-and-delete so an expired lock re-acquired elsewhere is left alone."""
        try:
            await self._ensure_initialized()
            released = await self.client.eval(_RELEASE_SCRIPT, 1, key, token)
            return bool(released)
        except Exception as e:
            logger.error("Redis lock release failed", key=key[:40], error=str(e))
            return False
