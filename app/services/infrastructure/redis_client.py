# app/services/infrastructure/redis_client.py
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import LockError

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class LockNotAcquiredError(RuntimeError):
    """Raised when another holder owns the requested lock."""

    def __init__(self, name: str):
        super().__init__(f"Lock '{name}' is held elsewhere")
        self.name = name


class FastRedisClient:
    """Pooled Redis client for the email queue and application locks"""

    def __init__(self, url: str | None = None):
        self.url = url or settings.REDIS_URL
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=self.url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=20,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                # Above the blocking pop timeout used by the email worker
                socket_timeout=30,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Fast Redis client initialized successfully", max_connections=20)

        except Exception as e:
            logger.error("Failed to initialize fast Redis client", error=str(e))
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
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        """Ensure Redis is initialized, fallback if not"""
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def push_to_list(self, key: str, value: str) -> bool:
        """Push a value onto the left of a Redis list used as a queue."""
        try:
            await self._ensure_initialized()
            result = await self.client.lpush(key, value)
            return result > 0
        except Exception as e:
            logger.error(
                "Redis LIST push failed", key=key[:30], value_preview=value[:30], error=str(e)
            )
            return False

    async def pop_from_list(self, key: str, timeout: int = 0) -> str | None:
        """
        Pop a value from the right of a Redis list.

        Args:
            key: Redis list key
            timeout: Seconds to wait for BRPOP; zero pops immediately.
        """
        try:
            await self._ensure_initialized()
            if timeout > 0:
                result = await self.client.brpop(key, timeout=timeout)
                return result[1] if result else None
            return await self.client.rpop(key)
        except Exception as e:
            logger.error("Redis LIST pop failed", key=key[:30], error=str(e))
            return None

    @asynccontextmanager
    async def lock(self, name: str, ttl_s: int) -> AsyncIterator[None]:
        """
        Hold a non-blocking distributed lock for the duration of the block.

        Raises:
            LockNotAcquiredError: the lock is held by someone else
        """
        await self._ensure_initialized()
        lock = self.client.lock(name, timeout=ttl_s, blocking=False)
        if not await lock.acquire():
            raise LockNotAcquiredError(name)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Expired before release; the TTL already freed it
                logger.warning("Redis lock release failed", name=name, error=str(e))


# Global instance
fast_redis = FastRedisClient()
