# lead_engine/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from lead_engine.config import settings
from lead_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class FastRedisClient:
    """Pooled Redis connection shared by the rate limiter's multi-process backend."""

    def __init__(self, url: str | None = None):
        self.url = url
        self.pool = None
        self.client = None
        self._initialized = False

    @property
    def enabled(self) -> bool:
        return bool(self.url or settings.REDIS_URL)

    async def initialize(self):
        """Initialize connection pool on startup. No-op when REDIS_URL is unset."""
        if self._initialized:
            return
        if not self.enabled:
            logger.info("REDIS_URL not configured, Redis client disabled")
            return

        redis_url = self.url or settings.REDIS_URL
        try:
            logger.info("Attempting Redis connection", url_preview=redis_url.split("@")[-1][:40])

            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=20,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                socket_timeout=10,
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
            self.client = None
            self.pool = None
            self._initialized = False
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def ping(self) -> bool:
        if not self._initialized or self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def eval(self, script: str, numkeys: int, *args):
        """Run a Lua script. Raises ConnectionError when the client is not up."""
        if not self._initialized or self.client is None:
            raise ConnectionError("Redis client not available")
        return await self.client.eval(script, numkeys, *args)


# Global instance
fast_redis = FastRedisClient()
