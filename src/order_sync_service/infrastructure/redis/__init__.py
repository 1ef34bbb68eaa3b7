"""Redis-backed locks for cross-worker single flight, with graceful degradation."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog

from order_sync_service.config import get_settings

logger = structlog.get_logger()

LOCK_PREFIX = "order-sync:lock:"

_redis_client: aioredis.Redis | None = None


async def get_redis_client() -> aioredis.Redis | None:
    """Get or create the global async Redis client."""
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        try:
            _redis_client = aioredis.from_url(
                settings.redis_url,
                decode_responses=False,
                socket_connect_timeout=2,
                socket_timeout=2,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.warning("Redis unavailable, distributed locks disabled", error=str(e))
            _redis_client = None
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection (each worker task runs its own event loop)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


class LockService:
    """Non-blocking named locks. Without Redis every acquire succeeds locally."""

    def __init__(self, client: aioredis.Redis | None):
        self.client = client

    @asynccontextmanager
    async def hold(self, name: str, ttl_seconds: int) -> AsyncIterator[bool]:
        """Yield True if the lock was taken, False if another worker holds it."""
        if not self.client:
            yield True
            return

        lock = self.client.lock(f"{LOCK_PREFIX}{name}", timeout=ttl_seconds, blocking=False)
        try:
            acquired = await lock.acquire()
        except Exception as e:
            logger.warning("Lock acquire failed, running without lock", lock=name, error=str(e))
            yield True
            return

        if not acquired:
            yield False
            return
        try:
            yield True
        finally:
            try:
                await lock.release()
            except Exception as e:
                logger.warning("Lock release failed", lock=name, error=str(e))
