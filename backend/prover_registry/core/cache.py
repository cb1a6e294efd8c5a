"""
Core Cache Service - Redis-backed snapshot store
Holds one serialized CacheSnapshot per namespace with an absolute TTL
"""

import logging
from typing import Any, Dict, Optional
from contextlib import asynccontextmanager
from pydantic import ValidationError
from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import LockError, RedisError

from prover_registry.core.config import settings
from prover_registry.core.exceptions import CacheReadError, CacheWriteError
from prover_registry.schemas.provers import CacheSnapshot, Namespace

logger = logging.getLogger(__name__)


class CoreCacheService:
    """Core Redis-based snapshot cache shared by the read, refresh and write paths"""

    def __init__(self, redis_client: Optional[Redis] = None):
        self.redis_pool: Optional[ConnectionPool] = None
        self.redis_client: Optional[Redis] = redis_client
        self.enabled = redis_client is not None
        self.stats = {"hits": 0, "misses": 0, "errors": 0, "writes": 0}

    async def initialize(self):
        """Initialize the cache service with a shared connection pool"""
        try:
            self.redis_pool = ConnectionPool.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                max_connections=20,
                health_check_interval=30,
            )

            self.redis_client = Redis(connection_pool=self.redis_pool)

            # Test connection
            await self.redis_client.ping()

            self.enabled = True
            logger.info("Core cache service initialized with Redis connection pool")

        except Exception as e:
            logger.error(f"Failed to initialize core cache service: {e}")
            self.enabled = False
            raise

    async def cleanup(self):
        """Cleanup cache resources"""
        if self.redis_client:
            await self.redis_client.close()
            self.redis_client = None

        if self.redis_pool:
            await self.redis_pool.disconnect()
            self.redis_pool = None

        self.enabled = False
        logger.info("Core cache service cleaned up")

    async def ping(self) -> bool:
        """Return True when Redis answers a PING"""
        if not self.enabled:
            return False

        try:
            return bool(await self.redis_client.ping())
        except RedisError as e:
            logger.warning(f"Cache ping failed: {e}")
            return False

    def _get_cache_key(self, namespace: Namespace) -> str:
        """Namespaces are stored under their own name, unprefixed"""
        return Namespace(namespace).value

    async def get_snapshot(self, namespace: Namespace) -> Optional[CacheSnapshot]:
        """
        Get the snapshot for a namespace.

        Returns None when the key was never written or has expired.

        Raises:
            CacheReadError: Redis is unavailable or the value cannot be decoded
        """
        if not self.enabled:
            raise CacheReadError("cache is not initialized")

        cache_key = self._get_cache_key(namespace)
        try:
            value = await self.redis_client.get(cache_key)
        except RedisError as e:
            self.stats["errors"] += 1
            logger.error(f"Cache get error for key {cache_key}: {e}")
            raise CacheReadError(f"failed to read {cache_key}: {e}") from e

        if value is None:
            self.stats["misses"] += 1
            return None

        try:
            snapshot = CacheSnapshot.from_cache_value(value)
        except ValidationError as e:
            self.stats["errors"] += 1
            logger.error(f"Cache value for key {cache_key} is not a valid snapshot: {e}")
            raise CacheReadError(f"failed to decode {cache_key}: {e}") from e

        self.stats["hits"] += 1
        return snapshot

    async def set_snapshot(
        self, namespace: Namespace, snapshot: CacheSnapshot, ttl: int
    ) -> None:
        """
        Overwrite the snapshot for a namespace and reset its expiry to ``ttl`` seconds.

        Raises:
            CacheWriteError: Redis is unavailable or rejected the write
        """
        if not self.enabled:
            raise CacheWriteError("cache is not initialized")

        cache_key = self._get_cache_key(namespace)
        try:
            await self.redis_client.setex(cache_key, ttl, snapshot.to_cache_value())
        except RedisError as e:
            self.stats["errors"] += 1
            logger.error(f"Cache set error for key {cache_key}: {e}")
            raise CacheWriteError(f"failed to write {cache_key}: {e}") from e

        self.stats["writes"] += 1

    @asynccontextmanager
    async def namespace_lock(self, namespace: Namespace):
        """
        Hold the distributed lock for a namespace.

        Guards read-modify-write sequences against concurrent snapshot writes
        from other requests, background refreshes and other processes.

        Raises:
            CacheWriteError: the lock could not be acquired in time
        """
        if not self.enabled:
            raise CacheWriteError("cache is not initialized")

        lock_key = f"{self._get_cache_key(namespace)}:lock"
        lock = self.redis_client.lock(
            lock_key,
            timeout=settings.CACHE_LOCK_TIMEOUT_SECONDS,
            blocking_timeout=settings.CACHE_LOCK_BLOCKING_TIMEOUT_SECONDS,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            self.stats["errors"] += 1
            raise CacheWriteError(f"failed to lock {lock_key}: {e}") from e
        if not acquired:
            raise CacheWriteError(f"timed out waiting for {lock_key}")

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lock expired while held; the write already happened
                logger.warning(f"Cache lock {lock_key} released late: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache counters"""
        stats = self.stats.copy()
        lookups = stats["hits"] + stats["misses"]
        stats["hit_rate"] = round((stats["hits"] / lookups) * 100, 2) if lookups else 0
        stats["enabled"] = self.enabled
        return stats


# Global core cache service instance
core_cache = CoreCacheService()
