"""
Redis Backend

Keyed byte store with native per-key expiry. The indexed page store and the
stats tracker share it, each under its own group:

    <namespace>:staticcache:<cache key>     page entries
    <namespace>:staticcache_stats:hits      counters

Outages degrade to "empty cache": reads miss, writes are dropped, and a
circuit breaker stops hammering a dead server.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from staticcache.config import CacheConfig, get_cache_config
from staticcache.exceptions import StoreUnavailable


logger = logging.getLogger(__name__)


@dataclass
class BackendStats:
    """Counters for the health endpoint."""
    reads: int = 0
    writes: int = 0
    errors: int = 0
    bytes_in: int = 0
    bytes_out: int = 0
    total_latency: float = 0.0

    def observe(self, started: float):
        self.total_latency += time.time() - started

    @property
    def avg_latency_ms(self) -> float:
        operations = self.reads + self.writes
        return self.total_latency / operations * 1000 if operations else 0.0


class CircuitBreaker:
    """
    Stops calling Redis after repeated failures.

    Opens after ``threshold`` consecutive failures. Once ``timeout`` seconds
    have passed the next call is let through (half-open); its outcome decides
    whether the breaker closes or opens again.
    """

    def __init__(self, threshold: int = 5, timeout: int = 60):
        self.threshold = threshold
        self.timeout = timeout
        self.failures = 0
        self.opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    def allow(self) -> bool:
        """Whether a call may go to Redis now."""
        if self.opened_at is None:
            return True
        if time.time() - self.opened_at < self.timeout:
            return False

        logger.info("Circuit breaker half-open, retrying Redis")
        self.opened_at = None
        self.failures = 0
        return True

    def succeeded(self):
        self.failures = 0
        self.opened_at = None

    def failed(self):
        self.failures += 1
        if self.failures >= self.threshold and self.opened_at is None:
            self.opened_at = time.time()
            logger.warning(
                f"Circuit breaker open after {self.failures} Redis failures, "
                f"retrying in {self.timeout}s"
            )


class RedisBackend:
    """
    Namespaced Redis access for the cache.

    Public operations never raise on a backend failure: they log, count the
    error and return the "nothing there" value (None, False, 0 or []).
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        redis: Optional[Redis] = None,
    ):
        self.config = config or get_cache_config()
        self._redis: Optional[Redis] = redis
        self._pool: Optional[ConnectionPool] = None
        self._ready = redis is not None
        self._lock = asyncio.Lock()
        self._stats = BackendStats()

        self._breaker: Optional[CircuitBreaker] = None
        if self.config.circuit_breaker_enabled:
            self._breaker = CircuitBreaker(
                self.config.circuit_breaker_threshold,
                self.config.circuit_breaker_timeout,
            )

    async def initialize(self):
        """
        Open the connection pool and check the server answers.

        Raises:
            StoreUnavailable: if Redis cannot be reached
        """
        async with self._lock:
            if self._ready:
                return

            try:
                self._pool = ConnectionPool.from_url(
                    self.config.redis_url,
                    max_connections=self.config.redis_max_connections,
                    socket_timeout=self.config.redis_socket_timeout,
                    socket_connect_timeout=self.config.redis_connect_timeout,
                    decode_responses=False,
                )
                self._redis = Redis(connection_pool=self._pool)
                await self._redis.ping()
            except (RedisError, OSError) as e:
                if self._breaker:
                    self._breaker.failed()
                if self._pool is not None:
                    await self._pool.disconnect()
                self._pool = None
                self._redis = None
                raise StoreUnavailable(f"Cannot connect to Redis at {self.config.redis_url}: {e}") from e

            self._ready = True
            logger.info(f"Connected to Redis at {self.config.redis_url}")

    async def close(self):
        """Release the connection pool."""
        if self._redis is not None:
            await self._redis.close()
        if self._pool is not None:
            await self._pool.disconnect()
        self._ready = False
        logger.info("Redis backend closed")

    @asynccontextmanager
    async def _client(self):
        if self._breaker and not self._breaker.allow():
            raise StoreUnavailable("Circuit breaker is open")

        if not self._ready:
            await self.initialize()

        try:
            yield self._redis
        except (RedisError, OSError) as e:
            if self._breaker:
                self._breaker.failed()
            raise StoreUnavailable(str(e)) from e

        if self._breaker:
            self._breaker.succeeded()

    def make_key(self, group: str, name) -> str:
        """Full Redis key of a name within a group."""
        return f"{self.config.namespace}:{group}:{name}"

    def _group_prefix(self, group: str) -> str:
        return self.make_key(group, "")

    def _unavailable(self, action: str, key: str, error: StoreUnavailable):
        self._stats.errors += 1
        logger.warning(f"Redis unavailable, {action} {key}: {error}")

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def get(self, group: str, name) -> Optional[bytes]:
        """Value of a key, None when missing, expired or unreachable."""
        if not self.config.enabled:
            return None

        key = self.make_key(group, name)
        started = time.time()

        try:
            async with self._client() as redis:
                data = await redis.get(key)
        except StoreUnavailable as e:
            self._unavailable("treating as miss", key, e)
            return None

        self._stats.reads += 1
        self._stats.observe(started)
        if data is not None:
            self._stats.bytes_out += len(data)
        return data

    async def set(self, group: str, name, value: bytes, ttl: Optional[int] = None) -> bool:
        """Store a value, expiring after ``ttl`` seconds when given."""
        if not self.config.enabled:
            return False

        key = self.make_key(group, name)
        started = time.time()

        try:
            async with self._client() as redis:
                await redis.set(key, value, ex=ttl or None)
        except StoreUnavailable as e:
            self._unavailable("dropping write to", key, e)
            return False

        self._stats.writes += 1
        self._stats.observe(started)
        self._stats.bytes_in += len(value)
        return True

    async def incr(self, group: str, name, ttl: Optional[int] = None) -> Optional[int]:
        """Increment a counter and push its expiry out. Returns the new value."""
        if not self.config.enabled:
            return None

        key = self.make_key(group, name)

        try:
            async with self._client() as redis:
                value = await redis.incr(key)
                if ttl:
                    await redis.expire(key, ttl)
        except StoreUnavailable as e:
            self._unavailable("not counting", key, e)
            return None

        return int(value)

    async def delete(self, group: str, name) -> bool:
        """Remove a key. True when it existed."""
        if not self.config.enabled:
            return False

        key = self.make_key(group, name)

        try:
            async with self._client() as redis:
                return await redis.delete(key) > 0
        except StoreUnavailable as e:
            self._unavailable("cannot delete", key, e)
            return False

    async def exists(self, group: str, name) -> bool:
        if not self.config.enabled:
            return False

        try:
            async with self._client() as redis:
                return await redis.exists(self.make_key(group, name)) > 0
        except StoreUnavailable:
            return False

    async def _scan(self, redis, group: str) -> List[bytes]:
        return [key async for key in redis.scan_iter(match=self._group_prefix(group) + "*", count=100)]

    async def keys(self, group: str) -> List[str]:
        """Names currently stored in a group."""
        if not self.config.enabled:
            return []

        prefix = self._group_prefix(group)

        try:
            async with self._client() as redis:
                found = await self._scan(redis, group)
        except StoreUnavailable as e:
            self._unavailable("cannot scan", prefix, e)
            return []

        return [
            (key.decode("utf-8") if isinstance(key, bytes) else key)[len(prefix):]
            for key in found
        ]

    async def delete_group(self, group: str) -> int:
        """Remove every key of a group. Returns how many were deleted."""
        if not self.config.enabled:
            return 0

        prefix = self._group_prefix(group)

        try:
            async with self._client() as redis:
                found = await self._scan(redis, group)
                deleted = await redis.delete(*found) if found else 0
        except StoreUnavailable as e:
            self._unavailable("cannot clear", prefix, e)
            return 0

        logger.info(f"Deleted {deleted} keys under {prefix}")
        return deleted

    # =========================================================================
    # Statistics and Health
    # =========================================================================

    def get_stats(self) -> Dict:
        """Operation counters since start."""
        return {
            "enabled": self.config.enabled,
            "connected": self._ready,
            "reads": self._stats.reads,
            "writes": self._stats.writes,
            "errors": self._stats.errors,
            "bytes_in": self._stats.bytes_in,
            "bytes_out": self._stats.bytes_out,
            "avg_latency_ms": round(self._stats.avg_latency_ms, 2),
            "circuit_breaker_open": bool(self._breaker and self._breaker.is_open),
        }

    async def health_check(self) -> Dict:
        """Ping Redis and report latency."""
        if not self.config.enabled:
            return {"healthy": True, "status": "disabled"}

        started = time.time()
        try:
            async with self._client() as redis:
                await redis.ping()
        except StoreUnavailable as e:
            return {
                "healthy": False,
                "status": "error",
                "error": str(e),
                "stats": self.get_stats(),
            }

        return {
            "healthy": True,
            "status": "connected",
            "latency_ms": round((time.time() - started) * 1000, 2),
            "stats": self.get_stats(),
        }
