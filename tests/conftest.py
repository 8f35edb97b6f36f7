"""
Pytest Configuration and Shared Fixtures

Provides an in-memory Redis double and ready-wired cache objects so no test
needs a running Redis server.
"""

import dataclasses
import fnmatch
import time
from typing import Dict, Optional
from urllib.parse import urlsplit

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from staticcache.backend import RedisBackend
from staticcache.config import (
    DEFAULT_IGNORE_LIST,
    METHOD_FILESYSTEM,
    METHOD_INDEXED,
    CacheConfig,
    GCInterval,
    get_cache_config,
)
from staticcache.engine import StaticCache, set_static_cache
from staticcache.keys import derive_query_key, derive_request_key, normalize_url
from staticcache.models import ANONYMOUS, RequestContext


# ============================================================================
# Redis Test Double
# ============================================================================

class FakeRedis:
    """
    Async in-memory stand-in for ``redis.asyncio.Redis``.

    Implements the commands the backend uses, with per-key expiry driven by
    a clock that tests can move forward with ``advance()``. Setting
    ``fail = True`` makes every command raise a connection error.
    """

    def __init__(self):
        self.data: Dict[str, bytes] = {}
        self.expiry: Dict[str, float] = {}
        self.offset = 0.0
        self.fail = False
        self.closed = False

    def _now(self) -> float:
        return time.time() + self.offset

    def advance(self, seconds: float):
        self.offset += seconds

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def _purge(self, key: str):
        expires_at = self.expiry.get(key)
        if expires_at is not None and expires_at <= self._now():
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    @staticmethod
    def _key(key) -> str:
        return key.decode("utf-8") if isinstance(key, bytes) else str(key)

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key) -> Optional[bytes]:
        self._check()
        key = self._key(key)
        self._purge(key)
        return self.data.get(key)

    async def set(self, key, value, ex: Optional[int] = None) -> bool:
        self._check()
        key = self._key(key)
        if isinstance(value, str):
            value = value.encode("utf-8")
        self.data[key] = value
        if ex:
            self.expiry[key] = self._now() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def incr(self, key) -> int:
        self._check()
        key = self._key(key)
        self._purge(key)
        value = int(self.data.get(key, b"0")) + 1
        self.data[key] = str(value).encode("utf-8")
        return value

    async def expire(self, key, seconds: int) -> bool:
        self._check()
        key = self._key(key)
        if key not in self.data:
            return False
        self.expiry[key] = self._now() + seconds
        return True

    async def delete(self, *keys) -> int:
        self._check()
        deleted = 0
        for key in keys:
            key = self._key(key)
            self._purge(key)
            if key in self.data:
                del self.data[key]
                self.expiry.pop(key, None)
                deleted += 1
        return deleted

    async def exists(self, *keys) -> int:
        self._check()
        found = 0
        for key in keys:
            key = self._key(key)
            self._purge(key)
            if key in self.data:
                found += 1
        return found

    async def scan_iter(self, match: Optional[str] = None, count: Optional[int] = None):
        self._check()
        for key in list(self.data):
            self._purge(key)
            if key not in self.data:
                continue
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key.encode("utf-8")

    async def close(self):
        self.closed = True


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_singletons():
    """Keep the config and engine singletons from leaking between tests."""
    get_cache_config.cache_clear()
    set_static_cache(None)
    yield
    get_cache_config.cache_clear()
    set_static_cache(None)


@pytest.fixture
def config(tmp_path) -> CacheConfig:
    """Indexed-store configuration for a site served at http://testserver."""
    return CacheConfig(
        namespace="test",
        enabled=True,
        cache_method=METHOD_INDEXED,
        ignore_list=DEFAULT_IGNORE_LIST.split(","),
        expire=86400,
        stats_expire=604800,
        compress=False,
        compression_level=4,
        compression_threshold=1024,
        cache_root=str(tmp_path / "cache"),
        feed_markers=("/atom/",),
        site_url="http://testserver",
        site_feed_url=None,
        gc_interval=GCInterval.NEVER,
        redis_url="redis://localhost:6379/15",
        stats_header_enabled=True,
    )


@pytest.fixture
def fs_config(config) -> CacheConfig:
    """Filesystem-store configuration writing gzip siblings."""
    return dataclasses.replace(config, cache_method=METHOD_FILESYSTEM, compress=True)


# ============================================================================
# Backend and Engine Fixtures
# ============================================================================

@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def backend(config, fake_redis) -> RedisBackend:
    return RedisBackend(config, redis=fake_redis)


@pytest.fixture
def principals():
    """Registered users of the site."""
    return lambda: ["1", "2"]


@pytest.fixture
def engine(config, backend, principals) -> StaticCache:
    return StaticCache(config, backend, principals=principals)


@pytest.fixture
def fs_engine(fs_config, fake_redis, principals) -> StaticCache:
    return StaticCache(
        fs_config,
        RedisBackend(fs_config, redis=fake_redis),
        principals=principals,
    )


# ============================================================================
# Request Context Factory
# ============================================================================

@pytest.fixture
def make_context():
    """Build the RequestContext the middleware would derive for a URL."""
    def _make(url: str, identity: str = ANONYMOUS, query: str = "") -> RequestContext:
        parts = urlsplit(url)
        request_uri = f"{url}?{query}" if query else url
        return RequestContext(
            identity=identity,
            url=normalize_url(url),
            path=parts.path,
            host=parts.hostname or "",
            query_string=query,
            request_uri=request_uri,
            request_key=derive_request_key(identity, url),
            query_key=derive_query_key(query),
        )
    return _make
