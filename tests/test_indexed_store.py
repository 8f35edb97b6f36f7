"""
Tests for the Redis backend and the indexed page store.

These tests verify:
- Namespaced keys and group scans
- Graceful degradation and the circuit breaker
- Store/lookup round trip of query variants
- Native TTL expiry
- Compressed bodies
"""

import dataclasses

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from staticcache import backend as backend_module
from staticcache.backend import CircuitBreaker, RedisBackend
from staticcache.exceptions import StoreUnavailable
from staticcache.compression import LZ4_AVAILABLE
from staticcache.config import CACHE_GROUP
from staticcache.indexed_store import IndexedStore
from staticcache.keys import derive_query_key, derive_request_key
from staticcache.models import CacheEntry, CacheRecord, QueryKey


HTML = [("content-type", "text/html; charset=utf-8")]
PAGE = "http://testserver/blog/post-1"


# =============================================================================
# BACKEND TESTS
# =============================================================================

class TestRedisBackend:
    """Test the namespaced Redis wrapper."""

    def test_make_key(self, backend):
        assert backend.make_key("staticcache", 123) == "test:staticcache:123"

    @pytest.mark.asyncio
    async def test_set_get_delete(self, backend):
        assert await backend.set("g", "a", b"value", 60)
        assert await backend.get("g", "a") == b"value"
        assert await backend.exists("g", "a")
        assert await backend.delete("g", "a")
        assert await backend.get("g", "a") is None
        assert not await backend.delete("g", "a")

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, backend, fake_redis):
        await backend.set("g", "a", b"value", 60)
        fake_redis.advance(61)
        assert await backend.get("g", "a") is None

    @pytest.mark.asyncio
    async def test_keys_and_delete_group(self, backend):
        await backend.set("pages", 1, b"x", 60)
        await backend.set("pages", 2, b"y", 60)
        await backend.set("other", 3, b"z", 60)

        assert sorted(await backend.keys("pages")) == ["1", "2"]
        assert await backend.delete_group("pages") == 2
        assert await backend.keys("pages") == []
        assert await backend.get("other", 3) == b"z"

    @pytest.mark.asyncio
    async def test_incr(self, backend):
        assert await backend.incr("stats", "misses", 60) == 1
        assert await backend.incr("stats", "misses", 60) == 2

    @pytest.mark.asyncio
    async def test_unavailable_redis_is_a_miss(self, backend, fake_redis):
        """A Redis outage behaves like an empty cache."""
        fake_redis.fail = True

        assert await backend.get("g", "a") is None
        assert await backend.set("g", "a", b"v", 60) is False
        assert await backend.incr("g", "n", 60) is None
        assert await backend.delete_group("g") == 0
        assert backend.get_stats()["errors"] == 4

    @pytest.mark.asyncio
    async def test_health_check(self, backend, fake_redis):
        health = await backend.health_check()
        assert health["healthy"] is True

        fake_redis.fail = True
        health = await backend.health_check()
        assert health["healthy"] is False
        assert health["status"] == "error"

    @pytest.mark.asyncio
    async def test_disabled_backend(self, config, fake_redis):
        backend = RedisBackend(dataclasses.replace(config, enabled=False), redis=fake_redis)
        assert await backend.set("g", "a", b"v", 60) is False
        assert fake_redis.data == {}

    @pytest.mark.asyncio
    async def test_failed_connect_releases_pool(self, config, monkeypatch):
        """A failed connection attempt does not leave its pool behind."""
        pools = []

        class RecordingPool:
            def __init__(self):
                self.disconnected = False

            @classmethod
            def from_url(cls, url, **kwargs):
                pool = cls()
                pools.append(pool)
                return pool

            async def disconnect(self):
                self.disconnected = True

        class DeadRedis:
            def __init__(self, connection_pool=None):
                self.connection_pool = connection_pool

            async def ping(self):
                raise RedisConnectionError("connection refused")

        monkeypatch.setattr(backend_module, "ConnectionPool", RecordingPool)
        monkeypatch.setattr(backend_module, "Redis", DeadRedis)
        backend = RedisBackend(config)

        for _ in range(2):
            with pytest.raises(StoreUnavailable):
                await backend.initialize()

        assert len(pools) == 2
        assert all(pool.disconnected for pool in pools)
        assert backend._pool is None
        assert backend._redis is None


class TestCircuitBreaker:
    """Test circuit breaker behavior."""

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(threshold=3, timeout=60)
        for _ in range(3):
            assert breaker.allow()
            breaker.failed()
        assert not breaker.allow()

    def test_half_open_after_timeout(self):
        breaker = CircuitBreaker(threshold=1, timeout=0)
        breaker.failed()
        assert breaker.is_open
        assert breaker.allow()
        assert not breaker.is_open

    def test_success_resets_failures(self):
        breaker = CircuitBreaker(threshold=3)
        breaker.failed()
        breaker.failed()
        breaker.succeeded()
        assert breaker.failures == 0

    @pytest.mark.asyncio
    async def test_open_breaker_skips_redis(self, backend, fake_redis):
        fake_redis.fail = True
        for _ in range(backend.config.circuit_breaker_threshold):
            await backend.get("g", "a")

        fake_redis.fail = False
        await fake_redis.set("test:g:a", b"value")
        # Still failing fast until the timeout passes
        assert await backend.get("g", "a") is None


# =============================================================================
# DATA MODEL TESTS
# =============================================================================

class TestCacheEntry:
    """Test the stored aggregate."""

    def test_serialize_round_trip(self):
        entry = CacheEntry()
        entry.variants[QueryKey(0)] = CacheRecord(headers=HTML, body=b"<p>a</p>")
        entry.variants[QueryKey(7)] = CacheRecord(
            headers=HTML, body=b"\x00\xffbinary", compressed=True, request_uri="/a?x=1",
        )

        restored = CacheEntry.deserialize(entry.serialize())

        assert len(restored) == 2
        assert QueryKey(7) in restored
        assert restored.get(QueryKey(0)).body == b"<p>a</p>"
        assert restored.get(QueryKey(7)).body == b"\x00\xffbinary"
        assert restored.get(QueryKey(7)).compressed is True
        assert restored.get(QueryKey(0)).headers == HTML


# =============================================================================
# INDEXED STORE TESTS
# =============================================================================

class TestIndexedStore:
    """Test the Redis page store."""

    @pytest.mark.asyncio
    async def test_store_then_lookup(self, backend, config):
        store = IndexedStore(backend, config)
        key = derive_request_key("0", PAGE)

        assert await store.store(key, derive_query_key(""), HTML, b"<p>hello</p>")

        entry = await store.lookup(key)
        record = entry.get(derive_query_key(""))
        assert record.headers == HTML
        assert store.decode_body(record) == b"<p>hello</p>"

    @pytest.mark.asyncio
    async def test_query_variants_share_an_entry(self, backend, config):
        store = IndexedStore(backend, config)
        key = derive_request_key("0", PAGE)

        await store.store(key, derive_query_key(""), HTML, b"page 1")
        await store.store(key, derive_query_key("page=2"), HTML, b"page 2")

        entry = await store.lookup(key)
        assert len(entry) == 2
        assert entry.get(derive_query_key("page=2")).body == b"page 2"
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_variant_replaced(self, backend, config):
        store = IndexedStore(backend, config)
        key = derive_request_key("0", PAGE)

        await store.store(key, derive_query_key(""), HTML, b"old")
        await store.store(key, derive_query_key(""), HTML, b"new")

        entry = await store.lookup(key)
        assert entry.get(derive_query_key("")).body == b"new"

    @pytest.mark.asyncio
    async def test_entry_expires_with_ttl(self, backend, config, fake_redis):
        store = IndexedStore(backend, config)
        key = derive_request_key("0", PAGE)
        await store.store(key, derive_query_key(""), HTML, b"body", ttl=60)

        fake_redis.advance(59)
        assert await store.lookup(key) is not None
        fake_redis.advance(2)
        assert await store.lookup(key) is None

    @pytest.mark.asyncio
    async def test_default_ttl_is_expire(self, backend, config, fake_redis):
        store = IndexedStore(backend, config)
        key = derive_request_key("0", PAGE)
        await store.store(key, derive_query_key(""), HTML, b"body")

        redis_key = backend.make_key(CACHE_GROUP, key)
        remaining = fake_redis.expiry[redis_key] - fake_redis._now()
        assert config.expire - 5 < remaining <= config.expire

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_a_miss(self, backend, config):
        store = IndexedStore(backend, config)
        key = derive_request_key("0", PAGE)
        await backend.set(CACHE_GROUP, key, b"not json", 60)

        assert await store.lookup(key) is None

    @pytest.mark.asyncio
    async def test_fetch_and_capture(self, backend, config, make_context):
        store = IndexedStore(backend, config)
        ctx = make_context(PAGE, query="page=2")

        output = await store.capture(ctx, HTML, b"<p>page 2</p>")
        assert output == b"<p>page 2</p>"

        record = await store.fetch(ctx)
        assert record.request_uri == f"{PAGE}?page=2"
        assert await store.fetch(make_context(PAGE)) is None
        assert await store.fetch(make_context(PAGE, identity="1", query="page=2")) is None

    @pytest.mark.asyncio
    async def test_expire_and_list_all(self, backend, config):
        store = IndexedStore(backend, config)
        first = derive_request_key("0", PAGE)
        second = derive_request_key("0", "http://testserver/about")
        await store.store(first, derive_query_key(""), HTML, b"a")
        await store.store(second, derive_query_key(""), HTML, b"b")

        assert await store.expire(first)
        assert not await store.expire(first)

        entries = await store.list_all()
        assert [key for key, _ in entries] == [second]

    @pytest.mark.asyncio
    async def test_clear(self, backend, config):
        store = IndexedStore(backend, config)
        await store.store(derive_request_key("0", PAGE), derive_query_key(""), HTML, b"a")
        await store.store(derive_request_key("1", PAGE), derive_query_key(""), HTML, b"b")

        assert await store.clear() == 2
        assert await store.count() == 0

    @pytest.mark.skipif(not LZ4_AVAILABLE, reason="LZ4 not installed")
    @pytest.mark.asyncio
    async def test_compressed_round_trip(self, backend, config):
        """Viewers get the original bytes back from a compressed record."""
        store = IndexedStore(backend, dataclasses.replace(config, compress=True, compression_threshold=100))
        key = derive_request_key("0", PAGE)
        body = b"<html>" + b"<p>repeated paragraph</p>" * 500 + b"</html>"

        await store.store(key, derive_query_key(""), HTML, body)

        record = (await store.lookup(key)).get(derive_query_key(""))
        assert record.compressed is True
        assert len(record.body) < len(body)
        assert store.decode_body(record) == body
