"""
Static Cache Engine

Wires configuration, backend, the configured store strategy, stats,
invalidation and garbage collection into one object shared by the
middleware, the admin API and the CLI.
"""

import logging
from typing import Optional

from staticcache.backend import RedisBackend
from staticcache.config import (
    METHOD_FILESYSTEM,
    METHOD_INDEXED,
    CacheConfig,
    get_cache_config,
)
from staticcache.exceptions import InvalidConfiguration
from staticcache.filesystem_store import FilesystemStore
from staticcache.garbage_collection import GarbageCollector
from staticcache.indexed_store import IndexedStore
from staticcache.invalidation import Invalidator
from staticcache.stats import StatsTracker
from staticcache.store import CacheStore, PrincipalProvider


logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("staticcache.audit")


def create_store(config: CacheConfig, backend: RedisBackend) -> CacheStore:
    """Build the store strategy selected by ``config.cache_method``."""
    if config.cache_method == METHOD_INDEXED:
        return IndexedStore(backend, config)
    if config.cache_method == METHOD_FILESYSTEM:
        return FilesystemStore(config)
    raise InvalidConfiguration(
        f"Unknown cache method {config.cache_method!r}, "
        f"expected {METHOD_INDEXED!r} or {METHOD_FILESYSTEM!r}"
    )


class StaticCache:
    """
    Full-page cache engine.

    Usage:
        cache = StaticCache(principals=lambda: [str(u.id) for u in users()])
        app.add_middleware(StaticCacheMiddleware, cache=cache)
        app.include_router(staticcache.api.router)

        # On content changes
        await cache.invalidator.handle_event(ContentEvent.CONTENT_UPDATED, content=ref)
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        backend: Optional[RedisBackend] = None,
        principals: Optional[PrincipalProvider] = None,
    ):
        self.config = config or get_cache_config()
        self.backend = backend or RedisBackend(self.config)
        self.store = create_store(self.config, self.backend)
        self.stats = StatsTracker(self.backend, self.config, self.store)
        self.invalidator = Invalidator(
            self.store,
            self.config,
            principals=principals,
            clear_all=self.clear_all,
        )
        self.garbage_collector = GarbageCollector(self.store, self.config)

    async def clear_all(self) -> int:
        """
        Drop every cached page.

        The indexed strategy also drops the statistics; the filesystem
        strategy deletes this site's cache tree and leaves statistics alone.
        """
        removed = await self.store.clear()
        if self.store.name == METHOD_INDEXED:
            await self.stats.reset()

        audit_logger.info(f"Cleared cache ({self.store.name}, {removed} entries)")
        return removed

    async def startup(self):
        """Start scheduled garbage collection."""
        await self.garbage_collector.start()

    async def shutdown(self):
        """Stop background work and release the backend."""
        await self.garbage_collector.stop()
        await self.backend.close()


# Singleton instance
_static_cache: Optional[StaticCache] = None


def get_static_cache() -> StaticCache:
    """Get singleton cache engine built from the environment."""
    global _static_cache

    if _static_cache is None:
        _static_cache = StaticCache()

    return _static_cache


def set_static_cache(cache: Optional[StaticCache]):
    """Replace the singleton, e.g. with an engine that knows the site's users."""
    global _static_cache
    _static_cache = cache
