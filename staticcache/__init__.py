"""
StaticCache - full-page response caching

Stores the final rendered output of a page and replays it for later
requests, so the renderer only runs on a miss:
- Indexed strategy: pages kept in Redis, served by the middleware
- Filesystem strategy: pages written to disk, served by the web server's
  rewrite rules before the application is reached

Key components:
- StaticCacheMiddleware: Serve-if-cached / capture-on-miss interceptor
- StaticCache: Engine wiring store, stats, invalidation and GC
- Invalidator: Event-driven invalidation of affected pages
- GarbageCollector: Periodic sweep of stale filesystem entries
- StatsTracker: Hit/miss counters and mean serve time

Usage:
    cache = StaticCache(principals=lambda: [str(u.id) for u in list_users()])
    set_static_cache(cache)
    app.add_middleware(StaticCacheMiddleware, cache=cache)
    app.include_router(staticcache.api.router)

    # Invalidate on changes
    await cache.invalidator.handle_event(
        ContentEvent.CONTENT_UPDATED,
        content=ContentRef(permalink=post.permalink, comment_feed_link=post.feed),
    )

    # Keep logged-in viewers off the web server's cached files
    mark_session_authenticated(response)
"""

from staticcache.config import CacheConfig, GCInterval, get_cache_config
from staticcache.exceptions import (
    StaticCacheError,
    StoreUnavailable,
    WriteFailure,
    InvalidConfiguration,
)
from staticcache.keys import derive_request_key, derive_query_key, normalize_url
from staticcache.models import (
    ANONYMOUS,
    CacheEntry,
    CacheKey,
    CacheRecord,
    QueryKey,
    RequestContext,
    StatsSnapshot,
)
from staticcache.backend import RedisBackend
from staticcache.store import CacheStore
from staticcache.indexed_store import IndexedStore
from staticcache.filesystem_store import FilesystemStore
from staticcache.stats import StatsTracker
from staticcache.invalidation import (
    ContentEvent,
    ContentRef,
    Invalidator,
    InvalidationResult,
    ReactionRef,
)
from staticcache.garbage_collection import GarbageCollector, SweepResult
from staticcache.engine import StaticCache, get_static_cache, set_static_cache
from staticcache.middleware import RequestState, StaticCacheMiddleware
from staticcache.session import (
    mark_session_authenticated,
    clear_session_authenticated_marker,
    mark_pending_commenter,
)
from staticcache.rewrite import rewrite_rules, gzip_rules, install_rules

__all__ = [
    # Config
    "CacheConfig",
    "GCInterval",
    "get_cache_config",
    # Errors
    "StaticCacheError",
    "StoreUnavailable",
    "WriteFailure",
    "InvalidConfiguration",
    # Keys and model
    "derive_request_key",
    "derive_query_key",
    "normalize_url",
    "ANONYMOUS",
    "CacheEntry",
    "CacheKey",
    "CacheRecord",
    "QueryKey",
    "RequestContext",
    "StatsSnapshot",
    # Stores
    "RedisBackend",
    "CacheStore",
    "IndexedStore",
    "FilesystemStore",
    # Stats
    "StatsTracker",
    # Invalidation
    "ContentEvent",
    "ContentRef",
    "Invalidator",
    "InvalidationResult",
    "ReactionRef",
    # Garbage collection
    "GarbageCollector",
    "SweepResult",
    # Engine and middleware
    "StaticCache",
    "get_static_cache",
    "set_static_cache",
    "RequestState",
    "StaticCacheMiddleware",
    # Cookies
    "mark_session_authenticated",
    "clear_session_authenticated_marker",
    "mark_pending_commenter",
    # Rewrite rules
    "rewrite_rules",
    "gzip_rules",
    "install_rules",
]
