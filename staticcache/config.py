"""
Cache Configuration

Centralized configuration for the page cache.
Every setting can be overridden via environment variables.

Two storage strategies are supported:
- indexed: responses are kept in Redis and served by the application
- filesystem: responses are written to disk and served by the web server
  through rewrite rules, bypassing the application on hit
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import List, Optional, Tuple


# Defaults carried over from the plugin this cache replaces
DEFAULT_EXPIRE = 86400  # 1 day
DEFAULT_STATS_EXPIRE = 604800  # 1 week
DEFAULT_IGNORE_LIST = "/admin,/feedback,/user,/ajax,/auth_ajax,?nocache,/auth,/cron"

CACHE_GROUP = "staticcache"
STATS_GROUP = "staticcache_stats"

METHOD_INDEXED = "indexed"
METHOD_FILESYSTEM = "filesystem"


class GCInterval(Enum):
    """How often stale filesystem entries are swept."""

    NEVER = "never"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def seconds(self) -> Optional[int]:
        """Interval length in seconds, None for NEVER."""
        return {
            GCInterval.NEVER: None,
            GCInterval.HOURLY: 3600,
            GCInterval.DAILY: 86400,
            GCInterval.WEEKLY: 604800,
            GCInterval.MONTHLY: 2592000,
        }[self]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - STATICCACHE_ENABLED: Enable/disable caching globally
    - STATICCACHE_METHOD: "indexed" (Redis) or "filesystem"
    - STATICCACHE_EXPIRE: Page TTL in seconds
    - STATICCACHE_IGNORE_LIST: Comma separated URL fragments never cached
    - STATICCACHE_COMPRESS: Compress stored bodies
    - STATICCACHE_ROOT: Filesystem cache root
    - STATICCACHE_SITE_URL: Public site root URL
    - REDIS_URL: Redis connection for the indexed store and stats
    """

    # Cache namespace (for key prefixes)
    namespace: str = field(default_factory=lambda: os.getenv(
        "STATICCACHE_NAMESPACE",
        "staticcache"
    ))

    # Global cache toggle
    enabled: bool = field(default_factory=lambda: _env_bool(
        "STATICCACHE_ENABLED",
        "true"
    ))

    cache_method: str = field(default_factory=lambda: os.getenv(
        "STATICCACHE_METHOD",
        METHOD_INDEXED
    ).lower())

    ignore_list: List[str] = field(default_factory=lambda: _split_list(os.getenv(
        "STATICCACHE_IGNORE_LIST",
        DEFAULT_IGNORE_LIST
    )))

    # TTLs (seconds)
    expire: int = field(default_factory=lambda: int(os.getenv(
        "STATICCACHE_EXPIRE",
        str(DEFAULT_EXPIRE)
    )))
    stats_expire: int = field(default_factory=lambda: int(os.getenv(
        "STATICCACHE_STATS_EXPIRE",
        str(DEFAULT_STATS_EXPIRE)
    )))

    # Compression
    compress: bool = field(default_factory=lambda: _env_bool(
        "STATICCACHE_COMPRESS",
        "false"
    ))
    compression_level: int = field(default_factory=lambda: int(os.getenv(
        "STATICCACHE_COMPRESSION_LEVEL",
        "4"
    )))
    compression_threshold: int = field(default_factory=lambda: int(os.getenv(
        "STATICCACHE_COMPRESSION_THRESHOLD",
        "1024"
    )))

    # Filesystem store
    cache_root: str = field(default_factory=lambda: os.getenv(
        "STATICCACHE_ROOT",
        os.path.join("user", "cache", CACHE_GROUP)
    ))
    feed_markers: Tuple[str, ...] = field(default_factory=lambda: tuple(_split_list(os.getenv(
        "STATICCACHE_FEED_MARKERS",
        "/atom/"
    ))))

    # Site URLs used for invalidation
    site_url: str = field(default_factory=lambda: os.getenv(
        "STATICCACHE_SITE_URL",
        "http://localhost"
    ).rstrip("/"))
    site_feed_url: Optional[str] = field(default_factory=lambda: os.getenv(
        "STATICCACHE_SITE_FEED_URL"
    ))

    gc_interval: GCInterval = field(default_factory=lambda: GCInterval(os.getenv(
        "STATICCACHE_GC_INTERVAL",
        "never"
    ).lower()))

    # Redis connection
    redis_url: str = field(default_factory=lambda: os.getenv(
        "REDIS_URL",
        "redis://localhost:6379/0"
    ))
    redis_max_connections: int = 50
    redis_socket_timeout: float = 2.0
    redis_connect_timeout: float = 2.0

    # Circuit breaker
    circuit_breaker_enabled: bool = True
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: int = 60

    # Diagnostics
    stats_header_enabled: bool = field(default_factory=lambda: _env_bool(
        "STATICCACHE_STATS_HEADER",
        "true"
    ))

    # Cookies read by the rewrite layer
    logged_in_cookie: str = "staticcache_logged_in"
    logged_in_cookie_max_age: int = 3600
    commenter_cookie: str = "staticcache_commenter"
    commenter_cookie_max_age: int = 86400

    # Session key holding flash messages
    session_messages_key: str = "_messages"

    @property
    def site_host(self) -> str:
        """Host part of the site URL (no scheme, no port stripping)."""
        without_scheme = self.site_url.split("://", 1)[-1]
        return without_scheme.split("/", 1)[0]

    @property
    def site_path(self) -> str:
        """Base path of the site URL, always ending with a slash."""
        without_scheme = self.site_url.split("://", 1)[-1]
        parts = without_scheme.split("/", 1)
        path = "/" + parts[1] if len(parts) > 1 else "/"
        return path.rstrip("/") + "/"

    @property
    def feed_url(self) -> str:
        """Site aggregate feed URL."""
        return self.site_feed_url or f"{self.site_url}/atom/1"


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()
