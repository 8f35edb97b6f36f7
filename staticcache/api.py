"""
Cache Management API

Provides endpoints for cache monitoring and manual operations.

Endpoints:
- Health check for monitoring/alerting
- Statistics for dashboard insights
- Manual invalidation and full clear
- Garbage collection trigger for the filesystem store
- Rewrite rules for the web server
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from staticcache.engine import StaticCache, get_static_cache
from staticcache.rewrite import gzip_rules, rewrite_rules


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/staticcache", tags=["Static Cache"])


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class CacheHealthResponse(BaseModel):
    """Cache health check response."""
    status: str = Field(..., description="healthy or unhealthy")
    strategy: str = Field(..., description="indexed or filesystem")
    backend: Dict[str, Any] = Field(default_factory=dict, description="Redis backend health")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class CacheStatsResponse(BaseModel):
    """Hit/miss statistics."""
    strategy: str
    hits: int
    misses: int
    hits_pct: float
    misses_pct: float
    avg: float = Field(..., description="Mean seconds to serve a hit")
    pages: Optional[int] = Field(None, description="Cached pages, unknown for the filesystem store")


class InvalidateRequest(BaseModel):
    """URLs whose cached pages should be dropped."""
    urls: List[str] = Field(..., min_length=1)


class InvalidationResponse(BaseModel):
    """Cache invalidation response."""
    success: bool
    entries_invalidated: int
    full_clear: bool = False
    duration_ms: float
    errors: List[str] = []


class SweepResponse(BaseModel):
    """Garbage collection response."""
    strategy: str
    files_removed: int
    ttl: int
    duration_ms: float
    skipped: bool


class RewriteRulesResponse(BaseModel):
    """Web server configuration blocks for the filesystem store."""
    rewrite_rules: List[str]
    cache_dir_rules: List[str]


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/health", response_model=CacheHealthResponse)
async def cache_health_check(cache: StaticCache = Depends(get_static_cache)):
    """
    Check cache infrastructure health.

    Use this endpoint for monitoring and alerting systems.
    """
    health = await cache.backend.health_check()

    return CacheHealthResponse(
        status="healthy" if health["healthy"] else "unhealthy",
        strategy=cache.store.name,
        backend=health,
        timestamp=datetime.utcnow(),
    )


@router.get("/stats", response_model=CacheStatsResponse)
async def get_cache_stats(cache: StaticCache = Depends(get_static_cache)):
    """
    Get current hit/miss statistics.

    Counters expire a week after the last update.
    """
    snapshot = (await cache.stats.snapshot()).to_dict()
    return CacheStatsResponse(strategy=cache.store.name, **snapshot)


@router.post("/invalidate", response_model=InvalidationResponse)
async def invalidate_urls(
    request: InvalidateRequest,
    cache: StaticCache = Depends(get_static_cache),
):
    """Drop the cached pages of the given URLs for every viewer."""
    result = await cache.invalidator.invalidate(request.urls)

    return InvalidationResponse(
        success=result.success,
        entries_invalidated=result.entries_invalidated,
        duration_ms=result.duration_ms,
        errors=result.errors,
    )


@router.post("/clear", response_model=InvalidationResponse)
async def clear_cache(cache: StaticCache = Depends(get_static_cache)):
    """
    Clear ALL cached pages.

    CAUTION: every page is rendered again on its next request.
    """
    start = datetime.utcnow()

    try:
        removed = await cache.clear_all()
    except OSError as e:
        logger.error(f"Failed to clear cache: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    elapsed = (datetime.utcnow() - start).total_seconds() * 1000

    return InvalidationResponse(
        success=True,
        entries_invalidated=removed,
        full_clear=True,
        duration_ms=elapsed,
        errors=[],
    )


@router.post("/gc", response_model=SweepResponse)
async def collect_garbage(
    ttl: Optional[int] = None,
    cache: StaticCache = Depends(get_static_cache),
):
    """
    Sweep expired filesystem cache files now.

    A no-op for the indexed store, which expires entries itself.
    """
    if ttl is not None and ttl < 0:
        raise HTTPException(status_code=422, detail="ttl must be >= 0")

    result = await cache.garbage_collector.sweep(ttl=ttl)
    return SweepResponse(**result.__dict__)


@router.get("/rewrite-rules", response_model=RewriteRulesResponse)
def get_rewrite_rules(
    rewrite_base: str = "",
    cache: StaticCache = Depends(get_static_cache),
):
    """Rewrite rules to paste into the site's server configuration."""
    return RewriteRulesResponse(
        rewrite_rules=rewrite_rules(cache.config, rewrite_base),
        cache_dir_rules=gzip_rules(cache.config.expire),
    )
