"""
Hit/miss statistics.

Counters live in the Redis backend under their own group with a long expiry,
so they survive page churn and never touch the database.
"""

import logging
from typing import Optional

from staticcache.backend import RedisBackend
from staticcache.config import STATS_GROUP, CacheConfig
from staticcache.models import StatsSnapshot
from staticcache.store import CacheStore


logger = logging.getLogger(__name__)

HITS = "hits"
MISSES = "misses"
AVG = "avg"


def _as_number(raw: Optional[bytes], cast=int):
    if raw is None:
        return cast(0)
    try:
        return cast(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
    except ValueError:
        return cast(0)


class StatsTracker:
    """Records cache hits, misses and the mean time to serve a hit."""

    def __init__(
        self,
        backend: RedisBackend,
        config: CacheConfig,
        store: Optional[CacheStore] = None,
    ):
        self.backend = backend
        self.config = config
        self.store = store

    async def record_hit(self, latency_sample: float):
        """
        Count a hit and fold its latency into the running average.

        The average uses the hit count from before this hit:
        ``new_avg = (old_avg * old_hits + sample) / (old_hits + 1)``.
        """
        ttl = self.config.stats_expire
        hits = _as_number(await self.backend.get(STATS_GROUP, HITS))
        avg = _as_number(await self.backend.get(STATS_GROUP, AVG), float)

        # Read-modify-write: the mean needs the old count, so a concurrent hit
        # can be lost. Misses carry no average and use an atomic INCR.
        new_avg = (avg * hits + latency_sample) / (hits + 1)

        await self.backend.set(STATS_GROUP, AVG, repr(new_avg).encode(), ttl)
        await self.backend.set(STATS_GROUP, HITS, str(hits + 1).encode(), ttl)

    async def record_miss(self):
        """Count a miss."""
        await self.backend.incr(STATS_GROUP, MISSES, self.config.stats_expire)

    async def snapshot(self) -> StatsSnapshot:
        """Current counters, plus the page count when the store can tell."""
        snapshot = StatsSnapshot(
            hits=_as_number(await self.backend.get(STATS_GROUP, HITS)),
            misses=_as_number(await self.backend.get(STATS_GROUP, MISSES)),
            avg=_as_number(await self.backend.get(STATS_GROUP, AVG), float),
        )
        if self.store is not None:
            snapshot.pages = await self.store.count()
        return snapshot

    async def reset(self) -> int:
        """Drop every counter."""
        removed = await self.backend.delete_group(STATS_GROUP)
        logger.info(f"Reset cache statistics ({removed} counters)")
        return removed
