"""
Garbage Collection

Removes stale filesystem cache entries. Files left on disk keep being served
by the web server until something deletes them, so a periodic sweep is
needed; the indexed store expires entries natively and skips the sweep.

The sweep is driven by an external schedule: either the background loop
started with the application, or cron running ``staticcache gc``.
Request traffic never triggers it.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from staticcache.config import CacheConfig, GCInterval, get_cache_config
from staticcache.store import CacheStore


logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Result of one garbage collection run."""
    strategy: str
    files_removed: int
    ttl: int
    duration_ms: float
    skipped: bool = False


class GarbageCollector:
    """Periodic sweep of expired filesystem cache files."""

    def __init__(
        self,
        store: CacheStore,
        config: Optional[CacheConfig] = None,
    ):
        self.store = store
        self.config = config or get_cache_config()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def sweep(
        self,
        cache_root: Optional[str] = None,
        ttl: Optional[int] = None,
    ) -> SweepResult:
        """
        Delete cache files older than ``ttl`` seconds.

        Idempotent and safe to run next to live writes: a file is judged by
        its mtime when the walk reaches it.
        """
        ttl = self.config.expire if ttl is None else ttl
        start_time = datetime.utcnow()

        if self.store.name != "filesystem":
            logger.debug(f"{self.store.name} store expires entries itself, nothing to sweep")
            return SweepResult(
                strategy=self.store.name,
                files_removed=0,
                ttl=ttl,
                duration_ms=0.0,
                skipped=True,
            )

        removed = await self.store.collect_garbage(ttl, cache_root)
        duration = (datetime.utcnow() - start_time).total_seconds() * 1000

        return SweepResult(
            strategy=self.store.name,
            files_removed=removed,
            ttl=ttl,
            duration_ms=duration,
        )

    async def start(self, interval: Optional[GCInterval] = None):
        """
        Start the background sweep loop.

        Does nothing for GCInterval.NEVER.
        """
        if self._running:
            logger.warning("Garbage collector already running")
            return

        interval = interval or self.config.gc_interval
        seconds = interval.seconds
        if seconds is None:
            logger.info("Garbage collection disabled (interval: never)")
            return

        self._running = True

        async def gc_loop():
            while self._running:
                await asyncio.sleep(seconds)
                try:
                    result = await self.sweep()
                    logger.info(f"Garbage collection removed {result.files_removed} files")
                except Exception as e:
                    logger.error(f"Garbage collection error: {e}")

        self._task = asyncio.create_task(gc_loop())
        logger.info(f"Garbage collector started (interval: {interval.value})")

    async def stop(self):
        """Stop the background sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Garbage collector stopped")
