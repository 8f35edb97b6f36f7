"""
Indexed Cache Store

Keeps rendered pages in Redis. One key per (identity, URL) pair holds every
query-string variant of that page; expiry is Redis' own per-key TTL, so no
sweep is ever needed.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from staticcache.backend import RedisBackend
from staticcache.compression import BodyCompressor
from staticcache.config import CACHE_GROUP, CacheConfig
from staticcache.keys import derive_request_key
from staticcache.models import (
    ANONYMOUS,
    CacheEntry,
    CacheKey,
    CacheRecord,
    Header,
    QueryKey,
    RequestContext,
)
from staticcache.store import CacheStore, PrincipalProvider


logger = logging.getLogger(__name__)


class IndexedStore(CacheStore):
    """Page store on top of the Redis backend."""

    name = "indexed"

    def __init__(self, backend: RedisBackend, config: CacheConfig):
        self.backend = backend
        self.config = config
        self._compressor = BodyCompressor(
            enabled=config.compress,
            threshold=config.compression_threshold,
        )

    # =========================================================================
    # Entry Operations
    # =========================================================================

    async def lookup(self, key: CacheKey) -> Optional[CacheEntry]:
        """Get the entry stored under a key, None when absent or expired."""
        data = await self.backend.get(CACHE_GROUP, key)
        if data is None:
            return None

        try:
            return CacheEntry.deserialize(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Discarding unreadable cache entry {key}: {e}")
            return None

    async def store(
        self,
        key: CacheKey,
        query_key: QueryKey,
        headers: List[Header],
        body: bytes,
        ttl: Optional[int] = None,
        request_uri: str = "",
    ) -> bool:
        """
        Add or replace one query variant under a key.

        The whole aggregate is rewritten, so concurrent writers of other
        variants of the same page may overwrite each other.
        """
        entry = await self.lookup(key) or CacheEntry()

        packed = self._compressor.pack(body)
        entry.variants[query_key] = CacheRecord(
            headers=list(headers),
            body=packed.data,
            compressed=packed.compressed,
            request_uri=request_uri,
        )

        return await self.backend.set(
            CACHE_GROUP,
            key,
            entry.serialize(),
            ttl or self.config.expire,
        )

    async def expire(self, key: CacheKey) -> bool:
        """Remove an entry. Returns True if it existed."""
        return await self.backend.delete(CACHE_GROUP, key)

    async def list_all(self) -> List[Tuple[CacheKey, CacheEntry]]:
        """Every live entry with its key."""
        entries = []
        for name in await self.backend.keys(CACHE_GROUP):
            key = CacheKey(int(name))
            entry = await self.lookup(key)
            # Expired between scan and read
            if entry is not None:
                entries.append((key, entry))
        return entries

    # =========================================================================
    # CacheStore interface
    # =========================================================================

    async def fetch(self, ctx: RequestContext) -> Optional[CacheRecord]:
        entry = await self.lookup(ctx.request_key)
        if entry is None:
            return None
        return entry.get(ctx.query_key)

    def decode_body(self, record: CacheRecord) -> bytes:
        if record.compressed:
            return self._compressor.unpack(record.body)
        return record.body

    async def capture(
        self,
        ctx: RequestContext,
        headers: List[Header],
        body: bytes,
    ) -> bytes:
        stored = await self.store(
            ctx.request_key,
            ctx.query_key,
            headers,
            body,
            self.config.expire,
            ctx.request_uri,
        )
        if stored:
            logger.debug(f"Cached {ctx.request_uri} for identity {ctx.identity}")
        return body

    async def invalidate(
        self,
        urls: Iterable[str],
        principals: PrincipalProvider,
    ) -> int:
        urls = list(urls)
        identities = [str(p) for p in principals() if str(p) != ANONYMOUS]
        identities.append(ANONYMOUS)

        expired = 0
        for identity in identities:
            for url in urls:
                key = derive_request_key(identity, url, site_url=self.config.site_url)
                if await self.expire(key):
                    expired += 1

        logger.info(
            f"Expired {expired} cache entries for {len(urls)} URLs "
            f"across {len(identities)} identities"
        )
        return expired

    async def clear(self) -> int:
        return await self.backend.delete_group(CACHE_GROUP)

    async def count(self) -> Optional[int]:
        return len(await self.backend.keys(CACHE_GROUP))
