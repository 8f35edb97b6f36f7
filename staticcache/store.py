"""
Cache Store interface.

Two interchangeable strategies implement it:
- IndexedStore: Redis keyed store, served by the application
- FilesystemStore: files on disk, served by the web server's rewrite rules

Callers (interceptor, invalidator, garbage collector) only talk to this
interface; the strategy is picked once from configuration.
"""

from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional

from staticcache.models import CacheRecord, Header, RequestContext


# Returns every known principal id, not including the anonymous sentinel
PrincipalProvider = Callable[[], Iterable[str]]


class CacheStore(ABC):
    """Strategy interface for page storage."""

    name: str = "abstract"

    @abstractmethod
    async def fetch(self, ctx: RequestContext) -> Optional[CacheRecord]:
        """Return the stored variant for this request, or None on miss."""

    @abstractmethod
    def decode_body(self, record: CacheRecord) -> bytes:
        """Return the viewer-facing body of a stored record."""

    @abstractmethod
    async def capture(
        self,
        ctx: RequestContext,
        headers: List[Header],
        body: bytes,
    ) -> bytes:
        """
        Persist a freshly rendered response.

        Returns the body to send to the current viewer. Implementations must
        not raise; failures are logged and the rendered body passes through.
        """

    @abstractmethod
    async def invalidate(
        self,
        urls: Iterable[str],
        principals: PrincipalProvider,
    ) -> int:
        """Remove the entries of the given URLs. Returns the number removed."""

    @abstractmethod
    async def clear(self) -> int:
        """Remove every cached page. Returns the number removed."""

    async def count(self) -> Optional[int]:
        """Number of cached pages, None when the strategy cannot tell."""
        return None

    async def collect_garbage(self, ttl: int, root: Optional[str] = None) -> int:
        """Delete stale entries. Strategies with native expiry need nothing."""
        return 0
