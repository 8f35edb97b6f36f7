"""
Cache Invalidation Service

Event-driven invalidation of cached pages when content changes.
Principle: Invalidate as narrowly as possible.

Events trigger targeted invalidation:
- CONTENT_*: the item's permalink, its reaction feed, the site feed and
  the site root
- REACTION_*: the same URL set for the parent item, only when an approved
  reaction appears, changes or disappears
- THEME_CHANGED: every page changes, so the whole cache is cleared
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Optional

from staticcache.config import CacheConfig, get_cache_config
from staticcache.store import CacheStore, PrincipalProvider


logger = logging.getLogger(__name__)

STATUS_APPROVED = "approved"


class ContentEvent(Enum):
    """Events that trigger cache invalidation."""

    # Content lifecycle
    CONTENT_CREATED = "content_created"
    CONTENT_UPDATED = "content_updated"
    CONTENT_DELETED = "content_deleted"

    # Reactions (comments) on content
    REACTION_CREATED = "reaction_created"
    REACTION_UPDATED = "reaction_updated"
    REACTION_DELETED = "reaction_deleted"
    REACTION_ACCEPTED = "reaction_accepted"

    # Site-wide structural change
    THEME_CHANGED = "theme_changed"

    # Manual invalidation
    MANUAL_INVALIDATE_ALL = "manual_invalidate_all"


@dataclass
class ContentRef:
    """The URLs of a piece of content that appear in cached pages."""
    permalink: str
    comment_feed_link: Optional[str] = None


@dataclass
class ReactionRef:
    """A reaction and the content it belongs to."""
    content: ContentRef
    status: str
    previous_status: Optional[str] = None

    @property
    def affects_pages(self) -> bool:
        """Only approved reactions are visible on cached pages."""
        return STATUS_APPROVED in (self.status, self.previous_status)


@dataclass
class InvalidationResult:
    """Result of a cache invalidation operation."""
    event: Optional[ContentEvent]
    success: bool
    urls: List[str]
    entries_invalidated: int
    full_clear: bool
    duration_ms: float
    errors: List[str] = field(default_factory=list)


def no_principals() -> List[str]:
    """Principal provider for sites without registered users."""
    return []


class Invalidator:
    """
    Removes cached pages affected by a change.

    With the indexed store a page is cached once per viewer identity, so
    every known principal is crossed with every URL. That costs
    O(principals x urls) lookups per event and assumes a bounded user base.
    """

    def __init__(
        self,
        store: CacheStore,
        config: Optional[CacheConfig] = None,
        principals: Optional[PrincipalProvider] = None,
        clear_all: Optional[Callable[[], Awaitable[int]]] = None,
    ):
        self.store = store
        self.config = config or get_cache_config()
        self.principals = principals or no_principals
        self._clear_all = clear_all

    def urls_for(self, content: ContentRef) -> List[str]:
        """URLs whose cached pages show this content."""
        urls = [
            content.comment_feed_link,
            content.permalink,
            self.config.feed_url,
            self.config.site_url,
        ]
        return [url for url in urls if url]

    async def invalidate(
        self,
        urls: Iterable[str],
        event: Optional[ContentEvent] = None,
    ) -> InvalidationResult:
        """Expire the cached pages of the given URLs for every identity."""
        start_time = datetime.utcnow()
        urls = list(dict.fromkeys(urls))
        errors = []
        invalidated = 0

        try:
            invalidated = await self.store.invalidate(urls, self.principals)
        except Exception as e:
            errors.append(str(e))
            logger.error(f"Cache invalidation error: {e}")

        duration = (datetime.utcnow() - start_time).total_seconds() * 1000

        logger.info(
            f"Invalidation complete: {invalidated} entries for {len(urls)} URLs, "
            f"duration: {duration:.2f}ms"
        )

        return InvalidationResult(
            event=event,
            success=len(errors) == 0,
            urls=urls,
            entries_invalidated=invalidated,
            full_clear=False,
            duration_ms=duration,
            errors=errors,
        )

    async def handle_event(
        self,
        event: ContentEvent,
        content: Optional[ContentRef] = None,
        reaction: Optional[ReactionRef] = None,
    ) -> InvalidationResult:
        """
        Handle cache invalidation for an event.

        Each event type has specific invalidation logic to minimize
        cache churn while ensuring viewers never see stale content.
        """
        logger.info(f"Cache invalidation event: {event.value}")

        if event in (
            ContentEvent.CONTENT_CREATED,
            ContentEvent.CONTENT_UPDATED,
            ContentEvent.CONTENT_DELETED,
        ):
            if content is None:
                raise ValueError(f"{event.value} requires the affected content")
            return await self.invalidate(self.urls_for(content), event)

        if event in (
            ContentEvent.REACTION_CREATED,
            ContentEvent.REACTION_UPDATED,
            ContentEvent.REACTION_DELETED,
        ):
            if reaction is None:
                raise ValueError(f"{event.value} requires the affected reaction")
            if reaction.affects_pages:
                return await self.invalidate(self.urls_for(reaction.content), event)
            return self._noop(event)

        if event == ContentEvent.REACTION_ACCEPTED:
            # Pending reactions are invisible; the submitter gets the
            # commenter cookie instead
            return self._noop(event)

        # THEME_CHANGED, MANUAL_INVALIDATE_ALL
        return await self._full_clear(event)

    async def _full_clear(self, event: ContentEvent) -> InvalidationResult:
        start_time = datetime.utcnow()
        errors = []
        invalidated = 0

        try:
            if self._clear_all is not None:
                invalidated = await self._clear_all()
            else:
                invalidated = await self.store.clear()
        except Exception as e:
            errors.append(str(e))
            logger.error(f"Cache clear error: {e}")

        duration = (datetime.utcnow() - start_time).total_seconds() * 1000

        return InvalidationResult(
            event=event,
            success=len(errors) == 0,
            urls=[],
            entries_invalidated=invalidated,
            full_clear=True,
            duration_ms=duration,
            errors=errors,
        )

    def _noop(self, event: ContentEvent) -> InvalidationResult:
        return InvalidationResult(
            event=event,
            success=True,
            urls=[],
            entries_invalidated=0,
            full_clear=False,
            duration_ms=0.0,
        )
