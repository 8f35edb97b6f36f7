"""
Request Interceptor

Starlette middleware that serves cached pages before the application runs
and captures freshly rendered pages on the way out.

Request states:
    START -> BYPASSED
    START -> LOOKUP -> HIT -> SERVED
    START -> LOOKUP -> MISS -> PENDING_CAPTURE -> STORED

The state is left on ``request.state.static_cache``.

Add it after (i.e. inside of) authentication and session middleware so the
viewer identity and flash messages are known when it runs.
"""

import logging
import time
from enum import Enum
from typing import AsyncIterator, Callable, Optional
from urllib.parse import urlsplit

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from staticcache.engine import StaticCache, get_static_cache
from staticcache.headers import add_stats_header, capture_headers, replay_headers
from staticcache.keys import derive_query_key, derive_request_key, request_url
from staticcache.models import ANONYMOUS, RequestContext


logger = logging.getLogger(__name__)

CACHEABLE_METHODS = {"GET", "HEAD"}

IdentityResolver = Callable[[Request], Optional[str]]
MessageCheck = Callable[[Request], bool]


class RequestState(Enum):
    """Where a request is in the cache lifecycle."""
    START = "start"
    BYPASSED = "bypassed"
    LOOKUP = "lookup"
    HIT = "hit"
    SERVED = "served"
    MISS = "miss"
    PENDING_CAPTURE = "pending_capture"
    STORED = "stored"


def default_identity(request: Request) -> Optional[str]:
    """
    Principal id of the viewer, None when anonymous.

    Reads the user set by Starlette's AuthenticationMiddleware, falling back
    to ``request.state.user_id``. Either must be set by middleware running
    outside this one: the cache key is built before dispatch, so an id set
    by an endpoint or dependency is only seen after rendering, and such a
    response is never stored.
    """
    user = request.scope.get("user")
    if user is not None and getattr(user, "is_authenticated", False):
        for attr in ("id", "identity", "username"):
            try:
                identity = getattr(user, attr, None)
            except NotImplementedError:
                # Starlette's BaseUser leaves identity abstract
                continue
            if identity:
                return str(identity)

    user_id = getattr(request.state, "user_id", None)
    return str(user_id) if user_id else None


def session_messages_check(key: str) -> MessageCheck:
    """Check for pending flash messages in Starlette's session."""
    def has_messages(request: Request) -> bool:
        session = request.scope.get("session")
        return bool(session and session.get(key))
    return has_messages


async def _iterate(body: bytes) -> AsyncIterator[bytes]:
    yield body


class StaticCacheMiddleware(BaseHTTPMiddleware):
    """
    Serve-if-cached before dispatch, store-if-miss after render.

    Identity and flash-message detection are injected so the cache never
    hardcodes how the host application authenticates.
    """

    def __init__(
        self,
        app,
        cache: Optional[StaticCache] = None,
        identify: Optional[IdentityResolver] = None,
        has_messages: Optional[MessageCheck] = None,
    ):
        super().__init__(app)
        self._cache = cache
        self.identify = identify or default_identity
        self._has_messages = has_messages

    @property
    def cache(self) -> StaticCache:
        if self._cache is None:
            self._cache = get_static_cache()
        return self._cache

    @property
    def has_messages(self) -> MessageCheck:
        if self._has_messages is None:
            self._has_messages = session_messages_check(
                self.cache.config.session_messages_key
            )
        return self._has_messages

    # =========================================================================
    # Decisions
    # =========================================================================

    def is_ignored(self, request: Request) -> bool:
        """Case-insensitive substring match of the URL against the ignore list."""
        url = request.url
        target = f"{url.scheme}://{url.netloc}{url.path}"
        if url.query:
            target += f"?{url.query}"
        target = target.lower()
        return any(
            entry.lower() in target
            for entry in self.cache.config.ignore_list
            if entry
        )

    def should_bypass(self, request: Request) -> bool:
        """Requests that must neither read nor write the cache."""
        if not self.cache.config.enabled:
            return True
        if request.method.upper() not in CACHEABLE_METHODS:
            return True
        if self.is_ignored(request):
            return True
        # Notices must reach the viewer once, not be frozen into a page
        if self.has_messages(request):
            return True
        return False

    def build_context(self, request: Request) -> RequestContext:
        """Derive identity and keys for the current request."""
        identity = self.identify(request) or ANONYMOUS
        url = request_url(request, self.cache.config.site_url)
        query = request.url.query
        return RequestContext(
            identity=str(identity),
            url=url,
            path=request.url.path,
            host=urlsplit(url).hostname or "",
            query_string=query,
            request_uri=str(request.url),
            request_key=derive_request_key(identity, url),
            query_key=derive_query_key(query),
        )

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        request.state.static_cache = RequestState.START

        if self.should_bypass(request):
            request.state.static_cache = RequestState.BYPASSED
            return await call_next(request)

        cache = self.cache
        ctx = self.build_context(request)

        request.state.static_cache = RequestState.LOOKUP
        cached = await self._serve_cached(request, cache, ctx, start_time)
        if cached is not None:
            request.state.static_cache = RequestState.SERVED
            return cached

        request.state.static_cache = RequestState.MISS
        await cache.stats.record_miss()

        response = await call_next(request)

        # Only complete pages are worth replaying; never a 404
        if request.method.upper() != "GET" or response.status_code != 200:
            return response

        rendered_for = str(self.identify(request) or ANONYMOUS)
        if rendered_for != ctx.identity:
            logger.warning(
                f"Not caching {ctx.request_uri}: rendered for identity {rendered_for} "
                f"but keyed for {ctx.identity}, resolve identity before the cache middleware"
            )
            return response

        request.state.static_cache = RequestState.PENDING_CAPTURE
        body = b"".join([chunk async for chunk in response.body_iterator])
        headers = capture_headers(response.raw_headers)

        output = await cache.store.capture(ctx, headers, body)
        request.state.static_cache = RequestState.STORED

        if len(output) != len(body):
            response.headers["content-length"] = str(len(output))
        response.body_iterator = _iterate(output)
        return response

    async def _serve_cached(
        self,
        request: Request,
        cache: StaticCache,
        ctx: RequestContext,
        start_time: float,
    ) -> Optional[Response]:
        record = await cache.store.fetch(ctx)
        if record is None:
            return None

        request.state.static_cache = RequestState.HIT

        try:
            body = cache.store.decode_body(record)
        except Exception as e:
            logger.error(f"Unreadable cached body for {ctx.request_uri}, rendering instead: {e}")
            return None

        response = Response(content=body, status_code=200)
        replay_headers(response, record.headers)

        elapsed = time.perf_counter() - start_time
        await cache.stats.record_hit(elapsed)
        if cache.config.stats_header_enabled:
            add_stats_header(response, elapsed)

        logger.debug(f"Served {ctx.request_uri} from cache in {elapsed:.4f}s")
        return response
