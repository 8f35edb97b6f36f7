"""
HTTP Header Handling

Captures response headers at render time and replays them on a hit.
Set-Cookie is never captured: a cookie issued to one viewer must not be
handed to everyone served from the cache. Length and framing headers are
recomputed for the replayed body.
"""

from typing import Iterable, List, Tuple

from starlette.responses import Response

from staticcache.models import Header


# Diagnostic header carrying the time it took to serve a hit
STATS_HEADER = "X-StaticCache-Stats"

EXCLUDED_HEADERS = {
    "set-cookie",
    "content-length",
    "transfer-encoding",
    "connection",
}


def capture_headers(raw_headers: Iterable[Tuple[bytes, bytes]]) -> List[Header]:
    """Turn ASGI raw headers into the ordered list stored with a page."""
    headers = []
    for name, value in raw_headers:
        name = name.decode("latin-1")
        if name.lower() in EXCLUDED_HEADERS:
            continue
        headers.append((name, value.decode("latin-1")))
    return headers


def replay_headers(response: Response, headers: List[Header]) -> Response:
    """Apply stored headers to a response, keeping repeated headers."""
    for name, value in headers:
        if name.lower() == "content-type":
            response.headers[name] = value
        else:
            response.headers.append(name, value)
    return response


def add_stats_header(response: Response, elapsed: float) -> Response:
    """Attach the time taken to serve a hit."""
    response.headers[STATS_HEADER] = f"{elapsed:.6f}"
    return response


class CacheHeadersBuilder:
    """
    Fluent builder for Cache-Control / Vary values.

    Usage:
        headers = (CacheHeadersBuilder()
            .max_age(86400)
            .must_revalidate()
            .vary(["Accept-Encoding", "Cookie"])
            .build())
    """

    def __init__(self):
        self._max_age: int = 0
        self._must_revalidate: bool = False
        self._vary: List[str] = []

    def max_age(self, seconds: int) -> "CacheHeadersBuilder":
        """Set max-age directive."""
        self._max_age = seconds
        return self

    def must_revalidate(self) -> "CacheHeadersBuilder":
        """Require revalidation after max-age."""
        self._must_revalidate = True
        return self

    def vary(self, headers: List[str]) -> "CacheHeadersBuilder":
        """Set Vary header for cache key variation."""
        self._vary.extend(headers)
        return self

    def build(self) -> dict:
        """Build headers dictionary."""
        headers = {}

        directives = [f"max-age={self._max_age}"]
        if self._must_revalidate:
            directives.append("must-revalidate")
        headers["Cache-Control"] = ", ".join(directives)

        if self._vary:
            headers["Vary"] = ", ".join(self._vary)

        return headers
