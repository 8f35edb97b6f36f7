"""
Cache key derivation.

A page is identified by the viewer identity and the URL without its query
string; each distinct query string becomes a variant under that entry.
Both keys are unsigned CRC32 checksums, so collisions are possible and
accepted.
"""

import zlib
from typing import Optional
from urllib.parse import urlsplit

from starlette.requests import Request

from staticcache.models import ANONYMOUS, CacheKey, QueryKey


def _crc32(value: str) -> int:
    return zlib.crc32(value.encode("utf-8")) & 0xFFFFFFFF


def normalize_url(url: str, site_url: Optional[str] = None) -> str:
    """
    Strip query string, fragment and trailing slash from a URL.

    Path-only URLs are resolved against ``site_url`` when given.
    """
    parts = urlsplit(url)
    if parts.scheme and parts.netloc:
        return f"{parts.scheme}://{parts.netloc}{parts.path.rstrip('/')}"
    if site_url:
        site = urlsplit(site_url)
        path = "/" + parts.path.lstrip("/")
        return f"{site.scheme}://{site.netloc}{path.rstrip('/')}"
    return parts.path.rstrip("/")


def request_url(request: Request, site_url: Optional[str] = None) -> str:
    """
    Normalized URL of the current request.

    With ``site_url`` the configured scheme and host replace the ones the
    request arrived on, so port, host aliases and proxies never change the key.
    """
    url = request.url
    if site_url:
        return normalize_url(url.path, site_url)
    return f"{url.scheme}://{url.netloc}{url.path.rstrip('/')}"


def derive_request_key(
    identity: Optional[str] = None,
    url: Optional[str] = None,
    request: Optional[Request] = None,
    site_url: Optional[str] = None,
) -> CacheKey:
    """
    Get the key for an (identity, URL) pair.

    Args:
        identity: Principal id, defaults to the anonymous sentinel
        url: Page URL, defaults to the normalized URL of ``request``
        request: Current request, used only when ``url`` is omitted
        site_url: Configured site URL that path-only URLs resolve against
    """
    if not identity:
        identity = ANONYMOUS
    if url is None:
        url = request_url(request, site_url) if request is not None else ""
    else:
        url = normalize_url(url, site_url)
    return CacheKey(_crc32(f"{identity}{url}"))


def derive_query_key(query_string: Optional[str]) -> QueryKey:
    """Get the variant key for a query string."""
    return QueryKey(_crc32(query_string or ""))
