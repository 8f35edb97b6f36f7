"""
Tests for cache key derivation.
"""

import zlib

import pytest
from starlette.requests import Request

from staticcache.keys import derive_query_key, derive_request_key, normalize_url, request_url
from staticcache.models import ANONYMOUS


# =============================================================================
# URL NORMALIZATION TESTS
# =============================================================================

class TestNormalizeUrl:
    """Test URL normalization."""

    def test_strips_query_and_fragment(self):
        assert normalize_url("http://example.com/a/b?x=1#top") == "http://example.com/a/b"

    def test_strips_trailing_slash(self):
        assert normalize_url("http://example.com/a/b/") == "http://example.com/a/b"

    def test_site_root(self):
        assert normalize_url("http://example.com/") == "http://example.com"

    def test_path_only(self):
        assert normalize_url("/a/b/?page=2") == "/a/b"

    def test_path_only_resolved_against_site(self):
        assert normalize_url("/a/b/?page=2", "https://example.com/blog") == "https://example.com/a/b"
        assert normalize_url("a/b", "https://example.com") == "https://example.com/a/b"

    def test_absolute_url_kept_with_site(self):
        assert normalize_url("http://other.org/a/", "https://example.com") == "http://other.org/a"


def _request(path: str, host: str, scheme: str = "http", query: bytes = b"") -> Request:
    name, _, port = host.partition(":")
    return Request({
        "type": "http",
        "method": "GET",
        "scheme": scheme,
        "path": path,
        "query_string": query,
        "headers": [(b"host", host.encode())],
        "server": (name, int(port or 80)),
    })


class TestRequestUrl:
    """Test the URL a request is keyed on."""

    def test_without_site_url(self):
        assert request_url(_request("/a/b/", "example.com:8000")) == "http://example.com:8000/a/b"

    @pytest.mark.parametrize("host,scheme", [
        ("example.com:8000", "http"),
        ("www.example.com", "http"),
        ("example.com", "https"),
    ])
    def test_site_url_replaces_request_host(self, host, scheme):
        request = _request("/a/b/", host, scheme, b"page=2")
        assert request_url(request, "http://example.com") == "http://example.com/a/b"

    def test_key_matches_invalidation_url(self):
        request = _request("/a/b", "example.com:8000")
        site = "http://example.com"
        assert derive_request_key("0", request=request, site_url=site) == \
            derive_request_key("0", "http://example.com/a/b")
        assert derive_request_key("0", request=request, site_url=site) == \
            derive_request_key("0", "/a/b", site_url=site)


# =============================================================================
# KEY DERIVATION TESTS
# =============================================================================

class TestRequestKey:
    """Test (identity, URL) keys."""

    def test_deterministic(self):
        """Same inputs always give the same key."""
        assert derive_request_key("5", "http://example.com/a") == \
            derive_request_key("5", "http://example.com/a")

    def test_matches_crc32_of_identity_and_url(self):
        expected = zlib.crc32(b"0http://example.com/a") & 0xFFFFFFFF
        assert derive_request_key(None, "http://example.com/a") == expected

    def test_unsigned(self):
        for url in ("http://example.com/", "http://example.com/x", "http://a.b/c/d/e"):
            key = derive_request_key("42", url)
            assert 0 <= key <= 0xFFFFFFFF

    def test_anonymous_default(self):
        assert derive_request_key(None, "http://example.com/a") == \
            derive_request_key(ANONYMOUS, "http://example.com/a")
        assert derive_request_key("", "http://example.com/a") == \
            derive_request_key(ANONYMOUS, "http://example.com/a")

    def test_identity_partitions_keys(self):
        """Different viewers never share an entry."""
        assert derive_request_key("1", "http://example.com/a") != \
            derive_request_key("2", "http://example.com/a")

    @pytest.mark.parametrize("variant", [
        "http://example.com/a/",
        "http://example.com/a?page=2",
        "http://example.com/a/?page=2#c",
    ])
    def test_query_and_trailing_slash_ignored(self, variant):
        assert derive_request_key("0", variant) == derive_request_key("0", "http://example.com/a")


class TestQueryKey:
    """Test query-string variant keys."""

    def test_empty_query(self):
        assert derive_query_key("") == 0
        assert derive_query_key(None) == 0

    def test_distinct_queries(self):
        assert derive_query_key("page=1") != derive_query_key("page=2")

    def test_matches_crc32(self):
        assert derive_query_key("page=2") == zlib.crc32(b"page=2") & 0xFFFFFFFF
