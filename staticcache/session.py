"""
Cache bypass cookies.

With the filesystem store the web server decides whether to serve a cached
file before the application runs, so it needs a client-visible marker to
recognize viewers who must see fresh pages:
- staticcache_logged_in: set on login, removed on logout
- staticcache_commenter: set when a visitor's reaction awaits moderation,
  so they keep seeing uncached pages until it is approved
"""

import logging
from typing import Optional

from starlette.responses import Response

from staticcache.config import CacheConfig, get_cache_config


logger = logging.getLogger(__name__)


def mark_session_authenticated(
    response: Response,
    config: Optional[CacheConfig] = None,
) -> Response:
    """Set the logged-in marker cookie after a successful login."""
    config = config or get_cache_config()
    response.set_cookie(
        config.logged_in_cookie,
        "1",
        max_age=config.logged_in_cookie_max_age,
        path=config.site_path,
    )
    return response


def clear_session_authenticated_marker(
    response: Response,
    config: Optional[CacheConfig] = None,
) -> Response:
    """Remove the logged-in marker cookie on logout."""
    config = config or get_cache_config()
    response.delete_cookie(config.logged_in_cookie, path=config.site_path)
    return response


def mark_pending_commenter(
    response: Response,
    config: Optional[CacheConfig] = None,
) -> Response:
    """Keep a visitor with a reaction awaiting approval off cached pages."""
    config = config or get_cache_config()
    response.set_cookie(
        config.commenter_cookie,
        "1",
        max_age=config.commenter_cookie_max_age,
        path=config.site_path,
    )
    logger.debug("Set pending commenter cookie")
    return response
