"""
Rewrite rules for the filesystem store.

The web server serves cached files without touching the application when
all of these hold: the request is not a POST, carries no query parameters,
has no bypass cookie, and the cached file exists. The gzip copy wins when
the client accepts gzip.
"""

import logging
from pathlib import Path
from typing import List, Optional

from staticcache.config import CacheConfig, get_cache_config
from staticcache.headers import CacheHeadersBuilder


logger = logging.getLogger(__name__)

RULES_START = "### STATICCACHE START"
RULES_END = "### STATICCACHE END"


def rewrite_rules(
    config: Optional[CacheConfig] = None,
    rewrite_base: str = "",
) -> List[str]:
    """Apache mod_rewrite block serving cached pages."""
    config = config or get_cache_config()
    root = str(Path(config.cache_root).resolve())
    site_path = config.site_path.rstrip("/")
    cached = f"{root}/%{{SERVER_NAME}}{site_path}/$1/index.html"
    cookies = f"{config.logged_in_cookie}|{config.commenter_cookie}"

    conditions = [
        "RewriteCond %{REQUEST_METHOD} !POST",
        "RewriteCond %{QUERY_STRING} !.*=.*",
        f"RewriteCond %{{HTTP:Cookie}} !^.*({cookies}).*$",
    ]

    return [
        RULES_START,
        "RewriteEngine On",
        "RewriteBase /" + rewrite_base.strip("/\\"),
        *conditions,
        "RewriteCond %{HTTP:Accept-Encoding} gzip",
        f"RewriteCond {cached}.gz -f",
        f'RewriteRule ^(.*) "{cached}.gz" [L]',
        "",
        *conditions,
        f"RewriteCond {cached} -f",
        f'RewriteRule ^(.*) "{cached}" [L]',
        RULES_END,
    ]


def gzip_rules(expire: Optional[int] = None) -> List[str]:
    """.htaccess block for the cache directory so .gz files are served as HTML."""
    if expire is None:
        expire = get_cache_config().expire

    headers = (
        CacheHeadersBuilder()
        .max_age(expire)
        .must_revalidate()
        .vary(["Accept-Encoding", "Cookie"])
        .build()
    )

    return [
        "# BEGIN STATICCACHE",
        "<IfModule mod_mime.c>",
        '  <FilesMatch "\\.html\\.gz$">',
        "    ForceType text/html",
        "    FileETag None",
        "  </FilesMatch>",
        "  AddEncoding gzip .gz",
        "  AddType text/html .gz",
        "</IfModule>",
        "<IfModule mod_deflate.c>",
        "  SetEnvIfNoCase Request_URI \\.gz$ no-gzip",
        "</IfModule>",
        "<IfModule mod_headers.c>",
        f'  Header set Vary "{headers["Vary"]}"',
        f'  Header set Cache-Control "{headers["Cache-Control"]}"',
        "</IfModule>",
        "<IfModule mod_expires.c>",
        "  ExpiresActive On",
        f'  ExpiresByType text/html "modification plus {expire} seconds"',
        "</IfModule>",
        "# END STATICCACHE",
    ]


def install_rules(path: str, rules: List[str], create: bool = False) -> bool:
    """
    Prepend a rules block to a server config file unless already present.

    Returns False when the file is missing (and ``create`` is off) or not
    writable.
    """
    target = Path(path)
    if not target.exists():
        if not create:
            logger.warning(f"No rewrite config at {target}")
            return False
        target.parent.mkdir(parents=True, exist_ok=True)
        target.touch()

    block = "\n" + "\n".join(rules) + "\n"

    try:
        current = target.read_text()
        if block in current:
            return True
        target.write_text(block + current)
    except OSError as e:
        logger.error(f"Cannot update rewrite config {target}: {e}")
        return False

    logger.info(f"Installed cache rewrite rules in {target}")
    return True
