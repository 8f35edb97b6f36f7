"""
Filesystem Cache Store

Writes rendered pages to ``<cache_root>/<hostname>/<url-path>/index.html``
(``index.xml`` for feeds) plus an optional gzip sibling. The web server's
rewrite rules serve those files directly, so a hit never reaches the
application and this store never answers lookups itself.

Logged-in viewers are never written: the rewrite layer decides to bypass the
cache by looking for the logged-in cookie, and the application must not race
that decision by storing authenticated output.
"""

import asyncio
import logging
import os
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from staticcache.compression import gzip_encode
from staticcache.config import CacheConfig
from staticcache.exceptions import WriteFailure
from staticcache.keys import normalize_url
from staticcache.models import ANONYMOUS, CacheRecord, Header, RequestContext
from staticcache.store import CacheStore, PrincipalProvider


logger = logging.getLogger(__name__)

UNCACHED_MARKER = b"<!-- Uncached -->"
GZIP_MARKER = b"\n<!-- Compression: gzip -->"

CACHEABLE_TYPES = ("html", "xml")

# Server configuration living inside the cache tree
KEEP_FILES = {".htaccess"}


def _content_type(headers: List[Header]) -> str:
    for name, value in headers:
        if name.lower() == "content-type":
            return value.lower()
    return ""


class FilesystemStore(CacheStore):
    """Page store writing static files for the web server to serve."""

    name = "filesystem"

    def __init__(self, config: CacheConfig):
        self.config = config
        self.root = Path(config.cache_root)

    # =========================================================================
    # Paths
    # =========================================================================

    def _split(self, url: str) -> Tuple[str, str]:
        parts = urlsplit(url)
        host = parts.hostname or urlsplit(self.config.site_url).hostname or "localhost"
        return host, parts.path

    def _filename(self, path: str) -> str:
        padded = "/" + path.strip("/") + "/"
        if any(marker in padded for marker in self.config.feed_markers):
            return "index.xml"
        return "index.html"

    def entry_dir(self, url: str) -> Path:
        """
        Directory holding the files of a URL.

        Raises:
            WriteFailure: if the path would escape the cache root
        """
        host, path = self._split(url)
        segments = [s for s in path.split("/") if s]
        if any(s in (".", "..") for s in segments) or host in (".", ".."):
            raise WriteFailure(f"Refusing cache path outside the cache root: {url}")
        return self.root.joinpath(host, *segments)

    def serve_path_for(self, identity: Optional[str], url: str) -> Optional[Path]:
        """
        Path the rewrite layer would serve for this viewer and URL.

        Logged-in viewers never get cached files, so there is no path for them.
        """
        if identity and str(identity) != ANONYMOUS:
            return None
        _, path = self._split(url)
        return self.entry_dir(url) / self._filename(path)

    @property
    def site_dir(self) -> Path:
        """Directory of this site's pages: <cache_root>/<hostname><site path>."""
        return self.entry_dir(self.config.site_url)

    def _is_site_root(self, url: str) -> bool:
        return normalize_url(url, self.config.site_url) == normalize_url(self.config.site_url)

    # =========================================================================
    # File Operations
    # =========================================================================

    def _atomic_write(self, target: Path, data: bytes):
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=target.name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def write(self, url: str, body: bytes, compress: Optional[bool] = None) -> Path:
        """
        Write a page, and a gzip copy when compression is enabled.

        Both files are written to a temp file and renamed into place, so a
        concurrently routed request never sees a partial page.

        Raises:
            WriteFailure: if the directory or files cannot be written
        """
        if compress is None:
            compress = self.config.compress

        directory = self.entry_dir(url)
        _, path = self._split(url)
        target = directory / self._filename(path)

        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        cache_body = body + f"<!-- Cached page generated by StaticCache on {stamp} -->".encode()

        try:
            directory.mkdir(mode=0o755, parents=True, exist_ok=True)
            self._atomic_write(target, cache_body)

            if compress:
                gz_data = gzip_encode(cache_body + GZIP_MARKER, self.config.compression_level)
                self._atomic_write(target.with_name(target.name + ".gz"), gz_data)

        except OSError as e:
            raise WriteFailure(f"Cannot write cache file {target}: {e}") from e

        return target

    def purge(self, url: str) -> int:
        """
        Remove the cached files of a URL.

        The directory itself goes too, except for the site root which anchors
        the rewrite rules. Returns the number of files removed.
        """
        try:
            directory = self.entry_dir(url)
        except WriteFailure:
            return 0

        removed = 0
        for path in directory.glob("index.*"):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue

        if not self._is_site_root(url):
            try:
                directory.rmdir()
            except OSError:
                # Missing, or still holds child pages
                pass

        return removed

    def sweep(self, older_than: int, root: Optional[Path] = None) -> Tuple[int, int]:
        """
        Delete files at least ``older_than`` seconds old under ``root``.

        ``root`` defaults to the site directory, so other hosts and the
        server files at the top of the cache root are left alone. Walks the
        tree with an explicit stack. Each file is judged by its mtime at the
        moment it is visited; emptied directories are removed afterwards,
        deepest first. The root itself is kept, and so are .htaccess files.
        Unreadable directories are logged and skipped.

        Returns:
            Tuple of (files_removed, directories_removed)
        """
        root = Path(root) if root is not None else self.site_dir
        now = time.time()
        files_removed = 0
        dirs_removed = 0

        stack = [root]
        visited: List[Path] = []

        while stack:
            directory = stack.pop()
            visited.append(directory)

            try:
                with os.scandir(directory) as it:
                    entries = list(it)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Skipping unreadable cache directory {directory}: {e}")
                continue

            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    stack.append(Path(entry.path))
                    continue
                if entry.name in KEEP_FILES:
                    continue

                try:
                    if now - entry.stat(follow_symlinks=False).st_mtime >= older_than:
                        os.unlink(entry.path)
                        files_removed += 1
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Could not remove cache file {entry.path}: {e}")

        # Pre-order reversed: children always come before their parent
        for directory in reversed(visited):
            if directory == root:
                continue
            try:
                directory.rmdir()
                dirs_removed += 1
            except OSError:
                pass

        return files_removed, dirs_removed

    # =========================================================================
    # CacheStore interface
    # =========================================================================

    async def fetch(self, ctx: RequestContext) -> Optional[CacheRecord]:
        # Hits are served by the web server before the application runs
        return None

    def decode_body(self, record: CacheRecord) -> bytes:
        return record.body

    async def capture(
        self,
        ctx: RequestContext,
        headers: List[Header],
        body: bytes,
    ) -> bytes:
        content_type = _content_type(headers)

        if ctx.is_authenticated:
            if "html" in content_type:
                return body + UNCACHED_MARKER
            return body

        if ctx.query_string:
            logger.debug(f"Not writing {ctx.request_uri}: query strings are never served from disk")
            return body

        if not any(t in content_type for t in CACHEABLE_TYPES):
            logger.debug(f"Not writing {ctx.request_uri}: content type {content_type!r}")
            return body

        try:
            target = await asyncio.to_thread(self.write, ctx.url, body)
            logger.debug(f"Wrote {ctx.request_uri} to {target}")
        except WriteFailure as e:
            logger.error(f"Cache write failed: {e}")

        return body

    async def invalidate(
        self,
        urls: Iterable[str],
        principals: PrincipalProvider,
    ) -> int:
        # One shared file per path; logged-in viewers never have files
        removed = 0
        for url in urls:
            removed += await asyncio.to_thread(self.purge, url)
        logger.info(f"Purged {removed} cache files")
        return removed

    async def clear(self) -> int:
        files_removed, _ = await asyncio.to_thread(self.sweep, 0)
        return files_removed

    async def collect_garbage(self, ttl: int, root: Optional[str] = None) -> int:
        files_removed, dirs_removed = await asyncio.to_thread(
            self.sweep, ttl, Path(root) if root else None
        )
        logger.info(
            f"Garbage collection removed {files_removed} files "
            f"and {dirs_removed} directories"
        )
        return files_removed
