"""
Static Cache command line

Maintenance commands meant to run from cron or a deploy script:

Usage:
    # Sweep stale filesystem entries (schedule it hourly/daily in cron):
    staticcache gc
    staticcache gc --ttl 3600 --root /var/www/user/cache/staticcache

    # Drop every cached page:
    staticcache clear

    # Show hit/miss statistics:
    staticcache stats

    # Print or install the web server rewrite rules:
    staticcache rules --rewrite-base /blog
    staticcache rules --install /var/www/.htaccess
"""

import argparse
import asyncio
import json
import logging
from typing import List, Optional

from dotenv import load_dotenv

from staticcache.config import get_cache_config
from staticcache.engine import StaticCache
from staticcache.rewrite import gzip_rules, install_rules, rewrite_rules


logger = logging.getLogger(__name__)


async def run_gc(cache: StaticCache, ttl: Optional[int], root: Optional[str]) -> int:
    result = await cache.garbage_collector.sweep(cache_root=root, ttl=ttl)
    if result.skipped:
        print(f"{result.strategy} store expires entries itself, nothing to sweep")
    else:
        print(f"Removed {result.files_removed} files older than {result.ttl}s "
              f"in {result.duration_ms:.0f}ms")
    return 0


async def run_clear(cache: StaticCache) -> int:
    removed = await cache.clear_all()
    print(f"Cleared {removed} cached entries ({cache.store.name})")
    return 0


async def run_stats(cache: StaticCache) -> int:
    snapshot = await cache.stats.snapshot()
    print(json.dumps({"strategy": cache.store.name, **snapshot.to_dict()}, indent=2))
    return 0


def run_rules(
    cache: StaticCache,
    rewrite_base: str,
    install: Optional[str],
    cache_dir: bool,
) -> int:
    rules = rewrite_rules(cache.config, rewrite_base)

    if install:
        if not install_rules(install, rules):
            print(f"Could not install rewrite rules in {install}")
            return 1
        if cache_dir:
            htaccess = f"{cache.config.cache_root.rstrip('/')}/.htaccess"
            if not install_rules(htaccess, gzip_rules(cache.config.expire), create=True):
                print(f"Could not install cache directory rules in {htaccess}")
                return 1
        print(f"Installed rewrite rules in {install}")
        return 0

    print("\n".join(rules))
    if cache_dir:
        print()
        print("\n".join(gzip_rules(cache.config.expire)))
    return 0


async def run_command(args: argparse.Namespace, cache: StaticCache) -> int:
    """Dispatch a parsed command against an engine."""
    try:
        if args.command == "gc":
            return await run_gc(cache, args.ttl, args.root)
        if args.command == "clear":
            return await run_clear(cache)
        if args.command == "stats":
            return await run_stats(cache)
        return run_rules(cache, args.rewrite_base, args.install, args.cache_dir)
    finally:
        await cache.backend.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="staticcache",
        description="Maintain the full-page response cache"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log debug output"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    gc = subparsers.add_parser("gc", help="Delete stale filesystem cache files")
    gc.add_argument(
        "--ttl",
        type=int,
        default=None,
        help="Maximum file age in seconds (default: STATICCACHE_EXPIRE)"
    )
    gc.add_argument(
        "--root",
        default=None,
        help="Directory to sweep (default: STATICCACHE_ROOT)"
    )

    subparsers.add_parser("clear", help="Drop every cached page")
    subparsers.add_parser("stats", help="Print hit/miss statistics as JSON")

    rules = subparsers.add_parser("rules", help="Print or install web server rewrite rules")
    rules.add_argument(
        "--rewrite-base",
        default="",
        help="RewriteBase of the site (default: /)"
    )
    rules.add_argument(
        "--install",
        default=None,
        metavar="PATH",
        help="Prepend the rules to this .htaccess instead of printing them"
    )
    rules.add_argument(
        "--cache-dir",
        action="store_true",
        help="Also emit the .htaccess block for the cache directory"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    get_cache_config.cache_clear()
    cache = StaticCache(get_cache_config())

    return asyncio.run(run_command(args, cache))


if __name__ == "__main__":
    raise SystemExit(main())
