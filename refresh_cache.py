#!/usr/bin/env python3
"""
Refresh the projects cache once, without starting the server.

Usage:
    python refresh_cache.py [--cache-dir DIR] [--origin URL]

Notes:
- Writes projects-cache.json, projects-sorted.json and projects/<id>.json.
- Clears cached share images, like a refresh triggered by the server.
"""
import argparse

import config as cfg
from cache_store import CacheStore, FileStorage
from origin_scraper import OriginScraper, OriginUnavailable
from share_images import ShareImageService
from utils import resolve_cache_dir, setup_logging


def parse_args():
    p = argparse.ArgumentParser(description="Scrape the origin and rewrite the projects cache.")
    p.add_argument("--cache-dir", help="Cache directory (default: PORTFOLIO_CACHE_DIR or config.CACHE_DIR)")
    p.add_argument("--origin", default=cfg.ORIGIN_BASE_URL, help="Base URL of the origin directory listing")
    p.add_argument("--log-level", default="INFO")
    return p.parse_args()


def main():
    args = parse_args()
    setup_logging(args.log_level)
    cache_dir = resolve_cache_dir(args.cache_dir)

    scraper = OriginScraper(args.origin)
    store = CacheStore(FileStorage(cache_dir))
    try:
        projects = scraper.scrape()
    except OriginUnavailable as exc:
        print(f"❌ Origin unavailable: {exc}")
        return 1

    store.write_snapshot(projects)
    ShareImageService(store, cache_dir, session=scraper.session, origin_base_url=args.origin).clear()
    print(f"✅ {len(projects)} project(s) cached in {cache_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
