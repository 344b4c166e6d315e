#!/usr/bin/env python3
"""Portfolio content API.

Features:
- Serves project records from the cache (/projects, /projects/<id>, /tags, ...)
- Serves generated share images (/homepage/share-image, /tag/<tag>/share-image, ...)
- Serves Open Graph pages for crawlers (/homepage/prerender, ...)
- Admin actions under /admin/* guarded by a shared secret
"""

from __future__ import annotations

import argparse
import hmac
import json
import logging
import os
import re
import sys
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable
from urllib.parse import parse_qs, quote, unquote, urlparse

# Support direct execution: `python utils/portfolio_server.py ...`
if __package__ in (None, ""):
    _REPO_ROOT = Path(__file__).resolve().parents[1]
    if str(_REPO_ROOT) not in sys.path:
        sys.path.insert(0, str(_REPO_ROOT))

import config as cfg
import social_pages
from cache_controller import RefreshInProgress, StalenessController
from cache_store import CacheStore, FileStorage
from origin_scraper import OriginScraper, OriginUnavailable
from project_filters import all_tags, filter_by_person, filter_by_tag, sort_by_date
from share_images import ShareImageInputMissing, ShareImageService
from utils.cache_paths import resolve_cache_dir
from utils.log_setup import setup_logging

logger = logging.getLogger(__name__)

ADMIN_KEY_PARAM = "adminApiKey"


class ApiError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class PortfolioApp:
    def __init__(
        self,
        controller: StalenessController,
        share_images: ShareImageService,
        *,
        admin_api_key: str | None = None,
    ):
        self.controller = controller
        self.share_images = share_images
        self.admin_api_key = admin_api_key
        self.routes: list[tuple[re.Pattern[str], str, Callable[..., tuple[str, Any]]]] = [
            (re.compile(r"^/projects$"), "projects", self.api_projects),
            (re.compile(r"^/projects/prerender/tag/([^/]+)$"), "prerender tag", self.prerender_tag),
            (re.compile(r"^/projects/prerender/person/([^/]+)$"), "prerender person", self.prerender_person),
            (re.compile(r"^/projects/prerender/([^/]+)$"), "prerender project", self.prerender_project),
            (re.compile(r"^/projects/tag/([^/]+)$"), "projects by tag", self.api_projects_by_tag),
            (re.compile(r"^/projects/person/([^/]+)$"), "projects by person", self.api_projects_by_person),
            (re.compile(r"^/projects/([^/]+)/share-image$"), "project share image", self.project_share_image),
            (re.compile(r"^/projects/([^/]+)$"), "project", self.api_project),
            (re.compile(r"^/tags$"), "tags", self.api_tags),
            (re.compile(r"^/homepage/share-image$"), "homepage share image", self.homepage_share_image),
            (re.compile(r"^/tag/([^/]+)/share-image$"), "tag share image", self.tag_share_image),
            (re.compile(r"^/person/([^/]+)/share-image$"), "person share image", self.person_share_image),
            (re.compile(r"^/space/share-image$"), "space share image", self.space_share_image),
            (re.compile(r"^/homepage/prerender$"), "prerender homepage", self.prerender_homepage),
            (re.compile(r"^/space/prerender$"), "prerender space", self.prerender_space),
            (re.compile(r"^/about/prerender$"), "prerender about", self.prerender_about),
            (re.compile(r"^/health$"), "health", self.api_health),
        ]
        self.admin_routes: dict[str, Callable[[], tuple[str, Any]]] = {
            "/admin/refresh-cache": self.api_refresh_cache,
            "/admin/cache-status": self.api_cache_status,
        }

    @property
    def store(self) -> CacheStore:
        return self.controller.store

    def dispatch(self, path: str, query: dict[str, list[str]]) -> tuple[str, Any]:
        """Return (kind, payload) where kind is json, html or image."""
        if path in self.admin_routes:
            self.check_admin(query.get(ADMIN_KEY_PARAM, [""])[0])
            return self.admin_routes[path]()

        for pattern, label, handler in self.routes:
            match = pattern.match(path)
            if match is None:
                continue
            args = [unquote(group) for group in match.groups()]
            try:
                return handler(*args)
            except OriginUnavailable as exc:
                logger.error("Error serving %s: %s", label, exc)
                raise ApiError(500, f"Failed to serve {label}") from exc

        raise ApiError(404, "Not found")

    def check_admin(self, provided: str) -> None:
        if not self.admin_api_key:
            raise ApiError(500, "Server configuration error: admin API key not set")
        if not provided:
            raise ApiError(401, f"Authentication required: missing {ADMIN_KEY_PARAM} parameter")
        if not hmac.compare_digest(provided.encode("utf-8"), self.admin_api_key.encode("utf-8")):
            raise ApiError(403, "Authentication failed: invalid API key")

    # --------- project data ---------
    def api_projects(self) -> tuple[str, Any]:
        return "json", self.controller.get_sorted_projects()

    def api_project(self, project_id: str) -> tuple[str, Any]:
        project = self.controller.get_project(project_id)
        if project is None:
            raise ApiError(404, "Project not found")
        return "json", project

    def api_projects_by_tag(self, tag: str) -> tuple[str, Any]:
        return "json", sort_by_date(filter_by_tag(self.controller.get_projects(), tag))

    def api_projects_by_person(self, name: str) -> tuple[str, Any]:
        return "json", sort_by_date(filter_by_person(self.controller.get_projects(), name))

    def api_tags(self) -> tuple[str, Any]:
        return "json", all_tags(self.controller.get_projects())

    def api_health(self) -> tuple[str, Any]:
        return "json", {"status": "ok"}

    # --------- admin ---------
    def api_refresh_cache(self) -> tuple[str, Any]:
        try:
            snapshot = self.controller.refresh_now()
        except RefreshInProgress as exc:
            raise ApiError(429, f"{exc}. Please wait for the current update to complete") from exc
        except OriginUnavailable as exc:
            logger.error("Error during manual cache refresh: %s", exc)
            raise ApiError(500, f"Failed to refresh cache: {exc}") from exc
        return "json", {
            "success": True,
            "message": "Cache refreshed successfully",
            "projectCount": len(snapshot.projects),
            "timestamp": self.controller.status()["lastUpdate"],
        }

    def api_cache_status(self) -> tuple[str, Any]:
        return "json", self.controller.status()

    # --------- share images ---------
    def _share_image(self, scope: str, identifier: str | None = None) -> tuple[str, Any]:
        try:
            path = self.share_images.get(scope, identifier)
        except ShareImageInputMissing as exc:
            raise ApiError(400, str(exc)) from exc
        return "image", (path, f"{quote(identifier or scope, safe='')}-share.jpg")

    def project_share_image(self, project_id: str) -> tuple[str, Any]:
        if self.store.read_snapshot() is not None and self.store.read_by_id(project_id) is None:
            raise ApiError(404, "Project not found")
        return self._share_image("project", project_id)

    def homepage_share_image(self) -> tuple[str, Any]:
        return self._share_image("homepage")

    def tag_share_image(self, tag: str) -> tuple[str, Any]:
        return self._share_image("tag", tag)

    def person_share_image(self, name: str) -> tuple[str, Any]:
        return self._share_image("person", name)

    def space_share_image(self) -> tuple[str, Any]:
        return self._share_image("space")

    # --------- prerender ---------
    def _refresh_if_cached(self) -> None:
        if self.store.read_snapshot() is not None:
            self.controller.trigger_background_refresh()

    def prerender_homepage(self) -> tuple[str, Any]:
        self._refresh_if_cached()
        return "html", social_pages.homepage_page()

    def prerender_about(self) -> tuple[str, Any]:
        return "html", social_pages.about_page()

    def prerender_space(self) -> tuple[str, Any]:
        return "html", social_pages.space_page()

    def prerender_tag(self, tag: str) -> tuple[str, Any]:
        self._refresh_if_cached()
        return "html", social_pages.tag_page(tag)

    def prerender_person(self, name: str) -> tuple[str, Any]:
        self._refresh_if_cached()
        return "html", social_pages.person_page(name)

    def prerender_project(self, project_id: str) -> tuple[str, Any]:
        project = self.controller.get_project(project_id)
        if project is None:
            raise ApiError(404, "Project not found")
        return "html", social_pages.project_page(project)


def _send_json(handler: BaseHTTPRequestHandler, status: int, payload: object) -> None:
    body = (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def _send_html(handler: BaseHTTPRequestHandler, text: str) -> None:
    body = text.encode("utf-8")
    handler.send_response(HTTPStatus.OK)
    handler.send_header("Content-Type", "text/html; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def _send_image(handler: BaseHTTPRequestHandler, path: Path, filename: str) -> None:
    data = path.read_bytes()
    handler.send_response(HTTPStatus.OK)
    handler.send_header("Content-Type", "image/jpeg")
    handler.send_header("Content-Length", str(len(data)))
    handler.send_header("Cache-Control", "public, max-age=3600")
    handler.send_header("Content-Disposition", f'inline; filename="{filename}"')
    handler.end_headers()
    handler.wfile.write(data)


def make_handler(app: PortfolioApp):
    class PortfolioHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # type: ignore[override]
            parsed = urlparse(self.path)
            try:
                kind, payload = app.dispatch(parsed.path, parse_qs(parsed.query))
            except ApiError as exc:
                _send_json(self, exc.status, {"error": exc.message})
                return
            except Exception:
                logger.exception("Unhandled error serving %s", parsed.path)
                _send_json(self, 500, {"error": "Internal server error"})
                return

            if kind == "html":
                _send_html(self, payload)
            elif kind == "image":
                path, filename = payload
                _send_image(self, path, filename)
            else:
                _send_json(self, 200, payload)

        def log_message(self, format: str, *args: object) -> None:  # type: ignore[override]
            logger.debug("%s - %s", self.address_string(), format % args)

    return PortfolioHandler


def build_app(
    cache_dir: Path,
    *,
    ttl: float | None = cfg.CACHE_TTL_SECONDS,
    admin_api_key: str | None = cfg.ADMIN_API_KEY,
    origin_base_url: str = cfg.ORIGIN_BASE_URL,
) -> PortfolioApp:
    store = CacheStore(FileStorage(cache_dir))
    store.load_metadata()

    scraper = OriginScraper(origin_base_url)
    controller = StalenessController(store, scraper.scrape, ttl=ttl)
    share_images = ShareImageService(store, cache_dir, session=scraper.session, origin_base_url=origin_base_url)
    controller.add_invalidation_listener(share_images.clear)
    return PortfolioApp(controller, share_images, admin_api_key=admin_api_key)


def _parse_ttl(value: str) -> float | None:
    if value.strip().lower() in ("none", "off"):
        return None
    return float(value)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the portfolio content API.")
    parser.add_argument("--cache-dir", help="Directory for the projects cache and share images")
    parser.add_argument("--origin", default=cfg.ORIGIN_BASE_URL, help="Base URL of the origin directory listing")
    parser.add_argument("--host", default=os.getenv("PORTFOLIO_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORTFOLIO_PORT", "3109")))
    parser.add_argument(
        "--ttl",
        type=_parse_ttl,
        default=cfg.CACHE_TTL_SECONDS,
        help="Cache TTL in seconds, or 'none' to refresh after every read",
    )
    parser.add_argument("--log-level", default=os.getenv("PORTFOLIO_LOG_LEVEL", "INFO"))
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    setup_logging(args.log_level)
    cache_dir = resolve_cache_dir(args.cache_dir)

    app = build_app(cache_dir, ttl=args.ttl, origin_base_url=args.origin)
    handler_cls = make_handler(app)

    with ThreadingHTTPServer((args.host, args.port), handler_cls) as server:
        print(f"Serving portfolio API with cache in {cache_dir}")
        print(f"URL: http://{args.host}:{args.port}")
        server.serve_forever()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
