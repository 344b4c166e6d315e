#!/usr/bin/env python3
"""
OriginScraper - builds project records from the remote static file host.

The origin is a plain directory-listing server:

    {base}/                         -> one link per project folder
    {base}/{project}/manifest.json  -> free-form JSON manifest
    {base}/{project}/media/         -> one link per media file

Only an unreachable root listing is fatal (``OriginUnavailable``). A project
whose manifest cannot be read is skipped; a project whose media listing
cannot be read keeps its manifest with no media; a media item that cannot be
measured keeps null dimensions or empty content.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, unquote

import requests
from bs4 import BeautifulSoup

import config as cfg
from media_probe import Dimensions, ItemProbeFailure, get_image_dimensions, get_video_dimensions
from project_normalizer import MediaItem, ProjectRecord, classify_media, normalize

logger = logging.getLogger(__name__)

RESERVED_FOLDERS = {".", "..", "_template"}

ImageProbe = Callable[[str], Optional[Dimensions]]
VideoProbe = Callable[[str], Optional[Dimensions]]


class OriginUnavailable(Exception):
    """The origin root listing could not be fetched."""


class ProjectFetchFailure(Exception):
    """A project's manifest is unreachable or invalid."""


class MediaFetchFailure(Exception):
    """A project's media listing is unreachable."""


def _listing_hrefs(html: str) -> List[str]:
    soup = BeautifulSoup(html, "html.parser")
    hrefs = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href.startswith("./"):
            href = href[2:]
        hrefs.append(href)
    return hrefs


def _dedupe(values: List[str]) -> List[str]:
    seen: set[str] = set()
    result = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def parse_directory_listing(html: str) -> List[str]:
    """Return project folder names in listing order (direct children only)."""
    folders = []
    for href in _listing_hrefs(html):
        if not href.endswith("/") or "?" in href:
            continue
        name = unquote(href[:-1])
        if not name or "/" in name or name in RESERVED_FOLDERS:
            continue
        folders.append(name)
    return _dedupe(folders)


def parse_file_listing(html: str) -> List[str]:
    """Return file names (not folders, not sort links) in listing order."""
    files = []
    for href in _listing_hrefs(html):
        if not href or href.endswith("/") or "?" in href or "#" in href:
            continue
        name = unquote(href)
        if "/" in name:
            continue
        files.append(name)
    return _dedupe(files)


class OriginScraper:
    """Scrapes every project of the origin into normalized records."""

    def __init__(
        self,
        base_url: str = cfg.ORIGIN_BASE_URL,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = cfg.HTTP_TIMEOUT,
        max_workers: int = cfg.MEDIA_PROBE_WORKERS,
        image_probe: Optional[ImageProbe] = None,
        video_probe: Optional[VideoProbe] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_workers = max(1, max_workers)
        self.image_probe = image_probe or self._probe_image
        self.video_probe = video_probe or get_video_dimensions

    def scrape(self) -> List[ProjectRecord]:
        """Fetch and normalize every project. Raises ``OriginUnavailable``."""
        folders = self.list_project_folders()
        logger.info("Origin lists %d project folder(s)", len(folders))

        projects: List[ProjectRecord] = []
        for folder in folders:
            try:
                projects.append(self.fetch_project(folder))
            except ProjectFetchFailure as exc:
                logger.warning("Could not fetch project %s: %s", folder, exc)

        logger.info("Scraped %d project(s) from %s", len(projects), self.base_url)
        return projects

    def list_project_folders(self) -> List[str]:
        url = f"{self.base_url}/"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise OriginUnavailable(f"Failed to fetch directory index: {exc}") from exc
        if not response.ok:
            raise OriginUnavailable(f"Failed to fetch directory index: {response.status_code}")
        return parse_directory_listing(response.text)

    def fetch_project(self, folder: str) -> ProjectRecord:
        manifest = self._fetch_manifest(folder)

        media: List[MediaItem] = []
        primary_image = None
        try:
            filenames = self._fetch_media_listing(folder)
        except MediaFetchFailure as exc:
            logger.warning("Could not fetch media for %s: %s", folder, exc)
        else:
            media = self._resolve_media(folder, filenames)
            primary_image = self._primary_image(media)

        return normalize(folder, manifest, media, primary_image)

    # --------- helpers ---------
    def project_url(self, folder: str) -> str:
        return f"{self.base_url}/{quote(folder, safe='')}"

    def media_url(self, folder: str, filename: str = "") -> str:
        return f"{self.project_url(folder)}/media/{quote(filename, safe='')}"

    def _probe_image(self, url: str) -> Optional[Dimensions]:
        return get_image_dimensions(self.session, url, timeout=self.timeout)

    def _fetch_manifest(self, folder: str) -> Dict[str, Any]:
        url = f"{self.project_url(folder)}/manifest.json"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ProjectFetchFailure(f"manifest request failed: {exc}") from exc
        if not response.ok:
            raise ProjectFetchFailure(f"manifest returned {response.status_code}")
        try:
            manifest = response.json()
        except ValueError as exc:
            raise ProjectFetchFailure(f"manifest is not valid JSON: {exc}") from exc
        if not isinstance(manifest, dict):
            raise ProjectFetchFailure("manifest must be a JSON object")
        return manifest

    def _fetch_media_listing(self, folder: str) -> List[str]:
        url = self.media_url(folder)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise MediaFetchFailure(str(exc)) from exc
        if not response.ok:
            raise MediaFetchFailure(f"media listing returned {response.status_code}")
        return parse_file_listing(response.text)

    def _resolve_media(self, folder: str, filenames: List[str]) -> List[MediaItem]:
        entries = []
        for filename in sorted(filenames):
            media_type = classify_media(filename)
            if media_type is not None:
                entries.append((filename, media_type))
        if not entries:
            return []

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(lambda entry: self._resolve_item(folder, *entry), entries))

    def _resolve_item(self, folder: str, filename: str, media_type: str) -> MediaItem:
        url = self.media_url(folder, filename)
        item: MediaItem = {"url": url, "type": media_type, "filename": filename}

        if media_type == "notes":
            item["content"] = self._fetch_notes(url)
            return item

        probe = self.image_probe if media_type == "image" else self.video_probe
        try:
            item["dimensions"] = probe(url)
        except ItemProbeFailure as exc:
            logger.warning("Could not get dimensions for %s: %s", url, exc)
            item["dimensions"] = None
        return item

    def _fetch_notes(self, url: str) -> str:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Could not fetch markdown content for %s: %s", url, exc)
            return ""
        if not response.ok:
            return ""
        return response.content.decode("utf-8", errors="replace")

    def _primary_image(self, media: List[MediaItem]) -> Optional[Dict[str, Any]]:
        images = [item for item in media if item["type"] == "image"]
        if not images:
            return None
        first = min(images, key=lambda item: item["filename"])
        dimensions = first.get("dimensions")
        if dimensions is None:
            try:
                dimensions = self.image_probe(first["url"])
            except ItemProbeFailure:
                dimensions = None
        return {"url": first["url"], "filename": first["filename"], "dimensions": dimensions}
