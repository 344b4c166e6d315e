#!/usr/bin/env python3
"""ShareImageService - social share images composed from project images."""
from __future__ import annotations

import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import quote

import requests
from PIL import Image, ImageOps, UnidentifiedImageError

import config as cfg
from cache_store import CacheStore
from origin_scraper import parse_file_listing
from project_filters import filter_by_person, filter_by_tag, sort_by_date
from project_normalizer import classify_media
from utils.cache_paths import share_image_file_name, share_images_root

logger = logging.getLogger(__name__)

CANVAS_SIZE = (1200, 630)
JPEG_QUALITY = 85
MAX_GRID_IMAGES = 6
MAX_CONCURRENT_DOWNLOADS = 3
BACKGROUND = (255, 255, 255)

SCOPES = ("homepage", "tag", "person", "project", "space")


class ShareImageInputMissing(Exception):
    """No usable source image exists for the requested scope."""


def _millis(epoch_seconds: float) -> int:
    return int(round(epoch_seconds * 1000))


def grid_for(count: int) -> Tuple[int, int]:
    """Columns and rows used for ``count`` images."""
    if count <= 1:
        return 1, 1
    if count == 2:
        return 2, 1
    if count == 3:
        return 3, 1
    if count == 4:
        return 2, 2
    return 3, 2


def cover_fit(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Resize to fill ``size`` and crop the overflow around the center."""
    return ImageOps.fit(image.convert("RGB"), size, method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))


def compose_grid(images: List[Image.Image]) -> Image.Image:
    cols, rows = grid_for(len(images))
    width, height = CANVAS_SIZE
    cell = (width // cols, height // rows)

    canvas = Image.new("RGB", CANVAS_SIZE, BACKGROUND)
    for index, image in enumerate(images[: cols * rows]):
        row, col = divmod(index, cols)
        canvas.paste(cover_fit(image, cell), (col * cell[0], row * cell[1]))
    return canvas


class ShareImageService:
    """Generates share images on demand and keeps them as JPEG files."""

    def __init__(
        self,
        store: CacheStore,
        cache_dir: Path,
        *,
        session: Optional[requests.Session] = None,
        origin_base_url: str = cfg.ORIGIN_BASE_URL,
        studio_photos_url: str = cfg.STUDIO_PHOTOS_URL,
        timeout: float = cfg.HTTP_TIMEOUT,
    ):
        self.store = store
        self.root = share_images_root(Path(cache_dir))
        self.session = session or requests.Session()
        self.origin_base_url = origin_base_url.rstrip("/")
        self.studio_photos_url = studio_photos_url.rstrip("/") + "/"
        self.timeout = timeout

    def cache_path(self, scope: str, identifier: Optional[str] = None) -> Path:
        return self.root / share_image_file_name(scope, identifier)

    def is_cache_valid(self, path: Path) -> bool:
        """A cached image is valid only for the snapshot it was rendered from."""
        last_update = self.store.last_update()
        if last_update is None or not path.is_file():
            return False
        return path.stat().st_mtime_ns // 1_000_000 == _millis(last_update)

    def clear(self) -> int:
        """Delete every cached share image. Returns how many were removed."""
        if not self.root.is_dir():
            return 0
        removed = 0
        for entry in self.root.iterdir():
            if entry.is_file():
                entry.unlink(missing_ok=True)
                removed += 1
        logger.info("Share image cache cleared: %d files deleted", removed)
        return removed

    def get(self, scope: str, identifier: Optional[str] = None) -> Path:
        """Return the path of an up-to-date JPEG for the scope, rendering it if needed."""
        path = self.cache_path(scope, identifier)
        if self.is_cache_valid(path):
            logger.info("Serving cached %s share image %s", scope, path.name)
            return path

        logger.info("Generating new %s share image%s", scope, f" for: {identifier}" if identifier else "")
        rendered_for = self.store.last_update()
        image = self.render(scope, identifier)
        if self.store.last_update() != rendered_for:
            logger.info("Snapshot replaced while rendering %s; image will not be reused", path.name)
        self._save(image, path, rendered_for)
        return path

    def render(self, scope: str, identifier: Optional[str] = None) -> Image.Image:
        if scope == "space":
            return self._render_space()

        snapshot = self.store.read_snapshot()
        if snapshot is None:
            raise ShareImageInputMissing("No projects data available")

        if scope == "project":
            return self._render_project(identifier or "")

        projects = snapshot.projects
        if scope == "tag":
            projects = filter_by_tag(projects, identifier or "")
            missing = f'No primary images found in projects with tag "{identifier}"'
        elif scope == "person":
            projects = filter_by_person(projects, identifier or "")
            missing = f'No primary images found in projects by "{identifier}"'
        else:
            missing = "No primary images found in projects"

        urls = []
        for project in sort_by_date(projects):
            primary = project.get("primaryImage") or {}
            if primary.get("url"):
                urls.append(primary["url"])
            if len(urls) == MAX_GRID_IMAGES:
                break
        if not urls:
            raise ShareImageInputMissing(missing)

        images = self._download_images(urls)
        if not images:
            raise ShareImageInputMissing("No valid images found")
        return compose_grid(images)

    # --------- helpers ---------
    def _render_project(self, project_id: str) -> Image.Image:
        project = self.store.read_by_id(project_id)
        primary = (project or {}).get("primaryImage") or {}
        if not primary.get("url"):
            raise ShareImageInputMissing("No primary image found for this project")

        image = self._download(primary["url"])
        if image is None:
            raise ShareImageInputMissing("No valid image found")
        return cover_fit(image, CANVAS_SIZE)

    def _render_space(self) -> Image.Image:
        url = self._first_studio_photo()
        if url is None:
            raise ShareImageInputMissing("No studio photos found")

        image = self._download(url, restrict_to_origin=False)
        if image is None:
            raise ShareImageInputMissing("No valid studio photo found")
        return cover_fit(image, CANVAS_SIZE)

    def _first_studio_photo(self) -> Optional[str]:
        try:
            response = self.session.get(self.studio_photos_url, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("Error fetching studio photos: %s", exc)
            return None
        if not response.ok:
            logger.error("Failed to fetch studio photos directory: %s", response.status_code)
            return None

        images = sorted(name for name in parse_file_listing(response.text) if classify_media(name) == "image")
        if not images:
            return None
        return self.studio_photos_url + quote(images[0], safe="")

    def _download_images(self, urls: List[str]) -> List[Image.Image]:
        with ThreadPoolExecutor(max_workers=MAX_CONCURRENT_DOWNLOADS) as pool:
            results = list(pool.map(self._download, urls))
        return [image for image in results if image is not None]

    def _download(self, url: str, restrict_to_origin: bool = True) -> Optional[Image.Image]:
        if restrict_to_origin and not url.startswith(self.origin_base_url + "/"):
            logger.warning("Skipping image outside the origin: %s", url)
            return None
        try:
            response = self.session.get(url, timeout=self.timeout)
            if not response.ok:
                logger.warning("Error fetching image %s: %s", url, response.status_code)
                return None
            image = Image.open(BytesIO(response.content))
            image.load()
            return image
        except (requests.RequestException, UnidentifiedImageError, OSError) as exc:
            logger.error("Error processing image %s: %s", url, exc)
            return None

    def _save(self, image: Image.Image, path: Path, rendered_for: Optional[float]) -> None:
        """Write the JPEG atomically, stamping its mtime with the snapshot's lastUpdate."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "wb") as fh:
                image.save(fh, "JPEG", quality=JPEG_QUALITY)
            if rendered_for is not None:
                stamp = _millis(rendered_for) * 1_000_000
                os.utime(tmp_name, ns=(stamp, stamp))
            os.replace(tmp_name, path)
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
        logger.info("Share image generated and saved to: %s", path)
