#!/usr/bin/env python3
"""Build canonical project records from a folder name, its manifest and media."""
from __future__ import annotations

import posixpath
from datetime import datetime
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

ProjectRecord = Dict[str, Any]
MediaItem = Dict[str, Any]

IMAGE_EXTS = (".jpg", ".jpeg", ".png", ".gif")
VIDEO_EXTS = (".mp4", ".mov", ".avi", ".webm")
NOTES_EXTS = (".md",)

# Fields missing from a date string are filled from here ("2023" -> 2023-01-01).
_DATE_DEFAULT = datetime(2000, 1, 1)


def classify_media(filename: str) -> Optional[str]:
    """Return image/video/notes from the extension, or None for anything else."""
    ext = posixpath.splitext(filename)[1].lower()
    if ext in IMAGE_EXTS:
        return "image"
    if ext in VIDEO_EXTS:
        return "video"
    if ext in NOTES_EXTS:
        return "notes"
    return None


def parse_manifest_date(value: Any) -> Optional[datetime]:
    """Parse a free-form date string; None when it has no year or does not parse."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = date_parser.parse(value, default=_DATE_DEFAULT)
        # A year taken from the default means the string has none ("May", "Monday").
        shifted = date_parser.parse(value, default=_DATE_DEFAULT.replace(year=_DATE_DEFAULT.year + 1))
    except (ValueError, OverflowError, TypeError):
        return None
    if parsed.year != shifted.year:
        return None
    return parsed.replace(tzinfo=None)


def format_manifest_date(value: Any) -> Any:
    """
    Reformat a manifest date to YYYY-MM-DD when it parses, otherwise return
    it unchanged. Never raises.
    """
    if value is None:
        return None
    parsed = parse_manifest_date(value)
    if parsed is None:
        return value
    return parsed.strftime("%Y-%m-%d")


def sort_media(media: List[MediaItem]) -> List[MediaItem]:
    """Case-sensitive filename order, independent of type."""
    return sorted(media, key=lambda item: item.get("filename", ""))


def select_primary_image(media: List[MediaItem]) -> Optional[Dict[str, Any]]:
    images = [item for item in media if item.get("type") == "image"]
    if not images:
        return None
    first = min(images, key=lambda item: item.get("filename", ""))
    return {
        "url": first["url"],
        "filename": first["filename"],
        "dimensions": first.get("dimensions"),
    }


def normalize(
    folder_name: str,
    manifest: Dict[str, Any],
    media: List[MediaItem],
    primary_image: Optional[Dict[str, Any]] = None,
) -> ProjectRecord:
    """
    Merge a manifest into a project record.

    The id is always the folder name, even if the manifest carries its own
    ``id``. Manifest fields are passed through untouched except ``date``.
    ``primary_image`` overrides the image picked from ``media`` when the
    caller already resolved it.
    """
    ordered = sort_media(media)
    record: ProjectRecord = {"id": folder_name}
    for key, value in manifest.items():
        if key == "id":
            continue
        record[key] = value
    record["date"] = format_manifest_date(manifest.get("date"))
    record["media"] = ordered
    record["primaryImage"] = primary_image if primary_image is not None else select_primary_image(ordered)
    return record
