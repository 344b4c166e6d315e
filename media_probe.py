"""Dimension probes for remote media items.

Images are measured from their header with Pillow (``Image.open`` is lazy
and does not decode pixel data). Videos are measured by running ``ffprobe``
against the remote URL with a hard timeout. A failure of either probe is
never fatal: callers get ``None`` and the item keeps null dimensions.
"""
from __future__ import annotations

import json
import logging
import subprocess
from io import BytesIO
from typing import Any, Dict, Optional, Tuple

import requests
from PIL import Image, UnidentifiedImageError

import config as cfg

logger = logging.getLogger(__name__)

Dimensions = Dict[str, int]


class ItemProbeFailure(Exception):
    """A single media item could not be measured or read."""


def image_dimensions_from_bytes(data: bytes) -> Dimensions:
    try:
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ItemProbeFailure(f"Unreadable image header: {exc}") from exc
    return {"width": int(width), "height": int(height)}


def fetch_bytes(session: requests.Session, url: str, *, timeout: float) -> bytes:
    try:
        response = session.get(url, timeout=timeout)
    except requests.RequestException as exc:
        raise ItemProbeFailure(f"Request failed: {exc}") from exc
    if not response.ok:
        raise ItemProbeFailure(f"Failed to fetch {url}: {response.status_code}")
    return response.content


def get_image_dimensions(
    session: requests.Session,
    url: str,
    *,
    timeout: float = cfg.HTTP_TIMEOUT,
) -> Optional[Dimensions]:
    try:
        return image_dimensions_from_bytes(fetch_bytes(session, url, timeout=timeout))
    except ItemProbeFailure as exc:
        logger.warning("Could not get dimensions for %s: %s", url, exc)
        return None


def run_ffprobe(
    source: str,
    *,
    ffprobe_bin: str = cfg.FFPROBE_BIN,
    timeout: float = cfg.VIDEO_PROBE_TIMEOUT,
) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """Return (json, error_str). Never raises for per-item failures."""
    cmd = [ffprobe_bin, "-v", "quiet", "-print_format", "json", "-show_streams", source]
    try:
        proc = subprocess.run(cmd, check=False, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        return None, f"ffprobe timed out after {timeout:g}s"
    except FileNotFoundError:
        return None, f"ffprobe not found: {ffprobe_bin}"
    except OSError as e:
        return None, f"ffprobe exec error: {e}"

    if proc.returncode != 0:
        stderr = (proc.stderr or "").strip()
        return None, stderr or f"ffprobe exited {proc.returncode}"

    try:
        return json.loads(proc.stdout), None
    except json.JSONDecodeError as e:
        return None, f"ffprobe output was not valid JSON: {e}"


def first_video_stream_dimensions(info: Any) -> Dimensions:
    streams = info.get("streams") if isinstance(info, dict) else None
    if not isinstance(streams, list):
        raise ItemProbeFailure("Invalid ffprobe response: no stream list")

    for stream in streams:
        if isinstance(stream, dict) and stream.get("codec_type") == "video":
            width = stream.get("width")
            height = stream.get("height")
            if isinstance(width, int) and isinstance(height, int) and width and height:
                return {"width": width, "height": height}
            break

    raise ItemProbeFailure("No video stream found or dimensions not available")


def get_video_dimensions(
    url: str,
    *,
    ffprobe_bin: str = cfg.FFPROBE_BIN,
    timeout: float = cfg.VIDEO_PROBE_TIMEOUT,
) -> Optional[Dimensions]:
    info, error = run_ffprobe(url, ffprobe_bin=ffprobe_bin, timeout=timeout)
    if error is not None:
        logger.warning("Could not get video dimensions for %s: %s", url, error)
        return None
    try:
        return first_video_stream_dimensions(info)
    except ItemProbeFailure as exc:
        logger.warning("Could not get video dimensions for %s: %s", url, exc)
        return None
