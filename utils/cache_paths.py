"""Shared path helpers for the on-disk cache layout."""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import quote

CACHE_DIR_ENV = "PORTFOLIO_CACHE_DIR"

METADATA_FILE = "projects-cache.json"
SORTED_FILE = "projects-sorted.json"
PROJECTS_DIR = "projects"
SHARE_IMAGES_DIR = "share-images"


class PathValidationError(ValueError):
    """Raised when a project id or cache name is invalid or unsafe."""


def resolve_cache_dir(cli_cache_dir: str | None = None) -> Path:
    """Resolve the cache directory with priority: CLI -> env -> config.py."""
    if cli_cache_dir:
        return Path(cli_cache_dir).expanduser()

    env_value = os.getenv(CACHE_DIR_ENV)
    if env_value:
        return Path(env_value).expanduser()

    from config import CACHE_DIR  # local import to keep tests isolated

    return Path(CACHE_DIR).expanduser()


def normalize_project_id(project_id: str) -> str:
    """Validate a project id for use as a file name; ids are kept verbatim."""
    value = project_id or ""
    if not value.strip():
        raise PathValidationError("Project id is empty")
    if value in (".", ".."):
        raise PathValidationError("Project id is invalid")
    if "/" in value or "\\" in value or "\x00" in value:
        raise PathValidationError("Project id must not contain path separators")
    return value


def project_file_name(project_id: str) -> str:
    """Storage name of the per-id file for a project."""
    return f"{PROJECTS_DIR}/{normalize_project_id(project_id)}.json"


def project_id_from_file_name(name: str) -> str | None:
    prefix = PROJECTS_DIR + "/"
    if not name.startswith(prefix) or not name.endswith(".json"):
        return None
    return name[len(prefix) : -len(".json")] or None


def share_images_root(cache_dir: Path) -> Path:
    return cache_dir / SHARE_IMAGES_DIR


def share_image_file_name(scope: str, identifier: str | None = None) -> str:
    """File name of a cached share image keyed by scope and identifier."""
    if scope in ("homepage", "space"):
        return f"{scope}.jpg"
    if scope in ("tag", "person", "project"):
        if not identifier:
            raise PathValidationError(f"Scope '{scope}' requires an identifier")
        return f"{scope}-{quote(identifier, safe='')}.jpg"
    raise PathValidationError(f"Unknown share image scope: {scope}")
