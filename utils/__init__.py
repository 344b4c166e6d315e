"""Reexporta helpers comunes del servicio."""

from utils.cache_paths import (
    PathValidationError,
    normalize_project_id,
    resolve_cache_dir,
    share_image_file_name,
)
from utils.log_setup import setup_logging

__all__ = [
    "PathValidationError",
    "normalize_project_id",
    "resolve_cache_dir",
    "setup_logging",
    "share_image_file_name",
]
