"""Persisted project snapshot: metadata file, sorted list, and per-id files.

Layout under the cache directory:

    projects-cache.json    {"projects": [...], "lastUpdate": <ms>, "timestamp": <iso>}
    projects-sorted.json   [...] newest first, no wrapper
    projects/<id>.json     one record per file

``write_snapshot`` stages all three encodings and swaps them in only after
every file was written; the metadata file is renamed last. Per-id files of
projects that disappeared from the origin are deleted afterwards.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from project_filters import sort_by_date
from project_normalizer import ProjectRecord
from utils.cache_paths import (
    METADATA_FILE,
    PROJECTS_DIR,
    SORTED_FILE,
    PathValidationError,
    project_file_name,
    project_id_from_file_name,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CacheMiss(Exception):
    """No snapshot is available in memory or on disk."""


@dataclass(frozen=True)
class CacheSnapshot:
    projects: List[ProjectRecord]
    last_update: float  # epoch seconds


def _iso_utc(epoch_seconds: float) -> str:
    dt = datetime.fromtimestamp(epoch_seconds, timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class FileStorage:
    """JSON documents under a root directory, addressed by posix names."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, name: str) -> Path:
        return self.root / Path(name)

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def read_json(self, name: str) -> Any:
        path = self._path(name)
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Error reading %s: %s", path, exc)
            return None

    def write_many(self, payloads: Dict[str, Any]) -> None:
        """Write every payload to a temp file, then rename them in order."""
        staged: list[tuple[str, Path]] = []
        try:
            for name, payload in payloads.items():
                path = self._path(name)
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent))
                staged.append((tmp_name, path))
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh, indent=2, ensure_ascii=False)
                    fh.write("\n")
            for tmp_name, path in staged:
                os.replace(tmp_name, path)
        finally:
            for tmp_name, _ in staged:
                if os.path.exists(tmp_name):
                    os.remove(tmp_name)

    def delete(self, name: str) -> None:
        try:
            self._path(name).unlink()
        except FileNotFoundError:
            pass

    def list_names(self, prefix: str) -> List[str]:
        folder = self._path(prefix)
        if not folder.is_dir():
            return []
        return sorted(
            f"{prefix}/{entry.name}"
            for entry in folder.iterdir()
            if entry.is_file() and not entry.name.endswith(".tmp")
        )


class MemoryStorage:
    """Dict-backed storage with the same interface as ``FileStorage``."""

    def __init__(self):
        self.documents: Dict[str, str] = {}
        self._lock = threading.Lock()

    def exists(self, name: str) -> bool:
        return name in self.documents

    def read_json(self, name: str) -> Any:
        raw = self.documents.get(name)
        return None if raw is None else json.loads(raw)

    def write_many(self, payloads: Dict[str, Any]) -> None:
        encoded = {name: json.dumps(payload) for name, payload in payloads.items()}
        with self._lock:
            self.documents.update(encoded)

    def delete(self, name: str) -> None:
        with self._lock:
            self.documents.pop(name, None)

    def list_names(self, prefix: str) -> List[str]:
        return sorted(name for name in self.documents if name.startswith(prefix + "/"))


class CacheStore:
    """Owns the in-memory snapshot and its three persisted encodings."""

    def __init__(self, storage, *, clock: Clock = time.time):
        self.storage = storage
        self.clock = clock
        self._snapshot: Optional[CacheSnapshot] = None
        self._last_update: Optional[float] = None
        self._lock = threading.Lock()

    def load_metadata(self) -> Optional[float]:
        """Read only ``lastUpdate`` from disk, as done once at startup."""
        data = self.storage.read_json(METADATA_FILE)
        if isinstance(data, dict) and isinstance(data.get("lastUpdate"), (int, float)):
            with self._lock:
                self._last_update = data["lastUpdate"] / 1000.0
            logger.info("Cache metadata loaded. Last update: %s", _iso_utc(self._last_update))
        return self._last_update

    def last_update(self) -> Optional[float]:
        with self._lock:
            if self._snapshot is not None:
                return self._snapshot.last_update
            return self._last_update

    def read_snapshot(self) -> Optional[CacheSnapshot]:
        with self._lock:
            if self._snapshot is not None:
                return self._snapshot

        data = self.storage.read_json(METADATA_FILE)
        if not isinstance(data, dict) or not isinstance(data.get("projects"), list):
            return None

        last_update = data.get("lastUpdate")
        last_update = last_update / 1000.0 if isinstance(last_update, (int, float)) else 0.0
        snapshot = CacheSnapshot(projects=data["projects"], last_update=last_update)
        with self._lock:
            if self._snapshot is None:
                self._snapshot = snapshot
                self._last_update = last_update
                logger.info("Loaded %d projects into memory cache", len(snapshot.projects))
            return self._snapshot

    def require_snapshot(self) -> CacheSnapshot:
        snapshot = self.read_snapshot()
        if snapshot is None:
            raise CacheMiss("No projects snapshot available")
        return snapshot

    def read_sorted(self) -> Optional[List[ProjectRecord]]:
        data = self.storage.read_json(SORTED_FILE)
        if isinstance(data, list):
            return data
        snapshot = self.read_snapshot()
        return sort_by_date(snapshot.projects) if snapshot is not None else None

    def read_by_id(self, project_id: str) -> Optional[ProjectRecord]:
        try:
            name = project_file_name(project_id)
        except PathValidationError:
            return None

        data = self.storage.read_json(name)
        if isinstance(data, dict):
            return data

        snapshot = self.read_snapshot()
        if snapshot is None:
            return None
        for project in snapshot.projects:
            if project.get("id") == project_id:
                return project
        return None

    def write_snapshot(self, projects: List[ProjectRecord]) -> CacheSnapshot:
        # Whole milliseconds, so memory and a reloaded metadata file agree.
        now_ms = int(self.clock() * 1000)
        now = now_ms / 1000.0
        payloads: Dict[str, Any] = {}
        for project in projects:
            try:
                payloads[project_file_name(project["id"])] = project
            except PathValidationError as exc:
                logger.warning("Not writing per-id file for %r: %s", project.get("id"), exc)
        payloads[SORTED_FILE] = sort_by_date(projects)
        payloads[METADATA_FILE] = {
            "projects": projects,
            "lastUpdate": now_ms,
            "timestamp": _iso_utc(now),
        }

        self.storage.write_many(payloads)

        snapshot = CacheSnapshot(projects=list(projects), last_update=now)
        with self._lock:
            self._snapshot = snapshot
            self._last_update = now

        removed = self._prune_orphans({p["id"] for p in projects})
        logger.info(
            "Projects cache saved: %d projects (+ individual files, %d orphan(s) removed)",
            len(projects),
            removed,
        )
        return snapshot

    def _prune_orphans(self, live_ids: set[str]) -> int:
        removed = 0
        for name in self.storage.list_names(PROJECTS_DIR):
            project_id = project_id_from_file_name(name)
            if project_id is not None and project_id not in live_ids:
                self.storage.delete(name)
                removed += 1
        return removed
