"""Decide per read whether to serve the cache, refresh it, or fetch first.

States seen by a read:

- cold: no snapshot anywhere. The read fetches synchronously; concurrent
  cold reads wait on the same fetch instead of scraping again. A cold fetch
  takes the same refresh slot as background and admin refreshes, and waits
  for one already running rather than starting a second scrape.
- warm: snapshot younger than the TTL. Served as is.
- stale: snapshot older than the TTL (or no TTL configured). Served as is
  and a background refresh is scheduled.

At most one refresh (background or admin) runs at a time. The refresh state
moves IDLE -> RUNNING -> SWAPPING -> IDLE under a lock, so two readers that
find the cache stale at the same moment start a single scrape.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import config as cfg
from cache_store import CacheMiss, CacheSnapshot, CacheStore
from project_normalizer import ProjectRecord

logger = logging.getLogger(__name__)

Scrape = Callable[[], List[ProjectRecord]]
Spawn = Callable[[Callable[[], None]], None]


class RefreshState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SWAPPING = "swapping"


class RefreshInProgress(Exception):
    """A refresh was requested while another one is still running."""


def _spawn_daemon(target: Callable[[], None]) -> None:
    threading.Thread(target=target, name="cache-refresh", daemon=True).start()


class StalenessController:
    def __init__(
        self,
        store: CacheStore,
        scrape: Scrape,
        *,
        ttl: Optional[float] = cfg.CACHE_TTL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
        spawn: Optional[Spawn] = None,
    ):
        self.store = store
        self.scrape = scrape
        self.ttl = ttl
        self.clock = clock or store.clock
        self.spawn = spawn or _spawn_daemon
        self._state = RefreshState.IDLE
        self._state_lock = threading.Lock()
        self._idle = threading.Condition(self._state_lock)
        self._cold_lock = threading.Lock()
        self._listeners: List[Callable[[], Any]] = []

    @property
    def state(self) -> RefreshState:
        with self._state_lock:
            return self._state

    @property
    def is_refreshing(self) -> bool:
        return self.state is not RefreshState.IDLE

    def add_invalidation_listener(self, listener: Callable[[], Any]) -> None:
        """Run ``listener`` after every successful snapshot replacement."""
        self._listeners.append(listener)

    def is_stale(self) -> bool:
        last_update = self.store.last_update()
        if last_update is None or self.ttl is None:
            return True
        return self.clock() - last_update > self.ttl

    # --------- read paths ---------
    def get_snapshot(self) -> CacheSnapshot:
        try:
            snapshot = self.store.require_snapshot()
        except CacheMiss:
            return self._cold_fetch()
        self.trigger_background_refresh()
        return snapshot

    def get_projects(self) -> List[ProjectRecord]:
        return self.get_snapshot().projects

    def get_sorted_projects(self) -> List[ProjectRecord]:
        projects = self.store.read_sorted()
        if projects is None:
            self._cold_fetch()
            return self.store.read_sorted() or []
        self.trigger_background_refresh()
        return projects

    def get_project(self, project_id: str) -> Optional[ProjectRecord]:
        project = self.store.read_by_id(project_id)
        if project is not None or self.store.read_snapshot() is not None:
            self.trigger_background_refresh()
            return project

        snapshot = self._cold_fetch()
        for candidate in snapshot.projects:
            if candidate.get("id") == project_id:
                return candidate
        return None

    # --------- refresh ---------
    def trigger_background_refresh(self, *, force: bool = False) -> bool:
        """Schedule a refresh if the cache is stale and none is running."""
        if not force and not self.is_stale():
            return False
        if not self._begin():
            return False

        logger.info("Cache is stale, updating in background...")
        try:
            self.spawn(self._background_refresh)
        except Exception:
            self._finish()
            raise
        return True

    def refresh_now(self) -> CacheSnapshot:
        """Synchronous refresh for the admin endpoint."""
        if not self._begin():
            raise RefreshInProgress("Cache update already in progress")
        try:
            logger.info("Manual cache refresh requested")
            snapshot = self._replace_snapshot()
            logger.info("Manual cache refresh completed successfully")
            return snapshot
        finally:
            self._finish()

    def _background_refresh(self) -> None:
        try:
            self._replace_snapshot()
            logger.info("Cache updated successfully")
        except Exception:
            logger.exception("Error updating cache; keeping previous snapshot")
        finally:
            self._finish()

    def _cold_fetch(self) -> CacheSnapshot:
        with self._cold_lock:
            while True:
                snapshot = self.store.read_snapshot()
                if snapshot is not None:
                    return snapshot
                if self._begin():
                    break
                # Another refresh is scraping; its snapshot serves this read too.
                self._wait_until_idle()

            try:
                logger.info("No cache available, fetching fresh data")
                return self._replace_snapshot()
            finally:
                self._finish()

    def _replace_snapshot(self) -> CacheSnapshot:
        projects = self.scrape()
        with self._state_lock:
            self._state = RefreshState.SWAPPING
        snapshot = self.store.write_snapshot(projects)
        self._notify()
        return snapshot

    def _begin(self) -> bool:
        with self._state_lock:
            if self._state is not RefreshState.IDLE:
                return False
            self._state = RefreshState.RUNNING
            return True

    def _finish(self) -> None:
        with self._idle:
            self._state = RefreshState.IDLE
            self._idle.notify_all()

    def _wait_until_idle(self) -> None:
        with self._idle:
            self._idle.wait_for(lambda: self._state is RefreshState.IDLE)

    def _notify(self) -> None:
        for listener in self._listeners:
            try:
                listener()
            except Exception:
                logger.exception("Cache invalidation listener failed")

    # --------- status ---------
    def status(self) -> Dict[str, Any]:
        last_update = self.store.last_update()
        age = self.clock() - last_update if last_update is not None else None
        snapshot = self.store.read_snapshot()
        return {
            "hasCachedData": snapshot is not None,
            "projectCount": len(snapshot.projects) if snapshot is not None else 0,
            "lastUpdate": (
                datetime.fromtimestamp(last_update, timezone.utc).isoformat().replace("+00:00", "Z")
                if last_update is not None
                else None
            ),
            "cacheAgeMs": int(age * 1000) if age is not None else None,
            "cacheAgeMinutes": round(age / 60) if age is not None else None,
            "isStale": self.is_stale(),
            "isUpdating": self.is_refreshing,
            "ttlMs": int(self.ttl * 1000) if self.ttl is not None else None,
            "ttlMinutes": self.ttl / 60 if self.ttl is not None else None,
        }
