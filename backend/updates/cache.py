"""
Update Cache

In-memory TTL cache of image update checks plus a registry of checks in
flight, so concurrent requests for the same image don't hit the registry
twice.

All mutation happens on the event loop thread, so no locking is needed.
A periodic sweep evicts expired entries and clears pending markers left
behind by checks that hung or crashed.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from config.settings import AppConfig
from updates.types import CachedUpdate, VersionStatus

logger = logging.getLogger(__name__)

SWEEP_INTERVAL = 60  # seconds
PENDING_CHECK_TIMEOUT = 5 * 60  # seconds


class UpdateCache:
    """
    TTL cache of CachedUpdate entries keyed by normalized image name.

    Args:
        ttl: Default entry lifetime in seconds
        recheck_interval: Age after which an entry is served but refreshed
        clock: Time source returning epoch seconds (injectable for tests)
    """

    def __init__(
        self,
        ttl: float = AppConfig.UPDATE_CACHE_TTL,
        recheck_interval: float = AppConfig.UPDATE_RECHECK_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self.recheck_interval = recheck_interval
        self._clock = clock
        self._entries: Dict[str, CachedUpdate] = {}
        self._pending: Dict[str, float] = {}  # image -> check start time
        self._sweep_task: Optional[asyncio.Task] = None

    # ==================== Entries ====================

    def get_cached_update(self, image: str) -> Optional[CachedUpdate]:
        """Return the entry for an image, or None if missing or expired."""
        entry = self._entries.get(image)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[image]
            return None
        return entry

    def set_cached_update(self, image: str, update: CachedUpdate, ttl: Optional[float] = None):
        """
        Store a check result, stamping checked_at / expires_at.

        Args:
            image: Normalized image name
            update: Result to store
            ttl: Lifetime override in seconds (e.g., a longer rate-limit backoff)
        """
        self._entries[image] = update.stamped(self._clock(), ttl if ttl is not None else self.ttl)

    def update_cached_versions(
        self,
        image: str,
        current_version: Optional[str],
        latest_version: Optional[str],
    ):
        """
        Patch the version fields of an existing entry after async resolution.

        Digest fields and timestamps are left untouched. No-op if the entry
        is gone (expired or cleared while resolution was running).
        """
        entry = self._entries.get(image)
        if entry is None:
            return
        entry.current_version = current_version
        entry.latest_version = latest_version
        entry.version_status = VersionStatus.RESOLVED

    def mark_version_resolution_failed(self, image: str):
        entry = self._entries.get(image)
        if entry is not None:
            entry.version_status = VersionStatus.FAILED

    def clear_cached_updates(self, images: Optional[Iterable[str]] = None):
        """Drop entries for the given images, or everything when images is None."""
        if images is None:
            self._entries.clear()
            return
        for image in images:
            self._entries.pop(image, None)

    def get_all_cached_updates(self) -> List[CachedUpdate]:
        now = self._clock()
        return [entry for entry in self._entries.values() if now < entry.expires_at]

    def get_cache_stats(self) -> Dict[str, int]:
        return {
            "size": len(self._entries),
            "pending_checks": len(self._pending),
        }

    # ==================== Pending checks ====================

    def should_check_image(self, image: str) -> bool:
        """
        Decide whether a registry check should run for an image.

        False while a check is in flight. Otherwise True when there is no
        entry, or the entry is older than the re-check interval even though
        it may not have expired yet (served stale, refreshed in background).
        """
        if image in self._pending:
            return False

        entry = self._entries.get(image)
        if entry is None:
            return True
        return self._clock() - entry.checked_at >= self.recheck_interval

    def mark_check_pending(self, image: str):
        self._pending[image] = self._clock()

    def mark_check_complete(self, image: str):
        self._pending.pop(image, None)

    def is_check_pending(self, image: str) -> bool:
        return image in self._pending

    # ==================== Maintenance ====================

    def sweep(self) -> Dict[str, int]:
        """
        Evict expired entries and clear stuck pending markers.

        Returns:
            Dict with keys: expired, stale_pending
        """
        now = self._clock()

        expired = [image for image, entry in self._entries.items() if now >= entry.expires_at]
        for image in expired:
            del self._entries[image]

        stale = [image for image, started in self._pending.items() if now - started > PENDING_CHECK_TIMEOUT]
        for image in stale:
            logger.warning(f"Clearing stuck update check for {image} (pending > {PENDING_CHECK_TIMEOUT}s)")
            del self._pending[image]

        if expired:
            logger.debug(f"Evicted {len(expired)} expired update cache entries")
        return {"expired": len(expired), "stale_pending": len(stale)}

    def start(self):
        """Start the periodic sweep on the running event loop. Idempotent."""
        if self._sweep_task and not self._sweep_task.done():
            return

        async def sweep_loop():
            while True:
                await asyncio.sleep(SWEEP_INTERVAL)
                try:
                    self.sweep()
                except Exception as e:
                    logger.error(f"Error sweeping update cache: {e}", exc_info=True)

        self._sweep_task = asyncio.create_task(sweep_loop())
        logger.info("Update cache sweep started")

    async def stop(self):
        """Stop the periodic sweep"""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None


# Global singleton instance
_update_cache: Optional[UpdateCache] = None


def get_update_cache() -> UpdateCache:
    """Get or create the process-wide update cache."""
    global _update_cache
    if _update_cache is None:
        _update_cache = UpdateCache()
    return _update_cache
