"""
Unit tests for the in-memory update cache.

Tests verify:
- TTL expiry boundary (expired at exactly expires_at)
- TTL override for rate-limit backoff
- Pending check bookkeeping and re-check interval
- Version patching leaves digests and timestamps alone
- Sweep of expired entries and stuck pending markers
"""

import asyncio

import pytest

from updates.cache import PENDING_CHECK_TIMEOUT, UpdateCache, get_update_cache
from updates.types import CachedUpdate, ImageUpdateInfo, UpdateStatus, VersionStatus


def make_update(image="nginx:latest", **kwargs):
    defaults = dict(
        image=image,
        update_available=True,
        status=UpdateStatus.CHECKED,
        current_digest="sha256:old",
        latest_digest="sha256:new",
        version_status=VersionStatus.PENDING,
    )
    defaults.update(kwargs)
    return CachedUpdate(**defaults)


class TestExpiry:

    def test_entry_stamped_on_write(self, update_cache, clock):
        update_cache.set_cached_update("nginx:latest", make_update())

        entry = update_cache.get_cached_update("nginx:latest")
        assert entry.checked_at == clock.now
        assert entry.expires_at == clock.now + 3600

    def test_expires_exactly_at_ttl(self, update_cache, clock):
        update_cache.set_cached_update("nginx:latest", make_update())

        clock.advance(3599)
        assert update_cache.get_cached_update("nginx:latest") is not None

        clock.advance(1)
        assert update_cache.get_cached_update("nginx:latest") is None
        assert update_cache.get_cache_stats()["size"] == 0

    def test_ttl_override(self, update_cache, clock):
        update_cache.set_cached_update("nginx:latest", make_update(), ttl=1800)

        clock.advance(1800)
        assert update_cache.get_cached_update("nginx:latest") is None

    def test_all_cached_updates_skips_expired(self, update_cache, clock):
        update_cache.set_cached_update("a:1", make_update("a:1"), ttl=10)
        update_cache.set_cached_update("b:1", make_update("b:1"))
        clock.advance(10)

        assert [e.image for e in update_cache.get_all_cached_updates()] == ["b:1"]


class TestShouldCheckImage:

    def test_missing_entry_needs_check(self, update_cache):
        assert update_cache.should_check_image("nginx:latest")

    def test_fresh_entry_does_not(self, update_cache, clock):
        update_cache.set_cached_update("nginx:latest", make_update())
        clock.advance(299)
        assert not update_cache.should_check_image("nginx:latest")

    def test_entry_past_recheck_interval_does(self, update_cache, clock):
        update_cache.set_cached_update("nginx:latest", make_update())
        clock.advance(300)
        assert update_cache.should_check_image("nginx:latest")
        # Still served while the refresh runs
        assert update_cache.get_cached_update("nginx:latest") is not None

    def test_pending_check_blocks(self, update_cache):
        update_cache.mark_check_pending("nginx:latest")
        assert update_cache.is_check_pending("nginx:latest")
        assert not update_cache.should_check_image("nginx:latest")

        update_cache.mark_check_complete("nginx:latest")
        assert update_cache.should_check_image("nginx:latest")

    def test_mark_complete_is_idempotent(self, update_cache):
        update_cache.mark_check_complete("never-started")
        assert not update_cache.is_check_pending("never-started")


class TestVersionUpdates:

    def test_patches_versions_only(self, update_cache, clock):
        update_cache.set_cached_update("nginx:latest", make_update())
        before = update_cache.get_cached_update("nginx:latest")
        checked_at, expires_at = before.checked_at, before.expires_at

        clock.advance(60)
        update_cache.update_cached_versions("nginx:latest", "1.25.0", "1.26.0")

        entry = update_cache.get_cached_update("nginx:latest")
        assert entry.current_version == "1.25.0"
        assert entry.latest_version == "1.26.0"
        assert entry.version_status == VersionStatus.RESOLVED
        assert entry.current_digest == "sha256:old"
        assert (entry.checked_at, entry.expires_at) == (checked_at, expires_at)

    def test_missing_key_is_noop(self, update_cache):
        update_cache.update_cached_versions("gone:latest", "1", "2")
        assert update_cache.get_cached_update("gone:latest") is None
        assert update_cache.get_cache_stats()["size"] == 0

    def test_mark_failed(self, update_cache):
        update_cache.set_cached_update("nginx:latest", make_update())
        update_cache.mark_version_resolution_failed("nginx:latest")
        update_cache.mark_version_resolution_failed("gone:latest")

        assert update_cache.get_cached_update("nginx:latest").version_status == VersionStatus.FAILED


class TestClear:

    def test_clear_selected(self, update_cache):
        for image in ("a:1", "b:1", "c:1"):
            update_cache.set_cached_update(image, make_update(image))

        update_cache.clear_cached_updates(["a:1", "missing:1"])

        assert update_cache.get_cached_update("a:1") is None
        assert update_cache.get_cached_update("b:1") is not None

    def test_clear_all(self, update_cache):
        update_cache.set_cached_update("a:1", make_update("a:1"))
        update_cache.clear_cached_updates()
        assert update_cache.get_cache_stats() == {"size": 0, "pending_checks": 0}


class TestSweep:

    def test_evicts_expired_and_stuck_pending(self, update_cache, clock):
        update_cache.set_cached_update("old:1", make_update("old:1"), ttl=30)
        update_cache.set_cached_update("new:1", make_update("new:1"))
        update_cache.mark_check_pending("stuck:1")
        clock.advance(PENDING_CHECK_TIMEOUT + 1)
        update_cache.mark_check_pending("recent:1")

        assert update_cache.sweep() == {"expired": 1, "stale_pending": 1}
        assert update_cache.is_check_pending("recent:1")
        assert not update_cache.is_check_pending("stuck:1")
        assert update_cache.get_cached_update("new:1") is not None

    @pytest.mark.asyncio
    async def test_start_and_stop(self, update_cache):
        update_cache.start()
        task = update_cache._sweep_task
        update_cache.start()
        assert update_cache._sweep_task is task

        await update_cache.stop()
        assert task.cancelled()
        assert update_cache._sweep_task is None


class TestSingletonAndModels:

    def test_singleton(self):
        assert get_update_cache() is get_update_cache()

    def test_info_from_cached(self, update_cache):
        update_cache.set_cached_update("nginx:latest", make_update(matched_tags=["1.26.0"]))

        info = ImageUpdateInfo.from_cached(update_cache.get_cached_update("nginx:latest"))

        assert info.from_cache is True
        assert info.status == "checked"
        assert info.version_status == "pending"
        assert info.matched_tags == ["1.26.0"]
        assert info.model_dump()["latest_digest"] == "sha256:new"
