"""
Test the capability cache and the invalidation coordinator.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from auth.cache_manager import CacheInvalidationCoordinator, CapabilityCache


class FakeClock:

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class TestCapabilityCache:

    def setup_method(self):
        self.clock = FakeClock()
        self.cache = CapabilityCache(ttl_seconds=300, clock=self.clock)

    def test_get_after_put(self):
        assert self.cache.put("u1", "caps")
        assert self.cache.get("u1") == "caps"
        assert self.cache.stats()["hits"] == 1

    def test_miss_is_counted(self):
        assert self.cache.get("u1") is None
        assert self.cache.stats()["misses"] == 1

    def test_entry_expires_after_ttl(self):
        self.cache.put("u1", "caps")
        self.clock.advance(299)
        assert self.cache.get("u1") == "caps"
        self.clock.advance(1)
        assert self.cache.get("u1") is None
        assert len(self.cache) == 0

    def test_zero_ttl_never_expires(self):
        cache = CapabilityCache(ttl_seconds=0, clock=self.clock)
        cache.put("u1", "caps")
        self.clock.advance(10 ** 6)
        assert cache.get("u1") == "caps"

    def test_invalidate_drops_one_key(self):
        self.cache.put("u1", "a")
        self.cache.put("u2", "b")
        self.cache.invalidate("u1")
        assert self.cache.get("u1") is None
        assert self.cache.get("u2") == "b"

    def test_fill_started_before_invalidation_is_discarded(self):
        generation = self.cache.generation("u1")
        self.cache.invalidate("u1")
        assert not self.cache.put("u1", "stale", generation)
        assert self.cache.get("u1") is None

    def test_fill_started_before_invalidate_all_is_discarded(self):
        generation = self.cache.generation("u1")
        self.cache.invalidate_all()
        assert not self.cache.put("u1", "stale", generation)

    def test_fill_with_current_generation_is_stored(self):
        self.cache.invalidate("u1")
        generation = self.cache.generation("u1")
        assert self.cache.put("u1", "fresh", generation)
        assert self.cache.get("u1") == "fresh"

    def test_other_keys_do_not_affect_generation(self):
        generation = self.cache.generation("u1")
        self.cache.invalidate("u2")
        assert self.cache.put("u1", "fresh", generation)

    def test_cleanup_expired(self):
        self.cache.put("u1", "a")
        self.clock.advance(200)
        self.cache.put("u2", "b")
        self.clock.advance(150)
        assert self.cache.cleanup_expired() == 1
        assert len(self.cache) == 1


class TestInvalidationCoordinator:

    def setup_method(self):
        self.resolver = Mock()
        self.gate = Mock()
        self.coordinator = CacheInvalidationCoordinator(self.resolver, self.gate)

    def test_user_roles_changed_invalidates_one_user(self):
        self.coordinator.user_roles_changed("u1")
        self.resolver.invalidate.assert_called_once_with("u1")
        self.resolver.invalidate_all.assert_not_called()

    def test_role_capabilities_changed_invalidates_everyone(self):
        self.coordinator.role_capabilities_changed("r1")
        self.resolver.invalidate_all.assert_called_once_with()

    def test_workflow_changed_clears_gate(self):
        self.coordinator.workflow_changed()
        self.gate.clear_workflow_cache.assert_called_once_with()

    def test_clear_all(self):
        self.coordinator.clear_all()
        self.resolver.invalidate_all.assert_called_once_with()
        self.gate.clear_workflow_cache.assert_called_once_with()

    def test_workflow_changed_without_gate(self):
        CacheInvalidationCoordinator(self.resolver).workflow_changed()
