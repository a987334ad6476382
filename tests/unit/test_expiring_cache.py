"""
Unit tests for ExpiringSet.
"""
import pytest

from fotorelay.core.expiring_cache import ExpiringSet


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.unit
class TestExpiringSet:
    """Test cases for ExpiringSet."""

    def setup_method(self):
        self.clock = FakeClock()
        self.cache = ExpiringSet(clock=self.clock)

    def test_contains_until_ttl_elapses(self):
        self.cache.add("/tmp/a.jpg", ttl=10)

        self.clock.now += 9.9
        assert self.cache.contains("/tmp/a.jpg")

        self.clock.now += 0.1
        assert not self.cache.contains("/tmp/a.jpg")

    def test_unknown_key(self):
        assert "/tmp/missing.jpg" not in self.cache

    def test_add_refreshes_expiry(self):
        self.cache.add("k", ttl=10)
        self.clock.now += 8
        self.cache.add("k", ttl=10)
        self.clock.now += 8
        assert "k" in self.cache

    def test_len_ignores_expired(self):
        self.cache.add("a", ttl=5)
        self.cache.add("b", ttl=20)
        self.clock.now += 6
        assert len(self.cache) == 1

    def test_discard_and_clear(self):
        self.cache.add("a", ttl=5)
        self.cache.add("b", ttl=5)
        self.cache.discard("a")
        assert "a" not in self.cache
        self.cache.clear()
        assert len(self.cache) == 0

    def test_purge_returns_removed_count(self):
        self.cache.add("a", ttl=1)
        self.cache.add("b", ttl=1)
        self.cache.add("c", ttl=100)
        self.clock.now += 2
        assert self.cache.purge() == 2

    def test_expired_members_dropped_on_add(self):
        for i in range(10000):
            self.cache.add(f"/photos/{i}.jpg", ttl=10)
            self.clock.now += 1

        assert len(self.cache._expires_at) <= 11
        assert "/photos/9999.jpg" in self.cache
        assert "/photos/0.jpg" not in self.cache
