"""
TTL cache tests with a controllable clock.
"""

import pytest

from staking_indexer.app.infrastructure.fetchers.ttl_cache import TTLCache


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestExpiry:
    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=10, max_size=4, clock=clock)
        cache.set("a", 1)

        clock.now = 9.9
        assert cache.get("a") == 1
        clock.now = 10.0
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_overwrite_refreshes_expiry(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=10, max_size=4, clock=clock)
        cache.set("a", 1)
        clock.now = 8
        cache.set("a", 2)
        clock.now = 15
        assert cache.get("a") == 2

    def test_purge_expired(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=5, max_size=10, clock=clock)
        cache.set("old", 1)
        clock.now = 3
        cache.set("new", 2)
        clock.now = 6

        assert cache.purge_expired() == 1
        assert "old" not in cache
        assert "new" in cache

    def test_zero_ttl_never_serves(self):
        cache = TTLCache(ttl_seconds=0, max_size=1, clock=FakeClock())
        cache.set("a", 1)
        assert cache.get("a") is None


class TestEviction:
    def test_least_recently_used_is_evicted(self):
        cache = TTLCache(ttl_seconds=60, max_size=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_clear(self):
        cache = TTLCache(ttl_seconds=60, max_size=2, clock=FakeClock())
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0

    @pytest.mark.parametrize("ttl, size", [(-1, 1), (1, 0)])
    def test_invalid_bounds(self, ttl, size):
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=ttl, max_size=size)


class TestMembership:
    def test_membership_does_not_refresh_recency(self):
        cache = TTLCache(ttl_seconds=60, max_size=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)

        assert "a" in cache
        cache.set("c", 3)

        assert "a" not in cache
        assert cache.get("b") == 2

    def test_membership_does_not_remove_expired_entries(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=5, max_size=4, clock=clock)
        cache.set("a", 1)
        clock.now = 5

        assert "a" not in cache
        assert len(cache) == 1
        assert cache.purge_expired() == 1


class TestDiscardWhere:
    def test_discards_matching_keys_only(self):
        cache = TTLCache(ttl_seconds=60, max_size=10, clock=FakeClock())
        for block in (98, 99, 100, 101):
            cache.set(("usersData", 1, block), block)
        cache.set(("usersData", 2, 101), 0)

        dropped = cache.discard_where(lambda k: k[1] == 1 and k[2] > 99)

        assert dropped == 2
        assert [b for b in (98, 99, 100, 101) if ("usersData", 1, b) in cache] == [98, 99]
        assert ("usersData", 2, 101) in cache
