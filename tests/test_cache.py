"""
Tests for the outcome-aware local cache.
"""

from datetime import timedelta

import pytest

from edgecache.services.cache import OutcomeAwareCache, TTLPolicy

POLICY = TTLPolicy(success_ttl=timedelta(hours=1), failure_ttl=timedelta(seconds=30))


class TestTTLPolicy:
    def test_success_statuses_get_long_ttl(self):
        assert POLICY.ttl_for(200) == timedelta(hours=1)
        assert POLICY.ttl_for(204) == timedelta(hours=1)

    def test_failure_statuses_get_short_ttl(self):
        for status in (304, 404, 429, 500, 503):
            assert POLICY.ttl_for(status) == timedelta(seconds=30)


class TestOutcomeAwareCache:
    def test_success_entry_fresh_until_success_ttl(self, clock):
        cache = OutcomeAwareCache(policy=POLICY, clock=clock.now)
        cache.record("fp", b"<rss/>", 200)

        clock.advance(3599)
        assert cache.get("fp").payload == b"<rss/>"

        clock.advance(2)
        assert cache.get("fp") is None

    def test_negative_entry_expires_after_failure_ttl(self, clock):
        cache = OutcomeAwareCache(policy=POLICY, clock=clock.now)
        cache.record("fp", "Rate limited", 429)

        clock.advance(29)
        entry = cache.get("fp")
        assert entry is not None
        assert entry.status_code == 429

        clock.advance(2)
        assert cache.get("fp") is None

    def test_peek_returns_expired_entry(self, clock):
        cache = OutcomeAwareCache(policy=POLICY, clock=clock.now)
        cache.record("fp", "old", 200)
        clock.advance(7200)

        assert cache.get("fp") is None
        assert cache.peek("fp").payload == "old"

    def test_per_call_policy_overrides_default(self, clock):
        cache = OutcomeAwareCache(policy=POLICY, clock=clock.now)
        short = TTLPolicy(success_ttl=timedelta(seconds=5))
        cache.record("fp", "x", 200, policy=short)

        clock.advance(6)
        assert cache.get("fp") is None

    def test_fifo_eviction_keeps_newest_entries(self):
        cache = OutcomeAwareCache(max_size=5)
        keys = [f"k{i}" for i in range(8)]
        for key in keys:
            cache.record(key, key, 200)

        assert len(cache) == 5
        assert cache.keys() == keys[3:]
        for evicted in keys[:3]:
            assert evicted not in cache
        assert cache.get_stats().evictions == 3

    def test_fifo_evicts_by_insertion_not_by_use(self):
        cache = OutcomeAwareCache(max_size=2)
        cache.record("a", 1, 200)
        cache.record("b", 2, 200)
        cache.get("a")  # recently used, still the oldest inserted
        cache.record("c", 3, 200)

        assert "a" not in cache
        assert cache.keys() == ["b", "c"]

    def test_overwrite_existing_key_does_not_evict(self):
        cache = OutcomeAwareCache(max_size=2)
        cache.record("a", 1, 200)
        cache.record("b", 2, 200)
        cache.record("a", 10, 503)

        assert len(cache) == 2
        assert cache.peek("a").payload == 10
        assert cache.peek("a").status_code == 503
        assert cache.get_stats().evictions == 0

    def test_cleanup_expired_keeps_recently_expired(self, clock):
        cache = OutcomeAwareCache(policy=POLICY, clock=clock.now)
        cache.record("ok", "x", 200)
        cache.record("neg", "x", 500)

        clock.advance(45)  # neg expired, but younger than 2x its TTL
        assert cache.cleanup_expired() == 0

        clock.advance(30)  # neg now older than 60s
        assert cache.cleanup_expired() == 1
        assert "neg" not in cache
        assert "ok" in cache

    def test_stats_count_negative_hits(self):
        cache = OutcomeAwareCache()
        cache.record("ok", "x", 200)
        cache.record("neg", "x", 429)

        cache.get("ok")
        cache.get("neg")
        cache.get("missing")

        stats = cache.get_stats().to_dict()
        assert stats["hits"] == 1
        assert stats["negative_hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == "66.67%"

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            OutcomeAwareCache(max_size=0)
