"""Tests for the TTL cache and the per-dependency cache manager."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from coverage_assistant.services.cache import CacheManager, TTLCache, make_cache_key

# ── Keys ─────────────────────────────────────────────────────────────


class TestCacheKey:
    def test_key_is_order_independent(self):
        assert make_cache_key({"a": 1, "b": 2}) == make_cache_key({"b": 2, "a": 1})

    def test_different_values_give_different_keys(self):
        assert make_cache_key({"q": "mri"}) != make_cache_key({"q": "ct"})


# ── Core operations ──────────────────────────────────────────────────


class TestTTLCacheBasics:
    def test_set_and_get(self, clock):
        cache = TTLCache("npi", clock=clock)
        cache.set({"name": "Smith"}, [{"npi": "1"}])
        assert cache.get({"name": "Smith"}) == [{"npi": "1"}]

    def test_get_returns_default_for_missing_key(self, clock):
        cache = TTLCache(clock=clock)
        assert cache.get({"x": 1}) is None
        assert cache.get({"x": 1}, default="miss") == "miss"

    def test_set_overwrites_existing_key(self, clock):
        cache = TTLCache(clock=clock)
        cache.set({"k": 1}, "old")
        cache.set({"k": 1}, "new")
        assert cache.get({"k": 1}) == "new"
        assert cache.entry_count == 1

    def test_delete(self, clock):
        cache = TTLCache(clock=clock)
        cache.set({"k": 1}, "v")
        assert cache.delete({"k": 1}) is True
        assert cache.delete({"k": 1}) is False
        assert cache.get({"k": 1}) is None

    def test_clear_resets_entries_and_counters(self, clock):
        cache = TTLCache(clock=clock)
        cache.set({"a": 1}, 1)
        cache.get({"a": 1})
        cache.clear()
        assert cache.entry_count == 0
        assert cache.stats()["hits"] == 0

    def test_has_does_not_count(self, clock):
        cache = TTLCache(clock=clock)
        cache.set({"a": 1}, 1)
        assert cache.has({"a": 1}) is True
        assert cache.has({"b": 1}) is False
        stats = cache.stats()
        assert stats["hits"] == 0 and stats["misses"] == 0


# ── Expiry ───────────────────────────────────────────────────────────


class TestTTLExpiry:
    def test_value_available_until_ttl_elapses(self, clock):
        cache = TTLCache(clock=clock)
        cache.set({"q": "mri"}, "result", ttl=10)
        clock.advance(10)
        assert cache.get({"q": "mri"}) == "result"

    def test_value_missing_after_ttl(self, clock):
        cache = TTLCache(clock=clock)
        cache.set({"q": "mri"}, "result", ttl=10)
        clock.advance(10.01)
        assert cache.get({"q": "mri"}) is None

    def test_expired_entry_is_dropped_on_read(self, clock):
        cache = TTLCache(clock=clock)
        cache.set({"q": "mri"}, "result", ttl=1)
        clock.advance(2)
        cache.get({"q": "mri"})
        assert cache.entry_count == 0

    def test_default_ttl_used_when_not_given(self, clock):
        cache = TTLCache(default_ttl=5, clock=clock)
        cache.set({"q": 1}, "v")
        clock.advance(6)
        assert cache.has({"q": 1}) is False

    def test_clear_expired_returns_count(self, clock):
        cache = TTLCache(clock=clock)
        cache.set({"a": 1}, 1, ttl=1)
        cache.set({"b": 1}, 1, ttl=100)
        clock.advance(5)
        assert cache.clear_expired() == 1
        assert cache.entry_count == 1


# ── Eviction ────────────────────────────────────────────────────────


class TestFIFOEviction:
    def test_evicts_oldest_created_entry(self, clock):
        cache = TTLCache(max_entries=2, clock=clock)
        cache.set({"k": "first"}, 1)
        clock.advance(1)
        cache.set({"k": "second"}, 2)
        clock.advance(1)
        cache.set({"k": "third"}, 3)

        assert cache.entry_count == 2
        assert cache.get({"k": "first"}) is None
        assert cache.get({"k": "second"}) == 2
        assert cache.get({"k": "third"}) == 3

    def test_reads_do_not_protect_from_eviction(self, clock):
        cache = TTLCache(max_entries=2, clock=clock)
        cache.set({"k": "first"}, 1)
        clock.advance(1)
        cache.set({"k": "second"}, 2)
        cache.get({"k": "first"})
        clock.advance(1)
        cache.set({"k": "third"}, 3)
        assert cache.has({"k": "first"}) is False
        assert cache.has({"k": "second"}) is True

    def test_overwrite_at_capacity_does_not_evict(self, clock):
        cache = TTLCache(max_entries=2, clock=clock)
        cache.set({"k": 1}, "a")
        cache.set({"k": 2}, "b")
        cache.set({"k": 2}, "c")
        assert cache.entry_count == 2
        assert cache.get({"k": 1}) == "a"


# ── get_or_set ───────────────────────────────────────────────────────


class TestGetOrSet:
    def test_loader_called_once_then_cached(self, clock):
        cache = TTLCache(clock=clock)
        loader = MagicMock(return_value=["x"])
        assert cache.get_or_set({"q": 1}, loader) == ["x"]
        assert cache.get_or_set({"q": 1}, loader) == ["x"]
        loader.assert_called_once()

    def test_loader_called_again_after_expiry(self, clock):
        cache = TTLCache(clock=clock)
        loader = MagicMock(side_effect=["first", "second"])
        cache.get_or_set({"q": 1}, loader, ttl=1)
        clock.advance(2)
        assert cache.get_or_set({"q": 1}, loader, ttl=1) == "second"
        assert loader.call_count == 2

    def test_loader_exception_propagates_and_nothing_cached(self, clock):
        cache = TTLCache(clock=clock)
        with pytest.raises(RuntimeError):
            cache.get_or_set({"q": 1}, MagicMock(side_effect=RuntimeError("boom")))
        assert cache.entry_count == 0

    def test_stats_count_hits_and_misses(self, clock):
        cache = TTLCache("pubmed", clock=clock)
        cache.get_or_set({"q": 1}, lambda: "v")
        cache.get_or_set({"q": 1}, lambda: "v")
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["name"] == "pubmed"


# ── CacheManager ─────────────────────────────────────────────────────


class TestCacheManager:
    def test_same_cache_returned_per_name(self, clock):
        manager = CacheManager({"npi": 10}, clock=clock)
        assert manager.get("npi") is manager.get("npi")
        assert manager.get("npi") is not manager.get("ncd")

    def test_ttl_per_dependency_with_default_fallback(self, clock):
        manager = CacheManager({"npi": 10, "default": 2}, clock=clock)
        manager.get("npi").set({"a": 1}, "v")
        manager.get("other").set({"a": 1}, "v")
        clock.advance(5)
        assert manager.get("npi").has({"a": 1}) is True
        assert manager.get("other").has({"a": 1}) is False

    def test_clear_all_and_stats(self, clock):
        manager = CacheManager(clock=clock)
        manager.get("npi").set({"a": 1}, 1)
        manager.get("lcd").set({"a": 1}, 1)
        assert set(manager.stats()) == {"lcd", "npi"}
        manager.clear_all()
        assert all(s["size"] == 0 for s in manager.stats().values())

    def test_clear_all_expired(self, clock):
        manager = CacheManager({"default": 1}, clock=clock)
        manager.get("npi").set({"a": 1}, 1)
        manager.get("lcd").set({"a": 1}, 1)
        clock.advance(2)
        assert manager.clear_all_expired() == 2

    def test_hits_and_misses_reported_to_metrics(self, clock):
        metrics = MagicMock()
        cache = CacheManager(clock=clock, metrics=metrics).get("npi")
        cache.get({"a": 1})
        cache.set({"a": 1}, "v")
        cache.get({"a": 1})
        assert [c.kwargs["hit"] for c in metrics.record_cache.call_args_list] == [False, True]
        assert metrics.record_cache.call_args.args == ("npi",)
