"""Tests for the embedding/result caches and corpus fingerprints."""

import pytest

from thematic_analyzer.cache import ResultCache, TTLCache, corpus_fingerprint
from thematic_analyzer.models import ContentType, Source


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestTTLCache:
    """Test the LRU/TTL cache."""

    def test_get_and_set(self):
        cache = TTLCache(max_size=3, ttl_seconds=10)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert cache.get("missing") is None
        assert cache.get("missing", "default") == "default"
        assert cache.hits == 1
        assert cache.misses == 2

    def test_entry_expires_at_ttl(self):
        """An entry is served strictly before its TTL and never at or after it."""
        clock = FakeClock()
        cache = TTLCache(max_size=3, ttl_seconds=10, clock=clock)
        cache.set("a", 1)

        clock.advance(9.5)
        assert cache.get("a") == 1

        clock.advance(0.5)
        assert cache.get("a") is None
        assert "a" not in cache
        assert cache.expirations == 1

    def test_hit_does_not_extend_lifetime(self):
        clock = FakeClock()
        cache = TTLCache(max_size=3, ttl_seconds=10, clock=clock)
        cache.set("a", 1)
        clock.advance(6)
        assert cache.get("a") == 1
        clock.advance(6)
        assert cache.get("a") is None

    def test_lru_eviction(self):
        """The least recently used entry is evicted when the cache is full."""
        cache = TTLCache(max_size=2, ttl_seconds=10)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")  # "b" is now least recently used
        cache.set("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache
        assert len(cache) == 2
        assert cache.evictions == 1

    def test_purge_expired(self):
        clock = FakeClock()
        cache = TTLCache(max_size=10, ttl_seconds=5, clock=clock)
        cache.set("old", 1)
        clock.advance(3)
        cache.set("new", 2)
        clock.advance(3)

        assert cache.purge_expired() == 1
        assert len(cache) == 1
        assert cache.get("new") == 2

    def test_delete_and_clear(self):
        cache = TTLCache()
        cache.set("a", 1)
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_stats(self):
        cache = TTLCache(max_size=5)
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")
        stats = cache.stats()
        assert stats['size'] == 1
        assert stats['max_size'] == 5
        assert stats['hits'] == 1
        assert stats['misses'] == 1

    @pytest.mark.parametrize("kwargs", [{'max_size': 0}, {'ttl_seconds': 0}, {'ttl_seconds': -1}])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            TTLCache(**kwargs)


class TestCorpusFingerprint:
    """Test result-cache fingerprints."""

    @staticmethod
    def _sources(content="Remote work changed commuting."):
        return [
            Source(id="s1", content=content, content_type=ContentType.ABSTRACT),
            Source(id="s2", content="Burnout among nurses.", content_type=ContentType.FULL_TEXT),
        ]

    def test_stable_for_same_input(self):
        params = {'merge_threshold': 0.85}
        assert corpus_fingerprint(self._sources(), params) == corpus_fingerprint(self._sources(), params)

    def test_changes_with_content(self):
        assert corpus_fingerprint(self._sources()) != corpus_fingerprint(self._sources("Different text."))

    def test_changes_with_params(self):
        sources = self._sources()
        assert corpus_fingerprint(sources, {'merge_threshold': 0.85}) != \
            corpus_fingerprint(sources, {'merge_threshold': 0.9})

    def test_changes_with_order(self):
        sources = self._sources()
        assert corpus_fingerprint(sources) != corpus_fingerprint(list(reversed(sources)))


class TestResultCache:
    """Test the result cache wrapper."""

    def test_put_get_invalidate(self):
        cache = ResultCache(max_size=2)
        cache.put("fp1", "result")
        assert cache.get("fp1") == "result"
        assert "fp1" in cache
        assert cache.invalidate("fp1") is True
        assert cache.get("fp1") is None

    def test_results_copied_in_and_out(self):
        cache = ResultCache()
        result = {'themes': ['remote work', 'burnout']}
        cache.put("fp", result)
        result['themes'].append('commute')

        served = cache.get("fp")
        assert served == {'themes': ['remote work', 'burnout']}
        served['themes'].clear()
        assert cache.get("fp") == {'themes': ['remote work', 'burnout']}

    def test_expiry(self):
        clock = FakeClock()
        cache = ResultCache(ttl_seconds=60, clock=clock)
        cache.put("fp", "result")
        clock.advance(60)
        assert cache.get("fp") is None
        assert cache.stats()['expirations'] == 1
